"""
Invoice documents embedded in orders.

The invoice is derived from the order as submitted (items, shipping, summary)
and never re-reads the catalog.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from money import round2, to_number


def normalize_shipping_details(details: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    details = dict(details or {})
    first_name = details.get("firstName") or ""
    last_name = details.get("lastName") or ""
    fallback_name = " ".join(part for part in (first_name, last_name) if part).strip()
    full_name = details.get("fullName") or details.get("name") or fallback_name
    details.update({
        "firstName": first_name,
        "lastName": last_name,
        "fullName": full_name or "",
    })
    return details


def invoice_number(issue_date: datetime, order_id: Any = None) -> str:
    if order_id:
        suffix = str(order_id)[-6:].upper()
    else:
        suffix = str(int(issue_date.timestamp() * 1000))
    # date part follows the server's local calendar day
    return f"INV-{issue_date.astimezone():%Y%m%d}-{suffix}"


def build_invoice_data(order_doc: Dict[str, Any], order_id: Any = None, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Build the invoice for an order-shaped document.

    ``order_doc`` carries ``items``, ``shippingDetails``, ``orderSummary``,
    ``paymentMethod``, ``paymentStatus`` and optionally ``invoiceUrl`` or an
    existing ``invoice``. When ``order_id`` is given the invoice number ends
    with its last six characters, otherwise with a millisecond timestamp.
    """
    shipping = normalize_shipping_details(order_doc.get("shippingDetails"))

    items = []
    for item in order_doc.get("items") or []:
        if not isinstance(item, dict):
            continue
        quantity = to_number(item.get("quantity")) or 1
        if quantity == int(quantity):
            quantity = int(quantity)
        unit_price = round2(item.get("price"))
        items.append({
            "name": item.get("name") or "Product",
            "quantity": quantity,
            "unitPrice": unit_price,
            "totalPrice": round2(unit_price * quantity),
        })

    summary_in = order_doc.get("orderSummary") or {}
    subtotal = round2(sum(item["totalPrice"] for item in items))
    delivery_charges = round2(summary_in.get("deliveryCharges"))
    requested_total = to_number(summary_in.get("total"))
    total = round2(requested_total) if requested_total else round2(subtotal + delivery_charges)

    issue_date = now or datetime.now(timezone.utc)
    existing_invoice = order_doc.get("invoice") or {}

    return {
        "invoiceNumber": invoice_number(issue_date, order_id),
        "issueDate": issue_date,
        "billingDetails": {
            "name": shipping["fullName"],
            "email": shipping.get("email") or "",
            "phone": shipping.get("phone") or "",
            "address": shipping.get("address") or "",
            "city": shipping.get("city") or "",
            "state": shipping.get("state") or "",
            "pincode": shipping.get("pincode") or "",
        },
        "payment": {
            "method": order_doc.get("paymentMethod"),
            "status": order_doc.get("paymentStatus"),
        },
        "items": items,
        "summary": {
            "subtotal": subtotal,
            "deliveryCharges": delivery_charges,
            "total": total,
        },
        "access": {"customer": True, "admin": True},
        "url": order_doc.get("invoiceUrl") or existing_invoice.get("url") or "",
    }
