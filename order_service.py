"""
Order pipeline and admin operations on the ``orders`` collection.

Creation runs linearly: process items (image offload), build the invoice,
persist, link to the user, then invoice through Stripe best-effort. Nothing
is compensated if a later step fails; the persisted order stays.

Client-submitted prices and totals are trusted as-is.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pymongo import DESCENDING

from invoices import build_invoice_data
from money import round2, to_number
from payments import CheckoutValidationError, PaymentGateway, stripe_field
from schemas import ORDER_STATUSES, PAYMENT_METHODS, PAYMENT_STATUSES
from security import is_owner_or_admin
from uploads import ImageUploader

logger = logging.getLogger(__name__)

ORDER_CONFIRMED = "Order Confirmed"
CANCELLED = "Cancelled"
NON_CANCELLABLE = ("Delivered", CANCELLED)
NEWEST_FIRST = [("createdAt", DESCENDING)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_object_id(value: Any) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=404, detail="Order not found")


def find_order(db, order_id: Any) -> Dict[str, Any]:
    order = db["orders"].find_one({"_id": parse_object_id(order_id)})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def normalize_payment_method(value: Any) -> str:
    method = value.lower() if isinstance(value, str) else ""
    if method == "cod":
        return "COD"
    if method == "upi":
        return "UPI"
    return "Online"


def process_order_items(items: Any, uploader: ImageUploader) -> Any:
    """Copy cart items, replacing inline images with uploaded URLs."""
    if not isinstance(items, list) or not items:
        return items

    processed = []
    for item in items:
        if not isinstance(item, dict):
            processed.append(item)
            continue

        updated = dict(item)
        if isinstance(updated.get("image"), str):
            updated["image"] = uploader.upload_image(updated["image"], "items")

        customization = updated.get("customization")
        if isinstance(customization, dict):
            customization = dict(customization)
            if isinstance(customization.get("referenceImage"), str):
                customization["referenceImage"] = uploader.upload_image(customization["referenceImage"], "references")
            updated["customization"] = customization

        processed.append(updated)
    return processed


def _require_items(items: Any):
    if not isinstance(items, list) or not items:
        raise HTTPException(status_code=400, detail="Items are required")


def _link_order_to_user(db, user_id: ObjectId, order_id: ObjectId):
    db["users"].update_one(
        {"_id": user_id},
        {"$push": {"orders": order_id}, "$set": {"updatedAt": utcnow()}},
    )


def _attach_gateway_invoice(db, order: Dict[str, Any], gateway: PaymentGateway, customer_email: Optional[str] = None):
    stripe_invoice = gateway.create_invoice(
        user_id=order["userId"],
        order_id=order["_id"],
        items=order["items"],
        shipping_details=order.get("shippingDetails"),
        order_summary=order["orderSummary"],
        customer_email=customer_email,
    )
    if not stripe_invoice:
        return order

    def field(name):
        return stripe_field(stripe_invoice, name)

    invoice = order["invoice"]
    invoice["url"] = field("hosted_invoice_url") or invoice.get("url", "")
    invoice["stripeId"] = field("id")
    invoice["pdfUrl"] = field("invoice_pdf") or invoice.get("pdfUrl", "")
    order["stripeInvoice"] = {
        "id": field("id"),
        "number": field("number"),
        "status": field("status"),
        "hostedUrl": field("hosted_invoice_url"),
        "pdf": field("invoice_pdf"),
    }
    order["updatedAt"] = utcnow()
    db["orders"].update_one(
        {"_id": order["_id"]},
        {"$set": {
            "invoice": invoice,
            "stripeInvoice": order["stripeInvoice"],
            "updatedAt": order["updatedAt"],
        }},
    )
    return order


def create_order(db, user: Dict[str, Any], payload: Dict[str, Any], uploader: ImageUploader, gateway: PaymentGateway) -> Dict[str, Any]:
    _require_items(payload.get("items"))
    user_id = ObjectId(user["id"])
    order_id = ObjectId()

    items = process_order_items(payload["items"], uploader)
    shipping_details = payload.get("shippingDetails") or {}
    payment_method = normalize_payment_method(payload.get("paymentMethod"))
    payment_status = payload.get("paymentStatus") or "Pending"

    invoice = build_invoice_data(
        {
            "items": items,
            "shippingDetails": shipping_details,
            "orderSummary": payload.get("orderSummary") or {},
            "paymentMethod": payment_method,
            "paymentStatus": payment_status,
            "invoiceUrl": payload.get("invoiceUrl"),
        },
        order_id,
    )

    now = utcnow()
    order = {
        "_id": order_id,
        "userId": user_id,
        "items": items,
        "shippingDetails": shipping_details,
        "orderSummary": dict(invoice["summary"]),
        "paymentMethod": payment_method,
        "paymentStatus": payment_status,
        "orderStatus": ORDER_CONFIRMED,
        "notes": "",
        "invoice": {**invoice, "generatedAt": now},
        "createdAt": now,
        "updatedAt": now,
    }
    if isinstance(payload.get("paymentDetails"), dict):
        order["paymentDetails"] = payload["paymentDetails"]

    db["orders"].insert_one(order)
    logger.info("Order %s created for user %s (%s)", order_id, user_id, payment_method)
    _link_order_to_user(db, user_id, order_id)

    return _attach_gateway_invoice(db, order, gateway)


def create_checkout_order(db, user: Dict[str, Any], payload: Dict[str, Any], uploader: ImageUploader, gateway: PaymentGateway) -> Dict[str, Any]:
    """Open a Stripe checkout session and persist the pending order behind it."""
    if not gateway.configured:
        raise HTTPException(status_code=500, detail="Stripe not configured")
    _require_items(payload.get("items"))
    if not payload.get("successUrl") or not payload.get("cancelUrl"):
        raise HTTPException(status_code=400, detail="successUrl and cancelUrl are required")

    user_id = ObjectId(user["id"])
    items = process_order_items(payload["items"], uploader)
    shipping_details = payload.get("shippingDetails") or {}
    customer_email = payload.get("customerEmail")

    try:
        session = gateway.create_checkout_session(
            items,
            shipping_details,
            payload.get("orderSummary"),
            payload["successUrl"],
            payload["cancelUrl"],
            customer_email=customer_email,
            payment_method=payload.get("paymentMethod"),
            user_id=user["id"],
        )
    except CheckoutValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    payment_details = {
        "provider": "Stripe",
        "sessionId": session.session_id,
        "method": session.payment_label,
    }
    if session.payment_intent:
        payment_details["paymentIntentId"] = session.payment_intent
    if session.payment_method_types is not None:
        payment_details["availableMethods"] = session.payment_method_types

    order_id = ObjectId()
    invoice = build_invoice_data(
        {
            "items": items,
            "shippingDetails": shipping_details,
            "orderSummary": {
                "subtotal": session.subtotal,
                "deliveryCharges": session.delivery_charges,
                "total": session.total,
            },
            "paymentMethod": session.payment_label,
            "paymentStatus": "Pending",
        },
        order_id,
    )

    now = utcnow()
    order = {
        "_id": order_id,
        "userId": user_id,
        "items": items,
        "shippingDetails": shipping_details,
        "orderSummary": dict(invoice["summary"]),
        "paymentMethod": session.payment_label,
        "paymentStatus": "Pending",
        "orderStatus": ORDER_CONFIRMED,
        "notes": "",
        "paymentDetails": payment_details,
        "requestedPaymentMethod": session.requested_method,
        "invoice": {**invoice, "generatedAt": now, "url": session.url},
        "createdAt": now,
        "updatedAt": now,
    }
    db["orders"].insert_one(order)
    logger.info("Checkout order %s created for session %s", order_id, session.session_id)
    _link_order_to_user(db, user_id, order_id)

    gateway.update_session_metadata(session.session_id, {
        "userId": user["id"],
        "orderId": str(order_id),
        "paymentMethod": session.payment_label,
    })

    order = _attach_gateway_invoice(db, order, gateway, customer_email)
    return {
        "success": True,
        "sessionId": session.session_id,
        "checkoutUrl": session.url,
        "orderId": order_id,
        "invoice": order["invoice"],
        "invoiceUrl": order["invoice"].get("url"),
        "stripeInvoiceId": order["invoice"].get("stripeId"),
        "paymentMethod": session.payment_label,
    }


# Reads

def list_user_orders(db, user: Dict[str, Any]) -> List[Dict[str, Any]]:
    return list(db["orders"].find({"userId": ObjectId(user["id"])}).sort(NEWEST_FIRST))


def list_all_orders(db) -> List[Dict[str, Any]]:
    return list(db["orders"].find({}).sort(NEWEST_FIRST))


def get_order_for_user(db, order_id: Any, user: Dict[str, Any]) -> Dict[str, Any]:
    order = find_order(db, order_id)
    if not is_owner_or_admin(order, user):
        raise HTTPException(status_code=403, detail="Not authorized to access this order")
    return order


# Mutations

def update_order(db, order_id: Any, changes: Dict[str, Any]) -> Dict[str, Any]:
    order = find_order(db, order_id)
    update = {k: v for k, v in changes.items() if k in ("orderStatus", "paymentStatus", "notes") and v}
    update["updatedAt"] = utcnow()
    db["orders"].update_one({"_id": order["_id"]}, {"$set": update})
    logger.info("Order %s updated: %s", order["_id"], sorted(k for k in update if k != "updatedAt"))
    return db["orders"].find_one({"_id": order["_id"]})


def bulk_update_status(db, order_ids: Optional[List[str]], order_status: Optional[str] = None, payment_status: Optional[str] = None) -> Dict[str, int]:
    if not order_ids:
        raise HTTPException(status_code=400, detail="Please provide an array of orderIds")
    if not order_status and not payment_status:
        raise HTTPException(status_code=400, detail="Please provide orderStatus or paymentStatus to update")
    try:
        object_ids = [ObjectId(i) for i in order_ids]
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="orderIds must be valid order ids")

    update = {"updatedAt": utcnow()}
    if order_status:
        update["orderStatus"] = order_status
    if payment_status:
        update["paymentStatus"] = payment_status

    result = db["orders"].update_many({"_id": {"$in": object_ids}}, {"$set": update})
    logger.info("Bulk status update matched %d, modified %d", result.matched_count, result.modified_count)
    return {"matchedCount": result.matched_count, "modifiedCount": result.modified_count}


def delete_order(db, order_id: Any) -> None:
    order = find_order(db, order_id)
    db["orders"].delete_one({"_id": order["_id"]})
    logger.info("Order %s deleted", order["_id"])


def cancel_order(db, order_id: Any, user: Dict[str, Any]) -> Dict[str, Any]:
    order = find_order(db, order_id)
    if not is_owner_or_admin(order, user):
        raise HTTPException(status_code=403, detail="Not authorized to cancel this order")
    if order.get("orderStatus") in NON_CANCELLABLE:
        raise HTTPException(status_code=400, detail=f"Cannot cancel order with status: {order.get('orderStatus')}")

    update = {
        "orderStatus": CANCELLED,
        "paymentStatus": "Pending" if order.get("paymentMethod") == "COD" else "Refund Pending",
        "updatedAt": utcnow(),
    }
    db["orders"].update_one({"_id": order["_id"]}, {"$set": update})
    logger.info("Order %s cancelled by %s", order["_id"], user["id"])
    return db["orders"].find_one({"_id": order["_id"]})


# Admin reporting

def order_revenue(orders: List[Dict[str, Any]]) -> float:
    return round2(sum(to_number((o.get("orderSummary") or {}).get("total")) for o in orders))


def filter_orders_by_date(db, start_date: Optional[str], end_date: Optional[str]) -> Dict[str, Any]:
    if not start_date or not end_date:
        raise HTTPException(status_code=400, detail="Please provide startDate and endDate (YYYY-MM-DD format)")
    try:
        start = datetime.strptime(start_date, "%Y-%m-%d")
        end = datetime.strptime(end_date, "%Y-%m-%d").replace(hour=23, minute=59, second=59, microsecond=999000)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid date format. Use YYYY-MM-DD")

    # naive datetimes are read as UTC by the driver
    orders = list(db["orders"].find({"createdAt": {"$gte": start, "$lte": end}}).sort(NEWEST_FIRST))
    return {
        "count": len(orders),
        "totalRevenue": order_revenue(orders),
        "dateRange": {"from": start_date, "to": end_date},
        "orders": orders,
    }


def search_orders_by_customer(db, query: Optional[str]) -> List[Dict[str, Any]]:
    if not query or not query.strip():
        raise HTTPException(status_code=400, detail="Please provide a search query")
    pattern = {"$regex": re.escape(query), "$options": "i"}
    return list(db["orders"].find({"$or": [
        {"shippingDetails.fullName": pattern},
        {"shippingDetails.email": pattern},
        {"shippingDetails.phone": pattern},
    ]}).sort(NEWEST_FIRST))


STATUS_KEYS = dict(zip(ORDER_STATUSES, ("confirmed", "processing", "inTransit", "delivered", "cancelled")))
PAYMENT_STATUS_KEYS = dict(zip(PAYMENT_STATUSES, ("pending", "completed", "failed", "refundPending")))
PAYMENT_METHOD_KEYS = dict(zip(PAYMENT_METHODS, ("online", "cod", "upi")))


def _breakdown(orders, field, keys):
    counts = {name: 0 for name in keys.values()}
    for order in orders:
        name = keys.get(order.get(field))
        if name:
            counts[name] += 1
    return counts


def order_statistics(db) -> Dict[str, Any]:
    orders = list(db["orders"].find({}, {"orderStatus": 1, "paymentStatus": 1, "paymentMethod": 1, "orderSummary": 1}))
    total_orders = len(orders)
    total_revenue = order_revenue(orders)
    return {
        "totalOrders": total_orders,
        "totalRevenue": total_revenue,
        "averageOrderValue": round2(total_revenue / total_orders) if total_orders else 0,
        "statusBreakdown": _breakdown(orders, "orderStatus", STATUS_KEYS),
        "paymentBreakdown": _breakdown(orders, "paymentStatus", PAYMENT_STATUS_KEYS),
        "paymentMethodBreakdown": _breakdown(orders, "paymentMethod", PAYMENT_METHOD_KEYS),
    }
