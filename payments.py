"""
Stripe integration: hosted checkout sessions and emailed invoices.

Checkout is the only path where the gateway can fail a request (validation or
missing configuration). Invoicing is best-effort and returns ``None`` instead
of raising.
"""
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

import stripe

from money import round2, to_minor_units, to_number

logger = logging.getLogger(__name__)


class CheckoutValidationError(ValueError):
    """Raised when a cart cannot be turned into checkout line items."""


class GatewayNotConfigured(RuntimeError):
    """Raised when checkout is requested without a Stripe secret key."""


@dataclass
class CheckoutSession:
    session_id: str
    url: Optional[str]
    payment_label: str
    requested_method: str
    subtotal: float
    delivery_charges: float
    total: float
    payment_intent: Optional[str] = None
    payment_method_types: Optional[List[str]] = None
    line_items: List[Dict[str, Any]] = field(default_factory=list)


def _id_string(value) -> str:
    return str(value) if value else ""


def stripe_field(obj, name):
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def customer_name(shipping_details: Dict[str, Any]) -> Optional[str]:
    name = shipping_details.get("fullName")
    if name:
        return name
    parts = [shipping_details.get("firstName"), shipping_details.get("lastName")]
    return " ".join(p for p in parts if p).strip() or None


class PaymentGateway:
    def __init__(self, secret_key: Optional[str] = None, currency: str = "inr", client=None, days_until_due: int = 7):
        self.secret_key = secret_key
        self.currency = currency
        self.days_until_due = days_until_due
        self.client = client or stripe

    @classmethod
    def from_env(cls):
        return cls(
            secret_key=os.getenv("STRIPE_SECRET_KEY"),
            currency=os.getenv("STRIPE_CURRENCY", "inr"),
            days_until_due=int(os.getenv("STRIPE_INVOICE_DAYS_UNTIL_DUE", "7")),
        )

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    # Checkout

    def build_checkout_line_items(self, items: List[Any], delivery_charges: Any = 0) -> Tuple[List[Dict[str, Any]], float, float]:
        line_items = []
        subtotal = 0.0
        for item in items:
            item = item if isinstance(item, dict) else {}
            price = to_number(item.get("price"))
            if price <= 0:
                raise CheckoutValidationError("Each item must include a valid price")
            quantity = to_number(item.get("quantity")) or 1
            if quantity <= 0:
                raise CheckoutValidationError("Each item must include a valid quantity")
            if quantity == int(quantity):
                quantity = int(quantity)

            subtotal += price * quantity
            line_items.append({
                "price_data": {
                    "currency": self.currency,
                    "product_data": {
                        "name": item.get("name") or "Product",
                        "metadata": {"itemId": _id_string(item.get("_id") or item.get("id"))},
                    },
                    "unit_amount": to_minor_units(price),
                },
                "quantity": quantity,
            })

        delivery = to_number(delivery_charges)
        delivery = delivery if delivery > 0 else 0.0
        if delivery > 0:
            line_items.append({
                "price_data": {
                    "currency": self.currency,
                    "product_data": {"name": "Delivery Charges"},
                    "unit_amount": to_minor_units(delivery),
                },
                "quantity": 1,
            })
        return line_items, round2(subtotal), round2(delivery)

    def create_checkout_session(
        self,
        items: List[Any],
        shipping_details: Optional[Dict[str, Any]],
        order_summary: Optional[Dict[str, Any]],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        payment_method: Optional[str] = None,
        user_id: Any = None,
    ) -> CheckoutSession:
        if not self.configured:
            raise GatewayNotConfigured("Stripe not configured")

        requested = payment_method.lower() if isinstance(payment_method, str) else "online"
        if requested == "upi":
            payment_label, method_types = "UPI", None
        else:
            payment_label, method_types = "Online", ["card"]

        line_items, subtotal, delivery = self.build_checkout_line_items(
            items, (order_summary or {}).get("deliveryCharges")
        )

        payload = {
            "mode": "payment",
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": {"userId": _id_string(user_id), "paymentMethod": payment_label},
        }
        if method_types:
            payload["payment_method_types"] = method_types
        if customer_email:
            payload["customer_email"] = customer_email

        session = self.client.checkout.Session.create(api_key=self.secret_key, **payload)
        logger.info("Created checkout session %s (%s)", stripe_field(session, "id"), payment_label)

        payment_intent = stripe_field(session, "payment_intent")
        return CheckoutSession(
            session_id=stripe_field(session, "id"),
            url=stripe_field(session, "url"),
            payment_label=payment_label,
            requested_method=requested,
            subtotal=subtotal,
            delivery_charges=delivery,
            total=round2(subtotal + delivery),
            payment_intent=payment_intent if isinstance(payment_intent, str) else None,
            payment_method_types=stripe_field(session, "payment_method_types"),
            line_items=line_items,
        )

    def update_session_metadata(self, session_id: str, metadata: Dict[str, str]):
        return self.client.checkout.Session.modify(session_id, api_key=self.secret_key, metadata=metadata)

    # Invoices

    def invoice_lines(self, order_id: Any, items: List[Any], order_summary: Dict[str, Any]) -> List[Dict[str, Any]]:
        order_ref = _id_string(order_id)
        lines = []
        for item in items or []:
            if not isinstance(item, dict):
                continue
            unit_amount = to_minor_units(item.get("price"))
            quantity = to_number(item.get("quantity")) or 1
            if unit_amount <= 0 or quantity <= 0:
                continue
            lines.append({
                "unit_amount": unit_amount,
                "quantity": int(quantity) if quantity == int(quantity) else quantity,
                "description": item.get("name") or "Product",
                "metadata": {
                    "orderId": order_ref,
                    "itemId": _id_string(item.get("_id") or item.get("id")),
                },
            })

        delivery_amount = to_minor_units(order_summary.get("deliveryCharges"))
        if delivery_amount > 0:
            lines.append({
                "unit_amount": delivery_amount,
                "quantity": 1,
                "description": "Delivery Charges",
                "metadata": {"orderId": order_ref},
            })

        if not lines:
            total_amount = to_minor_units(order_summary.get("total"))
            if total_amount > 0:
                lines.append({
                    "unit_amount": total_amount,
                    "quantity": 1,
                    "description": "Order Total",
                    "metadata": {"orderId": order_ref},
                })
        return lines

    def create_invoice(
        self,
        user_id: Any,
        order_id: Any,
        items: List[Any],
        shipping_details: Optional[Dict[str, Any]] = None,
        order_summary: Optional[Dict[str, Any]] = None,
        customer_email: Optional[str] = None,
    ):
        """Create, finalize and send a Stripe invoice for a persisted order.

        Returns the finalized invoice, or ``None`` when Stripe is not
        configured, nothing is billable, or any Stripe call before
        finalization fails. A failure to send is logged only.
        """
        if not self.configured:
            return None

        shipping_details = shipping_details or {}
        order_summary = order_summary or {}
        lines = self.invoice_lines(order_id, items, order_summary)
        if not lines:
            logger.warning("Order %s has nothing billable, skipping Stripe invoice", order_id)
            return None

        metadata = {"orderId": _id_string(order_id), "userId": _id_string(user_id)}
        try:
            customer = self.client.Customer.create(
                api_key=self.secret_key,
                email=shipping_details.get("email") or customer_email or None,
                name=customer_name(shipping_details),
                metadata={"userId": metadata["userId"], "orderId": metadata["orderId"]},
            )

            with ThreadPoolExecutor(max_workers=min(8, len(lines))) as pool:
                futures = [
                    pool.submit(
                        self.client.InvoiceItem.create,
                        api_key=self.secret_key,
                        customer=stripe_field(customer, "id"),
                        currency=self.currency,
                        **line,
                    )
                    for line in lines
                ]
                for future in futures:
                    future.result()

            invoice = self.client.Invoice.create(
                api_key=self.secret_key,
                customer=stripe_field(customer, "id"),
                collection_method="send_invoice",
                days_until_due=self.days_until_due,
                pending_invoice_items_behavior="include",
                metadata=metadata,
            )
            finalized = self.client.Invoice.finalize_invoice(stripe_field(invoice, "id"), api_key=self.secret_key)
        except Exception as e:
            logger.error("Stripe invoice creation failed for order %s: %s", order_id, e)
            return None

        try:
            self.client.Invoice.send_invoice(stripe_field(finalized, "id"), api_key=self.secret_key)
        except Exception as e:
            logger.error("Stripe invoice send failed for order %s: %s", order_id, e)

        logger.info("Created Stripe invoice %s for order %s", stripe_field(finalized, "id"), order_id)
        return finalized



@lru_cache()
def get_payment_gateway() -> PaymentGateway:
    return PaymentGateway.from_env()
