"""
Tests for the Stripe bridge: checkout payloads, validation and best-effort
invoicing.
"""
import pytest

from payments import CheckoutValidationError, GatewayNotConfigured, PaymentGateway

SUCCESS_URL = "https://shop.example.com/checkout/success"
CANCEL_URL = "https://shop.example.com/cart"


def create_session(gateway, items, order_summary=None, **kwargs):
    return gateway.create_checkout_session(
        items,
        {"fullName": "Aisha Khan"},
        order_summary or {},
        SUCCESS_URL,
        CANCEL_URL,
        **kwargs,
    )


class TestCheckoutSession:

    def test_zero_price_rejected(self, gateway, stripe_client):
        with pytest.raises(CheckoutValidationError, match="valid price"):
            create_session(gateway, [{"price": 0, "quantity": 1}])
        stripe_client.checkout.Session.create.assert_not_called()

    @pytest.mark.parametrize("price", [None, "abc", -10, float("nan")])
    def test_invalid_prices_rejected(self, gateway, price):
        with pytest.raises(CheckoutValidationError):
            create_session(gateway, [{"price": price, "quantity": 1}])

    def test_negative_quantity_rejected(self, gateway):
        with pytest.raises(CheckoutValidationError, match="valid quantity"):
            create_session(gateway, [{"price": 100, "quantity": -2}])

    def test_line_items_with_delivery_charge(self, gateway, stripe_client):
        session = create_session(
            gateway,
            [{"id": "p1", "name": "Suit", "price": 500, "quantity": 2}],
            {"deliveryCharges": 50},
            user_id="u1",
        )

        assert session.subtotal == 1000
        assert session.delivery_charges == 50
        assert session.total == 1050

        payload = stripe_client.checkout.Session.create.call_args.kwargs
        assert payload["api_key"] == "sk_test_123"
        assert payload["mode"] == "payment"
        assert payload["line_items"] == [
            {
                "price_data": {
                    "currency": "inr",
                    "product_data": {"name": "Suit", "metadata": {"itemId": "p1"}},
                    "unit_amount": 50000,
                },
                "quantity": 2,
            },
            {
                "price_data": {
                    "currency": "inr",
                    "product_data": {"name": "Delivery Charges"},
                    "unit_amount": 5000,
                },
                "quantity": 1,
            },
        ]
        assert payload["payment_method_types"] == ["card"]
        assert payload["metadata"] == {"userId": "u1", "paymentMethod": "Online"}
        assert payload["success_url"] == SUCCESS_URL
        assert payload["cancel_url"] == CANCEL_URL

    def test_missing_quantity_defaults_to_one(self, gateway, stripe_client):
        create_session(gateway, [{"price": 10}])
        assert stripe_client.checkout.Session.create.call_args.kwargs["line_items"][0]["quantity"] == 1

    def test_upi_leaves_payment_methods_to_stripe(self, gateway, stripe_client):
        session = create_session(gateway, [{"price": 10, "quantity": 1}], payment_method="UPI", customer_email="a@b.com")

        payload = stripe_client.checkout.Session.create.call_args.kwargs
        assert "payment_method_types" not in payload
        assert payload["customer_email"] == "a@b.com"
        assert session.payment_label == "UPI"
        assert session.requested_method == "upi"

    def test_session_fields_returned(self, gateway):
        session = create_session(gateway, [{"price": 10, "quantity": 1}])
        assert session.session_id == "cs_test_123"
        assert session.url.startswith("https://checkout.stripe.com/")
        assert session.payment_intent is None
        assert session.payment_method_types == ["card"]

    def test_unconfigured_gateway_refuses(self, unconfigured_gateway, stripe_client):
        with pytest.raises(GatewayNotConfigured):
            create_session(unconfigured_gateway, [{"price": 10, "quantity": 1}])
        stripe_client.checkout.Session.create.assert_not_called()

    def test_update_session_metadata(self, gateway, stripe_client):
        gateway.update_session_metadata("cs_test_123", {"orderId": "o1"})
        stripe_client.checkout.Session.modify.assert_called_once_with(
            "cs_test_123", api_key="sk_test_123", metadata={"orderId": "o1"}
        )


class TestCreateInvoice:

    items = [
        {"_id": "i1", "name": "Suit", "price": 5999, "quantity": 1},
        {"name": "Kesar", "price": 0, "quantity": 2},
    ]

    def test_unconfigured_returns_none(self, unconfigured_gateway, stripe_client):
        assert unconfigured_gateway.create_invoice("u1", "o1", self.items, {}, {"total": 5999}) is None
        stripe_client.Customer.create.assert_not_called()

    def test_creates_finalizes_and_sends(self, gateway, stripe_client):
        invoice = gateway.create_invoice(
            "u1", "o1", self.items,
            {"fullName": "Aisha Khan", "email": "aisha@example.com"},
            {"deliveryCharges": 50, "total": 6049},
        )

        assert invoice["id"] == "in_test_1"
        customer = stripe_client.Customer.create.call_args.kwargs
        assert customer["email"] == "aisha@example.com"
        assert customer["name"] == "Aisha Khan"
        assert customer["metadata"] == {"userId": "u1", "orderId": "o1"}

        lines = [c.kwargs for c in stripe_client.InvoiceItem.create.call_args_list]
        assert sorted((line["description"], line["unit_amount"], line["quantity"]) for line in lines) == [
            ("Delivery Charges", 5000, 1),
            ("Suit", 599900, 1),
        ]
        assert all(line["customer"] == "cus_test_1" and line["currency"] == "inr" for line in lines)

        created = stripe_client.Invoice.create.call_args.kwargs
        assert created["collection_method"] == "send_invoice"
        assert created["pending_invoice_items_behavior"] == "include"
        assert created["metadata"] == {"orderId": "o1", "userId": "u1"}
        stripe_client.Invoice.finalize_invoice.assert_called_once_with("in_test_1", api_key="sk_test_123")
        stripe_client.Invoice.send_invoice.assert_called_once_with("in_test_1", api_key="sk_test_123")

    def test_fallback_total_line_when_no_item_qualifies(self, gateway, stripe_client):
        gateway.create_invoice("u1", "o1", [{"name": "Gift", "price": 0}], {}, {"total": 250})

        lines = [c.kwargs for c in stripe_client.InvoiceItem.create.call_args_list]
        assert [(line["description"], line["unit_amount"]) for line in lines] == [("Order Total", 25000)]

    def test_nothing_billable_returns_none(self, gateway, stripe_client):
        assert gateway.create_invoice("u1", "o1", [{"price": 0}], {}, {"total": 0}) is None
        stripe_client.Customer.create.assert_not_called()

    def test_customer_email_used_when_shipping_has_none(self, gateway, stripe_client):
        gateway.create_invoice("u1", "o1", self.items, {"firstName": "Aisha"}, {}, customer_email="x@y.com")
        customer = stripe_client.Customer.create.call_args.kwargs
        assert customer["email"] == "x@y.com"
        assert customer["name"] == "Aisha"

    def test_creation_failure_returns_none(self, gateway, stripe_client, caplog):
        stripe_client.InvoiceItem.create.side_effect = RuntimeError("card_declined")

        assert gateway.create_invoice("u1", "o1", self.items, {}, {"total": 5999}) is None
        stripe_client.Invoice.create.assert_not_called()
        assert "card_declined" in caplog.text

    def test_finalize_failure_returns_none(self, gateway, stripe_client):
        stripe_client.Invoice.finalize_invoice.side_effect = RuntimeError("boom")
        assert gateway.create_invoice("u1", "o1", self.items, {}, {"total": 5999}) is None

    def test_send_failure_still_returns_invoice(self, gateway, stripe_client, caplog):
        stripe_client.Invoice.send_invoice.side_effect = RuntimeError("no email on customer")

        invoice = gateway.create_invoice("u1", "o1", self.items, {}, {"total": 5999})

        assert invoice["id"] == "in_test_1"
        assert "no email on customer" in caplog.text


def test_from_env(monkeypatch):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_env")
    monkeypatch.setenv("STRIPE_CURRENCY", "usd")
    gateway = PaymentGateway.from_env()
    assert gateway.configured
    assert gateway.currency == "usd"
