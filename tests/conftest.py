"""
Shared fixtures: an in-memory MongoDB (mongomock), mocked Stripe and
Cloudinary clients, and a TestClient wired to them through dependency
overrides.
"""
import os
from datetime import datetime, timezone
from unittest.mock import MagicMock

import mongomock
import pytest

os.environ.pop("DATABASE_URL", None)

from fastapi.testclient import TestClient  # noqa: E402

from database import get_db  # noqa: E402
from main import app  # noqa: E402
from payments import PaymentGateway, get_payment_gateway  # noqa: E402
from security import create_access_token, hash_password  # noqa: E402
from uploads import ImageUploader, MemoryUploadCache, get_uploader  # noqa: E402

CLOUDINARY_URL = "https://res.cloudinary.com/demo/image/upload/v1/orders/items/abc.png"
CHECKOUT_URL = "https://checkout.stripe.com/c/pay/cs_test_123"
HOSTED_INVOICE_URL = "https://invoice.stripe.com/i/acct_1/in_test_1"
INVOICE_PDF_URL = "https://pay.stripe.com/invoice/acct_1/in_test_1/pdf"


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture
def cloudinary_uploader():
    uploader = MagicMock()
    uploader.upload.return_value = {"secure_url": CLOUDINARY_URL, "url": CLOUDINARY_URL.replace("https", "http")}
    return uploader


@pytest.fixture
def image_uploader(cloudinary_uploader):
    return ImageUploader(
        cloud_name="demo",
        api_key="key",
        api_secret="secret",
        cache=MemoryUploadCache(),
        uploader=cloudinary_uploader,
    )


@pytest.fixture
def stripe_client():
    client = MagicMock()
    client.checkout.Session.create.return_value = {
        "id": "cs_test_123",
        "url": CHECKOUT_URL,
        "payment_intent": None,
        "payment_method_types": ["card"],
    }
    client.Customer.create.return_value = {"id": "cus_test_1"}
    client.InvoiceItem.create.return_value = {"id": "ii_test_1"}
    client.Invoice.create.return_value = {"id": "in_test_1"}
    client.Invoice.finalize_invoice.return_value = {
        "id": "in_test_1",
        "number": "ABC-0001",
        "status": "open",
        "hosted_invoice_url": HOSTED_INVOICE_URL,
        "invoice_pdf": INVOICE_PDF_URL,
    }
    return client


@pytest.fixture
def gateway(stripe_client):
    return PaymentGateway(secret_key="sk_test_123", client=stripe_client)


@pytest.fixture
def unconfigured_gateway(stripe_client):
    return PaymentGateway(secret_key=None, client=stripe_client)


@pytest.fixture
def client(mongo_db, image_uploader, gateway):
    app.dependency_overrides[get_db] = lambda: mongo_db
    app.dependency_overrides[get_uploader] = lambda: image_uploader
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _insert_user(db, name, email, role):
    now = datetime.now(timezone.utc)
    res = db["users"].insert_one({
        "name": name,
        "email": email,
        "password": hash_password("secret123"),
        "role": role,
        "orders": [],
        "createdAt": now,
        "updatedAt": now,
    })
    return str(res.inserted_id)


@pytest.fixture
def customer_id(mongo_db):
    return _insert_user(mongo_db, "Aisha Khan", "aisha@example.com", "user")


@pytest.fixture
def other_customer_id(mongo_db):
    return _insert_user(mongo_db, "Rahul Mehra", "rahul@example.com", "user")


@pytest.fixture
def admin_id(mongo_db):
    return _insert_user(mongo_db, "Admin", "admin@example.com", "admin")


@pytest.fixture
def customer_headers(customer_id):
    return {"Authorization": f"Bearer {create_access_token(customer_id, 'user')}"}


@pytest.fixture
def other_customer_headers(other_customer_id):
    return {"Authorization": f"Bearer {create_access_token(other_customer_id, 'user')}"}


@pytest.fixture
def admin_headers(admin_id):
    return {"Authorization": f"Bearer {create_access_token(admin_id, 'admin')}"}


@pytest.fixture
def shipping_details():
    return {
        "fullName": "Aisha Khan",
        "email": "aisha@example.com",
        "phone": "9876543210",
        "address": "12 Residency Road",
        "city": "Srinagar",
        "state": "Jammu and Kashmir",
        "pincode": "190001",
    }
