"""
MongoDB connection for the storefront.

``db`` is ``None`` when DATABASE_URL is unset so the app can still start and
report its configuration on /api/health.
"""
import os
from datetime import datetime, timezone

from bson import ObjectId
from dotenv import load_dotenv
from fastapi.encoders import jsonable_encoder
from pymongo import MongoClient

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "mehryaan")

client = MongoClient(DATABASE_URL) if DATABASE_URL else None
db = client[DATABASE_NAME] if client is not None else None


def get_db():
    if db is None:
        raise RuntimeError("Database not configured (set DATABASE_URL)")
    return db


def serialize_doc(doc):
    """JSON-ready copy of a stored document with ``_id`` exposed as ``id``."""
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    return jsonable_encoder(doc, custom_encoder={ObjectId: str})



def as_utc(value: datetime) -> datetime:
    """Stored datetimes come back naive (UTC) unless the client is tz-aware."""
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value
