"""
Idempotent order creation.

Clients that double-submit a checkout can send an ``Idempotency-Key`` header.
The first request for a (key, user, endpoint) triple claims it by inserting a
``pending`` record into the ``idempotency_keys`` collection under a unique
index; concurrent repeats are refused with 409 until the first one finishes,
after which its stored response is replayed until the record expires.
Requests without a key are executed every time.
"""
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import Depends, HTTPException
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from database import as_utc, get_db

logger = logging.getLogger(__name__)

COLLECTION = "idempotency_keys"
PENDING = "pending"
COMPLETED = "completed"


class IdempotencyStore:
    TTL_SECONDS = 24 * 60 * 60

    def __init__(self, db, ttl_seconds: Optional[int] = None):
        self.collection = db[COLLECTION]
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else self.TTL_SECONDS
        self.ensure_indexes()

    def ensure_indexes(self):
        self.collection.create_index(
            [("key", ASCENDING), ("userId", ASCENDING), ("endpoint", ASCENDING)],
            unique=True,
            name="key_user_endpoint",
        )
        # expired records are removed by the server
        self.collection.create_index("expiresAt", expireAfterSeconds=0, name="expires_at_ttl")

    def _expires_at(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=self.ttl_seconds)

    @staticmethod
    def _selector(key: str, user_id: str, endpoint: str) -> Dict[str, Any]:
        return {"key": key, "userId": user_id, "endpoint": endpoint}

    def lookup(self, key: str, user_id: str, endpoint: str) -> Optional[Dict[str, Any]]:
        record = self.collection.find_one(self._selector(key, user_id, endpoint))
        if not record:
            return None
        expires_at = record.get("expiresAt")
        # the TTL monitor runs once a minute, so expiry is also checked here
        if expires_at is None or as_utc(expires_at) <= datetime.now(timezone.utc):
            self.collection.delete_one({"_id": record["_id"], "status": record.get("status")})
            return None
        return record

    def claim(self, key: str, user_id: str, endpoint: str) -> Optional[Dict[str, Any]]:
        """Reserve the key. Returns None when claimed, else the existing record."""
        for _ in range(2):
            try:
                self.collection.insert_one({
                    **self._selector(key, user_id, endpoint),
                    "status": PENDING,
                    "createdAt": datetime.now(timezone.utc),
                    "expiresAt": self._expires_at(),
                })
                return None
            except DuplicateKeyError:
                existing = self.lookup(key, user_id, endpoint)
                if existing is not None:
                    return existing
        raise HTTPException(status_code=409, detail="A request with this Idempotency-Key is already in progress")

    def save(self, key: str, user_id: str, endpoint: str, status_code: int, response: Dict[str, Any]) -> None:
        self.collection.update_one(
            self._selector(key, user_id, endpoint),
            {"$set": {
                "status": COMPLETED,
                "statusCode": status_code,
                "response": response,
                "expiresAt": self._expires_at(),
            }},
            upsert=True,
        )

    def release(self, key: str, user_id: str, endpoint: str) -> None:
        self.collection.delete_one({**self._selector(key, user_id, endpoint), "status": PENDING})

    def ensure_idempotent(
        self,
        key: Optional[str],
        user_id: str,
        endpoint: str,
        handler: Callable[[], Tuple[int, Dict[str, Any]]],
    ) -> Tuple[int, Dict[str, Any]]:
        """Run ``handler`` once per key; it returns ``(status_code, body)``."""
        if not key:
            return handler()

        existing = self.claim(key, user_id, endpoint)
        if existing is not None:
            if existing.get("status") != COMPLETED:
                logger.warning("Idempotency key %s on %s is still in flight", key, endpoint)
                raise HTTPException(status_code=409, detail="A request with this Idempotency-Key is already in progress")
            logger.info("Replaying %s response for idempotency key %s", endpoint, key)
            return existing["statusCode"], existing["response"]

        try:
            status_code, body = handler()
        except Exception:
            self.release(key, user_id, endpoint)
            raise
        self.save(key, user_id, endpoint, status_code, body)
        return status_code, body


def get_idempotency_store(db=Depends(get_db)) -> IdempotencyStore:
    ttl = os.getenv("IDEMPOTENCY_TTL_SECONDS")
    return IdempotencyStore(db, int(ttl) if ttl else None)
