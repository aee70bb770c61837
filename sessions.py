"""
Server-side login sessions stored in the ``sessions`` collection.

Signup and login open a session and hand its id to the browser in an
HTTP-only cookie; routes accept that cookie when no bearer token is sent.
"""
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Request, Response

from database import as_utc, get_db

COLLECTION = "sessions"
SESSION_COOKIE = os.getenv("SESSION_COOKIE_NAME", "storefront.sid")
SESSION_MAX_AGE_SECONDS = int(os.getenv("SESSION_MAX_AGE_SECONDS", str(7 * 24 * 60 * 60)))
COOKIE_SECURE = os.getenv("ENVIRONMENT") == "production"


class SessionStore:
    def __init__(self, db, max_age_seconds: int = SESSION_MAX_AGE_SECONDS):
        self.collection = db[COLLECTION]
        self.max_age_seconds = max_age_seconds

    def ensure_indexes(self):
        self.collection.create_index("expiresAt", expireAfterSeconds=0, name="expires_at_ttl")

    def create(self, user: Dict[str, Any]) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        session = {
            "_id": secrets.token_urlsafe(32),
            "userId": str(user["_id"]),
            "userRole": user.get("role", "user"),
            "userEmail": user.get("email"),
            "userName": user.get("name"),
            "createdAt": now,
            "expiresAt": now + timedelta(seconds=self.max_age_seconds),
        }
        self.collection.insert_one(session)
        return session

    def get(self, session_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not session_id:
            return None
        session = self.collection.find_one({"_id": session_id})
        if not session:
            return None
        if as_utc(session["expiresAt"]) <= datetime.now(timezone.utc):
            self.collection.delete_one({"_id": session_id})
            return None
        return session

    def destroy(self, session_id: str) -> None:
        self.collection.delete_one({"_id": session_id})


def get_session_store(db=Depends(get_db)) -> SessionStore:
    return SessionStore(db)


def current_session(request: Request, store: SessionStore = Depends(get_session_store)) -> Optional[Dict[str, Any]]:
    return store.get(request.cookies.get(SESSION_COOKIE))


def set_session_cookie(response: Response, session: Dict[str, Any]) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        session["_id"],
        max_age=SESSION_MAX_AGE_SECONDS,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE, httponly=True, secure=COOKIE_SECURE, samesite="lax")
