import os
import json
import hmac
import base64
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from database import get_db
from sessions import current_session

# Simple JWT (HS256) without external deps
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24 * 30)))

ADMIN_ROLE = "admin"
USER_ROLE = "user"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def _b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode()


def _b64url_decode(s: str) -> bytes:
    pad = '=' * (-len(s) % 4)
    return base64.urlsafe_b64decode(s + pad)


def jwt_encode(payload: dict, secret: str) -> str:
    header = {"alg": "HS256", "typ": "JWT"}
    header_b64 = _b64url_encode(json.dumps(header, separators=(',', ':')).encode())
    payload_b64 = _b64url_encode(json.dumps(payload, default=str, separators=(',', ':')).encode())
    signing_input = f"{header_b64}.{payload_b64}".encode()
    signature = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
    return f"{header_b64}.{payload_b64}.{_b64url_encode(signature)}"


def jwt_decode(token: str, secret: str) -> dict:
    try:
        header_b64, payload_b64, sig_b64 = token.split('.')
        signing_input = f"{header_b64}.{payload_b64}".encode()
        expected_sig = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
        if not hmac.compare_digest(_b64url_encode(expected_sig), sig_b64):
            raise ValueError("Invalid signature")
        payload = json.loads(_b64url_decode(payload_b64))
        if 'exp' in payload:
            exp = datetime.fromisoformat(payload['exp']) if isinstance(payload['exp'], str) else datetime.fromtimestamp(payload['exp'], tz=timezone.utc)
            if datetime.now(timezone.utc) > exp:
                raise ValueError("Token expired")
        return payload
    except Exception as e:
        raise ValueError(str(e))


# Simple password hashing without external deps (demo purposes)
PWD_SALT = os.getenv("PWD_SALT", "salt")


def hash_password(password: str) -> str:
    return hashlib.sha256((password + PWD_SALT).encode()).hexdigest()


def verify_password(password: str, hashed: str) -> bool:
    return hmac.compare_digest(hash_password(password), hashed or "")


def create_access_token(user_id: str, role: str = USER_ROLE, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    return jwt_encode({"sub": str(user_id), "role": role, "exp": expire}, JWT_SECRET)


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    session: Optional[dict] = Depends(current_session),
    db=Depends(get_db),
) -> dict:
    """Resolve the bearer token, or failing that the session cookie, to the stored user document."""
    if token:
        try:
            payload = jwt_decode(token, JWT_SECRET)
            user_id = ObjectId(payload.get("sub"))
        except (ValueError, InvalidId, TypeError):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    elif session:
        user_id = ObjectId(session["userId"])
    else:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authorized to access this route")
    user = db["users"].find_one({"_id": user_id})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    user["id"] = str(user["_id"])
    user.setdefault("role", USER_ROLE)
    return user


def require_admin(user: dict):
    if user.get("role") != ADMIN_ROLE:
        raise HTTPException(
            status_code=403,
            detail=f"User role '{user.get('role')}' is not authorized to access this route",
        )


def get_admin_user(current_user: dict = Depends(get_current_user)) -> dict:
    require_admin(current_user)
    return current_user


def is_owner_or_admin(doc: dict, user: dict) -> bool:
    return str(doc.get("userId")) == user["id"] or user.get("role") == ADMIN_ROLE
