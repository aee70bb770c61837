import os
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Depends, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING
from starlette.exceptions import HTTPException as StarletteHTTPException

from dotenv import load_dotenv
load_dotenv()

import database
from database import as_utc, get_db, serialize_doc
from logging_setup import configure_logging
from orders import router as orders_router
from schemas import LoginRequest, ProductCreate, ProductUpdate, ProfileUpdate, SignupRequest
from security import create_access_token, get_admin_user, get_current_user, hash_password, verify_password
from sessions import SessionStore, clear_session_cookie, current_session, get_session_store, set_session_cookie
from money import round2, to_number

configure_logging(database.db)
if database.db is not None:
    SessionStore(database.db).ensure_indexes()
logger = logging.getLogger("storefront")

# FastAPI app
app = FastAPI(title="Storefront API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.getenv("FRONTEND_URL", "http://localhost:5173")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error envelope: every failure is {"success": false, "message": ...}

@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    message = exc.detail
    if exc.status_code == 404 and message == "Not Found":
        message = "Route not found"
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": message},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = jsonable_encoder(exc.errors())
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"success": False, "message": message, "errors": errors})


@app.middleware("http")
async def unexpected_error(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception as e:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"success": False, "message": str(e)})


def public_user(user: dict) -> dict:
    user = serialize_doc(user)
    user.pop("password", None)
    return user


def product_object_id(product_id: str) -> ObjectId:
    try:
        return ObjectId(product_id)
    except InvalidId:
        raise HTTPException(status_code=404, detail="Product not found")


# Auth
@app.post("/api/auth/signup", status_code=201)
def signup(payload: SignupRequest, response: Response, db=Depends(get_db), sessions: SessionStore = Depends(get_session_store)):
    email = payload.email.lower()
    if db["users"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists")
    now = datetime.now(timezone.utc)
    doc = {
        "name": payload.name,
        "email": email,
        "password": hash_password(payload.password),
        "role": payload.role or "user",
        "phone": "",
        "address": "",
        "city": "",
        "state": "",
        "pincode": "",
        "orders": [],
        "createdAt": now,
        "updatedAt": now,
    }
    res = db["users"].insert_one(doc)
    logger.info("New %s account %s", doc["role"], res.inserted_id)
    token = create_access_token(str(res.inserted_id), doc["role"])
    session = sessions.create(doc)
    set_session_cookie(response, session)
    return {
        "success": True,
        "token": token,
        "sessionId": session["_id"],
        "user": {"id": str(res.inserted_id), "name": doc["name"], "email": email, "role": doc["role"]},
    }


@app.post("/api/auth/login")
def login(payload: LoginRequest, response: Response, db=Depends(get_db), sessions: SessionStore = Depends(get_session_store)):
    user = db["users"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    role = user.get("role", "user")
    token = create_access_token(str(user["_id"]), role)
    session = sessions.create(user)
    set_session_cookie(response, session)
    return {
        "success": True,
        "token": token,
        "token_type": "bearer",
        "sessionId": session["_id"],
        "user": {k: v for k, v in public_user(user).items() if k in ("id", "name", "email", "role", "phone", "address", "city", "state", "pincode")},
    }


@app.post("/api/auth/logout")
def logout(response: Response, session: Optional[dict] = Depends(current_session), sessions: SessionStore = Depends(get_session_store)):
    if not session:
        raise HTTPException(status_code=400, detail="No active session")
    sessions.destroy(session["_id"])
    clear_session_cookie(response)
    return {"success": True, "message": "Logged out successfully", "sessionId": session["_id"]}


def session_info(session: dict) -> dict:
    return {
        "userId": session["userId"],
        "userEmail": session.get("userEmail"),
        "userName": session.get("userName"),
        "userRole": session.get("userRole"),
    }


@app.get("/api/auth/session")
def get_session(session: Optional[dict] = Depends(current_session)):
    if not session:
        raise HTTPException(status_code=401, detail="No active session")
    expires_at = as_utc(session["expiresAt"])
    remaining = expires_at - datetime.now(timezone.utc)
    return {
        "success": True,
        "session": {
            "sessionId": session["_id"],
            **session_info(session),
            "createdAt": session.get("createdAt"),
            "expiresAt": expires_at,
            "maxAge": int(remaining.total_seconds() * 1000),
        },
    }


@app.post("/api/auth/check-session")
def check_session(session: Optional[dict] = Depends(current_session)):
    if not session:
        return {"success": True, "hasSession": False}
    return {"success": True, "hasSession": True, "session": session_info(session)}


@app.get("/api/auth/me")
def get_me(current_user: dict = Depends(get_current_user)):
    return {"success": True, "user": public_user(current_user)}


@app.get("/api/auth/profile-with-orders")
def profile_with_orders(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    orders = list(db["orders"].find({"userId": current_user["_id"]}).sort([("createdAt", DESCENDING)]))
    total_spent = round2(sum(to_number((o.get("orderSummary") or {}).get("total")) for o in orders))
    user = public_user(current_user)
    user.update({
        "orders": [serialize_doc(o) for o in orders],
        "totalOrders": len(orders),
        "totalSpent": total_spent,
    })
    return {"success": True, "user": user}


@app.put("/api/auth/updateprofile")
def update_profile(body: ProfileUpdate, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    update = body.model_dump(exclude_none=True)
    update["updatedAt"] = datetime.now(timezone.utc)
    db["users"].update_one({"_id": current_user["_id"]}, {"$set": update})
    user = db["users"].find_one({"_id": current_user["_id"]})
    return {"success": True, "user": public_user(user)}


# Products
@app.get("/api/products")
def list_products(category: Optional[str] = None, search: Optional[str] = None, sort: Optional[str] = None, db=Depends(get_db)):
    query = {}
    if category:
        query["category"] = category
    if search:
        query["$or"] = [
            {"name": {"$regex": search, "$options": "i"}},
            {"description": {"$regex": search, "$options": "i"}},
        ]
    sort_spec = [("createdAt", DESCENDING)]
    if sort == "price-asc":
        sort_spec = [("price", ASCENDING)]
    elif sort == "price-desc":
        sort_spec = [("price", DESCENDING)]
    elif sort == "rating":
        sort_spec = [("rating", DESCENDING)]
    products = [serialize_doc(p) for p in db["products"].find(query).sort(sort_spec)]
    return {"success": True, "count": len(products), "products": products}


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    p = db["products"].find_one({"_id": product_object_id(product_id)})
    if not p:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"success": True, "product": serialize_doc(p)}


@app.post("/api/products", status_code=201)
def create_product(body: ProductCreate, current_user: dict = Depends(get_admin_user), db=Depends(get_db)):
    doc = body.model_dump()
    now = datetime.now(timezone.utc)
    doc.update({"createdAt": now, "updatedAt": now})
    db["products"].insert_one(doc)
    return {"success": True, "product": serialize_doc(doc)}


@app.put("/api/products/{product_id}")
def update_product(product_id: str, body: ProductUpdate, current_user: dict = Depends(get_admin_user), db=Depends(get_db)):
    oid = product_object_id(product_id)
    if not db["products"].find_one({"_id": oid}):
        raise HTTPException(status_code=404, detail="Product not found")
    update = body.model_dump(exclude_none=True)
    update["updatedAt"] = datetime.now(timezone.utc)
    db["products"].update_one({"_id": oid}, {"$set": update})
    return {"success": True, "product": serialize_doc(db["products"].find_one({"_id": oid}))}


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, current_user: dict = Depends(get_admin_user), db=Depends(get_db)):
    oid = product_object_id(product_id)
    if not db["products"].find_one({"_id": oid}):
        raise HTTPException(status_code=404, detail="Product not found")
    db["products"].delete_one({"_id": oid})
    return {"success": True, "message": "Product deleted successfully"}


# Orders
app.include_router(orders_router)


# Health
@app.get("/api/health")
def health():
    response = {
        "success": True,
        "message": "Server is running",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": database.DATABASE_NAME,
        "collections": [],
    }
    try:
        if database.db is not None:
            response["collections"] = database.db.list_collection_names()[:10]
    except Exception as e:
        response["error"] = str(e)[:120]
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "5000")))
