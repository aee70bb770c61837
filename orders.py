from typing import Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

import order_service
from database import get_db, serialize_doc
from idempotency import IdempotencyStore, get_idempotency_store
from payments import PaymentGateway, get_payment_gateway
from schemas import BulkStatusUpdate, CheckoutRequest, OrderCreate, OrderUpdate
from security import get_admin_user, get_current_user
from uploads import ImageUploader, get_uploader

router = APIRouter(prefix="/api/orders", tags=["orders"])

# Fixed paths are registered before "/{order_id}" so they are matched first.


@router.post("/stripe-checkout")
def stripe_checkout(
    payload: CheckoutRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: dict = Depends(get_current_user),
    db=Depends(get_db),
    uploader: ImageUploader = Depends(get_uploader),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    store: IdempotencyStore = Depends(get_idempotency_store),
):
    def handler():
        result = order_service.create_checkout_order(db, current_user, payload.model_dump(), uploader, gateway)
        return 200, serialize_doc(result)

    status_code, body = store.ensure_idempotent(idempotency_key, current_user["id"], "/api/orders/stripe-checkout", handler)
    return JSONResponse(status_code=status_code, content=body)


@router.post("")
def create_order(
    payload: OrderCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: dict = Depends(get_current_user),
    db=Depends(get_db),
    uploader: ImageUploader = Depends(get_uploader),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    store: IdempotencyStore = Depends(get_idempotency_store),
):
    def handler():
        order = order_service.create_order(db, current_user, payload.model_dump(), uploader, gateway)
        return 201, {
            "success": True,
            "message": "Order created successfully and saved to your profile",
            "order": serialize_doc(order),
            "invoiceUrl": order["invoice"].get("url"),
            "stripeInvoiceId": order["invoice"].get("stripeId"),
        }

    status_code, body = store.ensure_idempotent(idempotency_key, current_user["id"], "/api/orders", handler)
    return JSONResponse(status_code=status_code, content=body)


@router.get("/statistics/dashboard")
def order_statistics(current_user: dict = Depends(get_admin_user), db=Depends(get_db)):
    return {"success": True, "statistics": order_service.order_statistics(db)}


@router.get("/filter/date")
def filter_by_date(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    current_user: dict = Depends(get_admin_user),
    db=Depends(get_db),
):
    result = order_service.filter_orders_by_date(db, startDate, endDate)
    result["orders"] = [serialize_doc(o) for o in result["orders"]]
    return {"success": True, **result}


@router.get("/search/customer")
def search_customer(query: Optional[str] = None, current_user: dict = Depends(get_admin_user), db=Depends(get_db)):
    orders = order_service.search_orders_by_customer(db, query)
    return {
        "success": True,
        "count": len(orders),
        "searchQuery": query,
        "orders": [serialize_doc(o) for o in orders],
    }


@router.put("/bulk/status")
def bulk_status(body: BulkStatusUpdate, current_user: dict = Depends(get_admin_user), db=Depends(get_db)):
    result = order_service.bulk_update_status(db, body.orderIds, body.orderStatus, body.paymentStatus)
    return {
        "success": True,
        "message": f"{result['modifiedCount']} orders updated successfully",
        **result,
    }


@router.get("/user")
def my_orders(current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    orders = order_service.list_user_orders(db, current_user)
    return {"success": True, "count": len(orders), "orders": [serialize_doc(o) for o in orders]}


@router.post("/{order_id}/cancel")
def cancel_order(order_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    order = order_service.cancel_order(db, order_id, current_user)
    return {"success": True, "message": "Order cancelled successfully", "order": serialize_doc(order)}


@router.get("")
def all_orders(current_user: dict = Depends(get_admin_user), db=Depends(get_db)):
    orders = order_service.list_all_orders(db)
    return {"success": True, "count": len(orders), "orders": [serialize_doc(o) for o in orders]}


@router.get("/{order_id}")
def order_detail(order_id: str, current_user: dict = Depends(get_current_user), db=Depends(get_db)):
    order = order_service.get_order_for_user(db, order_id, current_user)
    return {"success": True, "order": serialize_doc(order)}


@router.put("/{order_id}")
def update_order(order_id: str, body: OrderUpdate, current_user: dict = Depends(get_admin_user), db=Depends(get_db)):
    order = order_service.update_order(db, order_id, body.model_dump(exclude_none=True))
    return {"success": True, "order": serialize_doc(order)}


@router.delete("/{order_id}")
def delete_order(order_id: str, current_user: dict = Depends(get_admin_user), db=Depends(get_db)):
    order_service.delete_order(db, order_id)
    return {"success": True, "message": "Order deleted successfully"}
