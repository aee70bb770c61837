"""
Database Schemas and request bodies for the storefront

Collections: users, products, orders. Order documents are kept loose (items
and shipping details are stored as submitted), so only the enumerations and
the request envelopes are modelled here.
"""
from typing import Any, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, EmailStr, Field

PaymentMethod = Literal["Online", "COD", "UPI"]
PaymentStatus = Literal["Pending", "Completed", "Failed", "Refund Pending"]
OrderStatus = Literal["Order Confirmed", "Processing", "In Transit", "Delivered", "Cancelled"]

PAYMENT_METHODS = get_args(PaymentMethod)
PAYMENT_STATUSES = get_args(PaymentStatus)
ORDER_STATUSES = get_args(OrderStatus)

ProductCategory = Literal["Customized Suits", "Dry Fruits", "Rajma", "Kesar"]


# Users

class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Optional[Literal["user", "admin"]] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None


# Products

class ProductCreate(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    description: str
    category: ProductCategory
    price: float = Field(..., ge=0)
    image: str = "/products/default.jpg"
    inStock: bool = True
    stock: int = Field(100, ge=0)
    rating: float = Field(0, ge=0, le=5)
    reviews: int = 0
    customizable: bool = False
    fabricOptions: List[Literal["Cotton", "Silk", "Linen", "Wool"]] = []
    embroideryOptions: List[Literal["Traditional Kashmiri", "Minimal", "Heavy", "None"]] = []


class ProductUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[ProductCategory] = None
    price: Optional[float] = Field(None, ge=0)
    image: Optional[str] = None
    inStock: Optional[bool] = None
    stock: Optional[int] = Field(None, ge=0)


# Orders

class OrderCreate(BaseModel):
    items: Optional[List[Any]] = None
    shippingDetails: Optional[Dict[str, Any]] = None
    orderSummary: Optional[Dict[str, Any]] = None
    paymentMethod: Optional[str] = None
    paymentStatus: Optional[PaymentStatus] = None
    invoiceUrl: Optional[str] = None
    paymentDetails: Optional[Dict[str, Any]] = None


class CheckoutRequest(BaseModel):
    items: Optional[List[Any]] = None
    shippingDetails: Optional[Dict[str, Any]] = None
    orderSummary: Optional[Dict[str, Any]] = None
    successUrl: Optional[str] = None
    cancelUrl: Optional[str] = None
    customerEmail: Optional[str] = None
    paymentMethod: Optional[str] = None


class OrderUpdate(BaseModel):
    orderStatus: Optional[OrderStatus] = None
    paymentStatus: Optional[PaymentStatus] = None
    notes: Optional[str] = None


class BulkStatusUpdate(BaseModel):
    orderIds: Optional[List[str]] = None
    orderStatus: Optional[OrderStatus] = None
    paymentStatus: Optional[PaymentStatus] = None
