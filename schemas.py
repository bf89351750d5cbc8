"""
Database and request schemas for the print shop.

Document models correspond to MongoDB collections; the collection name is the
snake_case of the class name (User -> "user", CartItem -> "cart_item").
References between documents are stored as string ids.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PRINTING = "PRINTING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class Size(str, Enum):
    XS = "XS"
    S = "S"
    M = "M"
    L = "L"
    XL = "XL"
    XXL = "XXL"
    XXXL = "XXXL"


class Schema(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class PageQuery(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(10, ge=1, le=100)
    search: Optional[str] = None
    sort_by: str = "created_at"
    order: str = Field("desc", description="asc|desc")


# Core domain models

class User(Schema):
    email: EmailStr
    hashed_password: str
    full_name: str
    phone: Optional[str] = None
    region: Optional[str] = None
    address: Optional[str] = None
    role: Role = Role.USER
    is_active: bool = False
    otp_code: Optional[str] = Field(None, description="Hash of the pending OTP")
    otp_expires: Optional[datetime] = None
    hashed_refresh_token: Optional[str] = None


class Product(Schema):
    name: str
    description: Optional[str] = None
    category: str


class Variant(Schema):
    product_id: str
    color: str
    size: Size
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    front_image: Optional[str] = None
    back_image: Optional[str] = None
    print_area_top: Optional[float] = None
    print_area_left: Optional[float] = None
    print_area_width: Optional[float] = None
    print_area_height: Optional[float] = None


class Design(Schema):
    front_design: Optional[Dict[str, Any]] = None
    back_design: Optional[Dict[str, Any]] = None
    front_preview_url: Optional[str] = None
    back_preview_url: Optional[str] = None


class Cart(Schema):
    user_id: str


class CartItem(Design):
    cart_id: str
    variant_id: str
    quantity: int = Field(1, ge=1)


class OrderItem(Design):
    id: str
    variant_id: str
    quantity: int = Field(1, ge=1)
    price: float = Field(..., ge=0, description="Unit price at the time of order")
    final_print_file: Optional[str] = None


class Order(Schema):
    user_id: str
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    total_price: float = Field(..., ge=0)
    customer_name: str
    customer_phone: str
    region: str
    address: str
    items: List[OrderItem]


class Asset(Schema):
    url: str
    user_id: str


# Request models

class RegisterRequest(Schema):
    full_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None
    region: Optional[str] = None
    address: Optional[str] = None
    role: Optional[str] = Field(None, description="Rejected when present")


class LoginRequest(Schema):
    email: EmailStr
    password: str


class EmailRequest(Schema):
    email: EmailStr


class VerifyOtpRequest(Schema):
    email: EmailStr
    otp_code: str = Field(..., pattern=r"^\d{6}$")


class ResetPasswordRequest(VerifyOtpRequest):
    new_password: str = Field(..., min_length=6)


class RefreshRequest(Schema):
    refresh_token: Optional[str] = Field(None, min_length=10, max_length=1000)


class ProfileUpdate(Schema):
    full_name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    region: Optional[str] = None
    address: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6)


class UserCreate(Schema):
    full_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = None
    region: Optional[str] = None
    address: Optional[str] = None
    role: Role = Role.USER
    is_active: bool = True


class UserUpdate(ProfileUpdate):
    is_active: Optional[bool] = None


class PromoteRequest(Schema):
    role: Role


class VariantIn(Schema):
    color: str
    size: Size
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    front_image: Optional[str] = None
    back_image: Optional[str] = None
    print_area_top: Optional[float] = None
    print_area_left: Optional[float] = None
    print_area_width: Optional[float] = None
    print_area_height: Optional[float] = None


class VariantCreate(VariantIn):
    product_id: str


class VariantUpdate(Schema):
    product_id: Optional[str] = None
    color: Optional[str] = None
    size: Optional[Size] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    front_image: Optional[str] = None
    back_image: Optional[str] = None
    print_area_top: Optional[float] = None
    print_area_left: Optional[float] = None
    print_area_width: Optional[float] = None
    print_area_height: Optional[float] = None


class ProductIn(Schema):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: str
    variants: List[VariantIn] = Field(default_factory=list)


class ProductUpdate(Schema):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    variants: Optional[List[VariantIn]] = None


class CartItemIn(Design):
    variant_id: str
    quantity: int = Field(1, ge=1)


class CartItemUpdate(Schema):
    quantity: int = Field(..., description="Zero or less removes the item")


class ShippingDetails(Schema):
    customer_name: str = Field(..., min_length=1)
    customer_phone: str = Field(..., pattern=r"^\+?[0-9]{7,15}$")
    region: Optional[str] = None
    address: Optional[str] = None
    delivery_address: Optional[str] = None

    def resolved(self) -> Dict[str, str]:
        return {
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "region": self.region or "Unknown",
            "address": self.address or self.delivery_address or "Unknown",
        }


class OrderItemIn(Design):
    variant_id: str
    quantity: int = Field(..., ge=1)
    price: Optional[float] = Field(None, ge=0)
    final_print_file: Optional[str] = None


class OrderCreate(ShippingDetails):
    total_price: Optional[float] = Field(None, ge=0)
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    items: List[OrderItemIn] = Field(..., min_length=1)


class OrderUpdate(Schema):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    customer_name: Optional[str] = Field(None, min_length=1)
    customer_phone: Optional[str] = Field(None, pattern=r"^\+?[0-9]{7,15}$")
    region: Optional[str] = None
    address: Optional[str] = None
    items: Optional[List[OrderItemIn]] = None


class OrderStatusUpdate(Schema):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None


class OrderItemCreate(OrderItemIn):
    order_id: str


class OrderItemUpdate(Schema):
    variant_id: Optional[str] = None
    quantity: Optional[int] = Field(None, ge=1)
    price: Optional[float] = Field(None, ge=0)
    front_design: Optional[Dict[str, Any]] = None
    back_design: Optional[Dict[str, Any]] = None
    front_preview_url: Optional[str] = None
    back_preview_url: Optional[str] = None
    final_print_file: Optional[str] = None


class AssetIn(Schema):
    url: str = Field(..., min_length=1)


class AssetUpdate(Schema):
    url: Optional[str] = Field(None, min_length=1)
