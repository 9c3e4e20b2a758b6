"""
Database Schemas for the storefront

Each Pydantic model corresponds to a MongoDB collection. The collection name is the lowercase of the class name.

Example: class Product -> collection "product"

References to other documents are stored as id strings (user_id, product_id, category_id).
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

import config


class CouponType(str, Enum):
    PERCENT = "PERCENT"
    FIXED = "FIXED"
    FREE_SHIPPING = "FREE_SHIPPING"


class OrderStatus(str, Enum):
    NEW = "NEW"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"


class PaymentMethod(str, Enum):
    CARD = "CARD"
    PAYPAL = "PAYPAL"
    APPLEPAY = "APPLEPAY"
    GOOGLEPAY = "GOOGLEPAY"


# Core domain models

class User(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    hashed_password: str
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    is_verified: bool = False
    wishlist: List[str] = Field(default_factory=list)


class EmailVerificationToken(BaseModel):
    user_id: str
    token: str


class Category(BaseModel):
    name: str
    slug: str
    description: Optional[str] = None
    is_active: bool = True


class Product(BaseModel):
    name: str
    slug: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    promo_price: Optional[float] = Field(None, ge=0)
    category_id: str
    images: List[str] = Field(default_factory=list)
    stock: int = 0
    tags: List[str] = Field(default_factory=list)
    is_active: bool = True
    is_featured: bool = False
    average_rating: float = Field(0, ge=0, le=5)
    reviews_count: int = Field(0, ge=0)


class Coupon(BaseModel):
    code: str
    type: CouponType
    value: float = Field(0, ge=0)
    free_shipping: bool = False
    min_amount: float = Field(0, ge=0)
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class ShippingAddress(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    phone: Optional[str] = None


class Order(BaseModel):
    user_id: Optional[str] = None
    items: List[OrderItem]
    subtotal: float
    shipping_cost: float = 0
    discount: float = 0
    total: float
    coupon_code: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PAID
    status: OrderStatus = OrderStatus.NEW


class Review(BaseModel):
    product_id: str
    user_id: Optional[str] = None
    rating: float = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class Address(BaseModel):
    user_id: str
    label: str = "Home"
    first_name: str
    last_name: str
    phone: str
    line1: str
    line2: Optional[str] = None
    city: str
    postal_code: str
    country: str = config.DEFAULT_COUNTRY
    is_default: bool = False
