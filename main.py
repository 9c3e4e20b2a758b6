import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

import jwt
from fastapi import Body, Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database

import accounts
import addresses
import carts
import catalog
import config
import coupons
import database
import orders
import reviews
import wishlist
from database import get_database, parse_object_id
from errors import AppError
from mailer import EmailQueue
from schemas import CouponType, OrderStatus, PaymentMethod, PaymentStatus, ShippingAddress

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.email_queue = EmailQueue()
    if database.db is not None:
        database.ensure_indexes(database.db)
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
    yield
    app.state.email_queue.shutdown()


# App setup
app = FastAPI(title="Storefront API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

security = HTTPBearer()


# Error mapping
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        loc = ".".join(str(p) for p in errors[0].get("loc", ()) if p != "body")
        message = f"{loc}: {errors[0].get('msg')}" if loc else errors[0].get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"detail": message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Dependencies
def get_email_queue(request: Request) -> EmailQueue:
    return request.app.state.email_queue


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security),
                           db: Database = Depends(get_database)) -> dict:
    payload = decode_token(credentials.credentials)
    oid = parse_object_id(payload.get("sub"))
    user = db["user"].find_one({"_id": oid}) if oid else None
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


# Schemas (request)
class SignupRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    address: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None


class CategoryIn(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None


class ProductIn(BaseModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    promo_price: Optional[float] = Field(None, ge=0)
    category_id: Optional[str] = None
    images: List[str] = []
    stock: int = 0
    tags: List[str] = []
    is_active: bool = True
    is_featured: bool = False


class CouponIn(BaseModel):
    code: Optional[str] = None
    type: Optional[CouponType] = None
    value: Optional[float] = None
    free_shipping: bool = False
    min_amount: Optional[float] = None
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class CouponValidateRequest(BaseModel):
    code: Optional[str] = None
    subtotal: Optional[float] = None


class OrderItemIn(BaseModel):
    product_id: Optional[str] = None
    quantity: Optional[int] = None


class OrderCreate(BaseModel):
    items: List[OrderItemIn] = []
    coupon_code: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    payment_method: Optional[PaymentMethod] = None


class OrderStatusUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None


class ReviewIn(BaseModel):
    product_id: Optional[str] = None
    user_id: Optional[str] = None
    rating: Optional[float] = None
    comment: Optional[str] = None


class CartItemIn(BaseModel):
    user_id: Optional[str] = None
    product_id: Optional[str] = None
    quantity: Optional[int] = None


class AddressIn(BaseModel):
    label: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    is_default: Optional[bool] = None


class WishlistItemIn(BaseModel):
    product_id: Optional[str] = None


# Health and helpers
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


# Auth
@app.post("/auth/signup")
def signup(payload: SignupRequest, db: Database = Depends(get_database),
           email_queue: EmailQueue = Depends(get_email_queue)):
    return accounts.signup(db, email_queue, payload.first_name, payload.last_name, payload.email,
                           payload.password, payload.address)


@app.get("/auth/verify-email")
def verify_email(token: Optional[str] = None, db: Database = Depends(get_database),
                 email_queue: EmailQueue = Depends(get_email_queue)):
    accounts.verify_email(db, email_queue, token)
    if config.FRONT_SERVER_URL:
        return RedirectResponse(f"{config.FRONT_SERVER_URL}/auth/signin")
    return PlainTextResponse("Email verified, your account is now active. You can log in.")


@app.post("/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_database)):
    return accounts.login(db, payload.email, payload.password)


# Users
@app.get("/users/{user_id}")
async def get_profile(user_id: str, db: Database = Depends(get_database),
                      user: dict = Depends(get_current_user)):
    return accounts.get_profile(db, user_id)


@app.put("/users/{user_id}")
async def update_profile(user_id: str, payload: ProfileUpdate, db: Database = Depends(get_database),
                         user: dict = Depends(get_current_user)):
    return accounts.update_profile(db, user_id, payload.model_dump(exclude_unset=True))


# Categories
@app.post("/categories", status_code=201)
def create_category(payload: CategoryIn, db: Database = Depends(get_database)):
    return catalog.create_category(db, payload.name, payload.slug, payload.description)


@app.get("/categories")
def list_categories(db: Database = Depends(get_database)):
    return catalog.list_categories(db)


@app.get("/categories/{category_id}")
def get_category(category_id: str, db: Database = Depends(get_database)):
    return catalog.get_category(db, category_id)


# Products
@app.post("/products", status_code=201)
def create_product(payload: ProductIn, db: Database = Depends(get_database)):
    return catalog.create_product(db, payload.model_dump())


@app.get("/products")
def list_products(category: Optional[str] = None, search: Optional[str] = None, featured: Optional[bool] = None,
                  db: Database = Depends(get_database)):
    return catalog.list_products(db, category=category, search=search, featured=featured)


@app.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_database)):
    return catalog.get_product(db, product_id)


# Coupons
@app.post("/coupons", status_code=201)
def create_coupon(payload: CouponIn, db: Database = Depends(get_database)):
    return coupons.create_coupon(
        db,
        code=payload.code,
        coupon_type=payload.type.value if payload.type else None,
        value=payload.value,
        free_shipping=payload.free_shipping,
        min_amount=payload.min_amount,
        is_active=payload.is_active,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )


@app.post("/coupons/validate")
def validate_coupon(payload: CouponValidateRequest, db: Database = Depends(get_database)):
    return coupons.validate_coupon(db, payload.code, payload.subtotal)


# Orders
@app.post("/orders", status_code=201)
async def create_order(payload: OrderCreate, db: Database = Depends(get_database),
                       user: dict = Depends(get_current_user)):
    return orders.create_order(
        db,
        user_id=str(user["_id"]),
        items=[item.model_dump() for item in payload.items],
        payment_method=payload.payment_method.value if payload.payment_method else None,
        coupon_code=payload.coupon_code,
        shipping_address=payload.shipping_address.model_dump() if payload.shipping_address else None,
    )


@app.get("/orders/user/{user_id}")
async def list_user_orders(user_id: str, db: Database = Depends(get_database),
                           user: dict = Depends(get_current_user)):
    return orders.list_user_orders(db, user_id)


@app.get("/orders")
async def list_orders(db: Database = Depends(get_database), user: dict = Depends(get_current_user)):
    return orders.list_orders(db)


@app.patch("/orders/{order_id}/status")
async def update_order_status(order_id: str, payload: OrderStatusUpdate, db: Database = Depends(get_database),
                              user: dict = Depends(get_current_user)):
    return orders.update_order_status(
        db,
        order_id,
        status=payload.status.value if payload.status else None,
        payment_status=payload.payment_status.value if payload.payment_status else None,
    )


# Reviews
@app.post("/reviews", status_code=201)
def create_review(payload: ReviewIn, db: Database = Depends(get_database)):
    return reviews.upsert_review(db, payload.product_id, payload.rating, payload.user_id, payload.comment)


@app.get("/reviews/product/{product_id}")
def list_product_reviews(product_id: str, db: Database = Depends(get_database)):
    return reviews.list_product_reviews(db, product_id)


@app.delete("/reviews/{review_id}")
def delete_review(review_id: str, db: Database = Depends(get_database)):
    reviews.delete_review(db, review_id)
    return {"message": "Review deleted"}


# Cart
@app.get("/cart/user/{user_id}")
def get_cart(user_id: str, db: Database = Depends(get_database)):
    return carts.get_cart(db, user_id)


@app.post("/cart/add")
def cart_add(item: CartItemIn, db: Database = Depends(get_database)):
    cart, created = carts.add_item(db, item.user_id, item.product_id, item.quantity)
    return JSONResponse(status_code=201 if created else 200, content=jsonable_encoder(cart))


@app.put("/cart/update")
def cart_update(item: CartItemIn, db: Database = Depends(get_database)):
    return carts.update_item_quantity(db, item.user_id, item.product_id, item.quantity)


@app.delete("/cart/remove")
def cart_remove(item: CartItemIn = Body(...), db: Database = Depends(get_database)):
    return carts.remove_item(db, item.user_id, item.product_id)


@app.delete("/cart/clear/{user_id}")
def cart_clear(user_id: str, db: Database = Depends(get_database)):
    return carts.clear_cart(db, user_id)


# Addresses
@app.post("/addresses", status_code=201)
async def create_address(payload: AddressIn, db: Database = Depends(get_database),
                         user: dict = Depends(get_current_user)):
    return addresses.create_address(db, str(user["_id"]), payload.model_dump(exclude_unset=True))


@app.get("/addresses/user/{user_id}")
async def list_addresses(user_id: str, db: Database = Depends(get_database),
                         user: dict = Depends(get_current_user)):
    return addresses.list_addresses(db, user_id)


@app.patch("/addresses/{address_id}")
async def update_address(address_id: str, payload: AddressIn, db: Database = Depends(get_database),
                         user: dict = Depends(get_current_user)):
    return addresses.update_address(db, address_id, payload.model_dump(exclude_unset=True))


@app.delete("/addresses/{address_id}")
async def delete_address(address_id: str, db: Database = Depends(get_database),
                         user: dict = Depends(get_current_user)):
    addresses.delete_address(db, address_id)
    return {"message": "Address deleted"}


@app.patch("/addresses/{address_id}/default")
async def set_default_address(address_id: str, db: Database = Depends(get_database),
                              user: dict = Depends(get_current_user)):
    return addresses.set_default_address(db, address_id)


# Wishlist
@app.get("/wishlist/{user_id}")
async def get_wishlist(user_id: str, db: Database = Depends(get_database), user: dict = Depends(get_current_user)):
    return wishlist.get_wishlist(db, user_id)


@app.post("/wishlist")
async def add_to_wishlist(item: WishlistItemIn, db: Database = Depends(get_database),
                          user: dict = Depends(get_current_user)):
    result = wishlist.add_to_wishlist(db, str(user["_id"]), item.product_id)
    message = "Product added to wishlist" if result["added"] else "Product already in wishlist"
    return JSONResponse(status_code=201 if result["added"] else 200,
                        content={"message": message, "wishlist": result["wishlist"]})


@app.delete("/wishlist")
async def remove_from_wishlist(item: WishlistItemIn = Body(...), db: Database = Depends(get_database),
                               user: dict = Depends(get_current_user)):
    items = wishlist.remove_from_wishlist(db, str(user["_id"]), item.product_id)
    return {"message": "Product removed from wishlist", "wishlist": items}


@app.delete("/wishlist/clear/{user_id}")
async def clear_wishlist(user_id: str, db: Database = Depends(get_database), user: dict = Depends(get_current_user)):
    return {"message": "Wishlist cleared", "wishlist": wishlist.clear_wishlist(db, user_id)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
