import logging
import os
from datetime import datetime
from typing import List, Optional, Dict, Literal

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, EmailStr, Field
from pydantic import ValidationError as ModelValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
import ledger
import lifecycle
import notifications
import store
from access import (create_access_token, get_current_user, get_optional_user, hash_password, require,
                    verify_password)
from assignment import eligible_delivery_persons, eligible_designers
from config import ALLOW_SEED, CORS_ORIGINS, LOG_LEVEL, RATE_LIMIT_MAX_ATTEMPTS, RATE_LIMIT_WINDOW_SEC
from database import collection, create_document, find_by_id, serialize, to_object_id, utcnow
from errors import DesignDenError, NotFoundError, ValidationError
from schemas import DesignerProfile, Milestone, MilestoneStatus, Product, User
from workflow import allowed_next, is_custom_order

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("designden")

app = FastAPI(title="DesignDen API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DesignDenError)
async def designden_error_handler(request: Request, exc: DesignDenError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(ModelValidationError)
async def model_error_handler(request: Request, exc: ModelValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()))
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Invalid data"))
    logger.info("rejected invalid document: %s", message)
    return JSONResponse(status_code=400, content={"success": False, "message": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.detail},
                        headers=getattr(exc, "headers", None))


# Simple in-memory rate limiting for login (per-IP)
rate_store: Dict[str, List[float]] = {}


def check_rate_limit(ip: str):
    now = datetime.now().timestamp()
    bucket = rate_store.get(ip, [])
    # drop old timestamps
    bucket = [t for t in bucket if now - t <= RATE_LIMIT_WINDOW_SEC]
    if len(bucket) >= RATE_LIMIT_MAX_ATTEMPTS:
        raise HTTPException(status_code=429, detail="Too many login attempts. Please try again later.")
    bucket.append(now)
    rate_store[ip] = bucket


def _order_response(order: dict, viewer: dict, message: Optional[str] = None):
    body = {"success": True, "order": lifecycle.order_view(order, viewer)}
    if message:
        body["message"] = message
    return body


def _views(orders, viewer):
    return [lifecycle.order_view(o, viewer) for o in orders]


# Health checks
@app.get("/")
def root():
    return {"message": "DesignDen API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
            response["database_name"] = database.db.name
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()
        else:
            response["database"] = "⚠️ Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:100]}"
    return response


# Auth
class RegisterPayload(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Literal["customer", "designer"] = "customer"
    contact_number: Optional[str] = None


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


def _auth_response(user_id: str, user: dict):
    token = create_access_token({"sub": user_id, "role": user["role"]})
    return {"success": True, "token": token,
            "user": {"_id": user_id, "name": user.get("name"), "email": user.get("email"),
                     "role": user["role"], "approved": user.get("approved", True)}}


@app.post("/api/auth/register")
def register(payload: RegisterPayload):
    if collection("user").find_one({"email": payload.email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(
        name=payload.name,
        email=payload.email,
        password_hash=hash_password(payload.password),
        role=payload.role,
        contact_number=payload.contact_number,
        designer_profile=DesignerProfile() if payload.role == "designer" else None,
    )
    user_id = create_document("user", user)
    logger.info("registered %s %s", user.role, user_id)
    return _auth_response(user_id, user.model_dump())


@app.post("/api/auth/login")
def login(payload: LoginPayload, request: Request):
    # Rate limit per IP
    ip = request.client.host if request.client else "unknown"
    check_rate_limit(ip)

    doc = collection("user").find_one({"email": payload.email})
    if not doc or not verify_password(payload.password, doc.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not doc.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account disabled")
    return _auth_response(str(doc["_id"]), doc)


@app.get("/api/auth/session")
def session(user: dict = Depends(get_current_user)):
    return {"success": True, "user": user}


# Catalog
class ProductPayload(BaseModel):
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    gender: Optional[str] = None
    price: float = Field(..., ge=0)
    sizes: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    fabrics: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    stock_quantity: int = Field(0, ge=0)
    featured: bool = False


class ProductUpdatePayload(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    gender: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    sizes: Optional[List[str]] = None
    colors: Optional[List[str]] = None
    fabrics: Optional[List[str]] = None
    images: Optional[List[str]] = None
    stock_quantity: Optional[int] = Field(None, ge=0)
    featured: Optional[bool] = None


class StockPayload(BaseModel):
    stock_quantity: int = Field(..., validation_alias=AliasChoices("stock_quantity", "stockQuantity"))


@app.get("/api/shop/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None, gender: Optional[str] = None,
                  min_price: Optional[float] = None, max_price: Optional[float] = None,
                  in_stock: Optional[bool] = None):
    items = store.list_products(q=q, category=category, gender=gender, min_price=min_price,
                                max_price=max_price, in_stock=in_stock)
    return [serialize(it) for it in items]


@app.get("/api/shop/featured")
def featured_products():
    return {"success": True, "products": [serialize(p) for p in store.featured_products()]}


# Reviews
class ReviewPayload(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=200)
    comment: Optional[str] = Field(None, max_length=2000)
    order_id: Optional[str] = Field(None, validation_alias=AliasChoices("order_id", "orderId"))


@app.get("/api/products/{product_id}/reviews")
def product_reviews(product_id: str, limit: int = 20):
    result = store.list_reviews(product_id, limit=limit)
    return {"success": True, "reviews": [serialize(r) for r in result["reviews"]], "stats": result["stats"]}


@app.get("/api/products/{product_id}/can-review")
def can_review(product_id: str, user: Optional[dict] = Depends(get_optional_user)):
    return {"success": True, **store.review_eligibility(user, product_id)}


@app.post("/api/products/{product_id}/reviews")
def create_review(product_id: str, payload: ReviewPayload, user: dict = Depends(require("review.write"))):
    review = store.create_review(user, product_id, payload.rating, payload.title, payload.comment, payload.order_id)
    return {"success": True, "review": serialize(review)}


@app.put("/api/reviews/{review_id}")
def update_review(review_id: str, payload: ReviewPayload, user: dict = Depends(require("review.write"))):
    review = store.update_review(user, review_id, payload.rating, payload.title, payload.comment)
    return {"success": True, "review": serialize(review)}


@app.delete("/api/reviews/{review_id}")
def delete_review(review_id: str, user: dict = Depends(require("review.moderate"))):
    store.delete_review(user, review_id)
    return {"success": True, "message": "Review deleted"}


@app.post("/api/reviews/{review_id}/helpful")
def mark_helpful(review_id: str, user: dict = Depends(require("review.vote"))):
    return {"success": True, "helpfulCount": store.toggle_helpful(user["_id"], review_id)}


@app.get("/api/shop/products/{product_id}")
def get_product(product_id: str):
    return serialize(store.get_product(product_id))


@app.post("/manager/api/product")
def create_product(payload: ProductPayload, user: dict = Depends(require("product.manage"))):
    product_id = store.create_product(payload.model_dump(), user)
    return {"success": True, "_id": product_id}


@app.put("/manager/api/product/{product_id}")
def update_product(product_id: str, payload: ProductUpdatePayload, user: dict = Depends(require("product.manage"))):
    return {"success": True, "product": serialize(store.update_product(product_id, payload.model_dump(), user))}


@app.put("/manager/api/product/{product_id}/stock")
def update_stock(product_id: str, payload: StockPayload, user: dict = Depends(require("stock.manage"))):
    return {"success": True, "product": serialize(store.set_stock(product_id, payload.stock_quantity))}


@app.delete("/manager/api/product/{product_id}", dependencies=[Depends(require("stock.manage"))])
def delete_product(product_id: str):
    return {"success": True, "deleted": store.delete_product(product_id)}


@app.get("/api/designer/products")
def designer_products(user: dict = Depends(require("product.manage"))):
    return [serialize(p) for p in store.list_products(designer_id=user["_id"])]


# Designs
class DesignPayload(BaseModel):
    name: str
    category: Optional[str] = None
    fabric: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    graphic: Optional[str] = None
    custom_text: Optional[str] = None
    estimated_price: Optional[float] = Field(None, ge=0)


@app.post("/customer/designs")
def save_design(payload: DesignPayload, user: dict = Depends(require("design.save"))):
    return {"success": True, "_id": store.save_design(user["_id"], payload.model_dump())}


@app.get("/customer/designs")
def list_designs(user: dict = Depends(require("design.save"))):
    return {"success": True, "designs": [serialize(d) for d in store.list_designs(user["_id"])]}


# Wishlist
class WishlistPayload(BaseModel):
    product_id: Optional[str] = Field(None, validation_alias=AliasChoices("product_id", "productId"))
    design_id: Optional[str] = Field(None, validation_alias=AliasChoices("design_id", "designId"))


@app.post("/customer/wishlist/add")
def add_wishlist(payload: WishlistPayload, user: dict = Depends(require("wishlist.use"))):
    return {"success": True, **store.add_to_wishlist(user["_id"], payload.product_id, payload.design_id)}


@app.get("/customer/wishlist/list")
def get_wishlist(user: dict = Depends(require("wishlist.use"))):
    return {"success": True, "wishlist": [serialize(w) for w in store.list_wishlist(user["_id"])]}


@app.delete("/customer/wishlist/remove/{wish_id}")
def remove_wishlist(wish_id: str, user: dict = Depends(require("wishlist.use"))):
    return {"success": True, "deleted": store.remove_from_wishlist(user["_id"], wish_id)}


# Cart
class CartAddPayload(BaseModel):
    product_id: Optional[str] = Field(None, validation_alias=AliasChoices("product_id", "productId"))
    design_id: Optional[str] = Field(None, validation_alias=AliasChoices("design_id", "designId"))
    quantity: int = Field(1, ge=1)
    size: Optional[str] = None
    color: Optional[str] = None


class CartUpdatePayload(BaseModel):
    quantity: int = Field(..., ge=1)


@app.get("/api/customer/cart")
def get_cart(user: dict = Depends(require("cart.use"))):
    return {"success": True, "cart": serialize(store.get_cart(user["_id"]))}


@app.post("/api/customer/cart")
def add_to_cart(payload: CartAddPayload, user: dict = Depends(require("cart.use"))):
    cart = store.add_to_cart(user["_id"], **payload.model_dump())
    return {"success": True, "cart": serialize(cart)}


@app.put("/api/customer/cart/{item_id}")
def update_cart_item(item_id: str, payload: CartUpdatePayload, user: dict = Depends(require("cart.use"))):
    return {"success": True, "cart": serialize(store.update_cart_item(user["_id"], item_id, payload.quantity))}


@app.delete("/api/customer/cart/{item_id}")
def remove_cart_item(item_id: str, user: dict = Depends(require("cart.use"))):
    return {"success": True, "cart": serialize(store.remove_cart_item(user["_id"], item_id))}


# Checkout and customer orders
class AddressPayload(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = Field(None, validation_alias=AliasChoices("zip_code", "zipCode", "pincode"))


class SavedAddressPayload(AddressPayload):
    is_default: bool = Field(False, validation_alias=AliasChoices("is_default", "isDefault"))


@app.get("/api/customer/addresses")
def list_addresses(user: dict = Depends(require("address.manage"))):
    return {"success": True, "addresses": store.list_addresses(user["_id"])}


@app.post("/api/customer/addresses")
def add_address(payload: SavedAddressPayload, user: dict = Depends(require("address.manage"))):
    addresses = store.add_address(user["_id"], payload.model_dump(exclude_none=True))
    return {"success": True, "message": "Address added successfully", "addresses": addresses}


@app.put("/api/customer/addresses/{address_id}")
def update_address(address_id: str, payload: SavedAddressPayload, user: dict = Depends(require("address.manage"))):
    addresses = store.update_address(user["_id"], address_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "message": "Address updated successfully", "addresses": addresses}


@app.delete("/api/customer/addresses/{address_id}")
def delete_address(address_id: str, user: dict = Depends(require("address.manage"))):
    return {"success": True, "message": "Address deleted successfully",
            "addresses": store.delete_address(user["_id"], address_id)}


class CheckoutPayload(BaseModel):
    shipping_address: Optional[AddressPayload] = Field(
        None, validation_alias=AliasChoices("shipping_address", "shippingAddress"))
    payment_method: Literal["card", "upi", "netbanking", "cod", "wallet"] = Field(
        "card", validation_alias=AliasChoices("payment_method", "paymentMethod"))


class CancelPayload(BaseModel):
    reason: Optional[str] = None


@app.post("/customer/checkout")
def checkout(payload: CheckoutPayload, user: dict = Depends(require("checkout"))):
    address = payload.shipping_address.model_dump() if payload.shipping_address else None
    order = store.checkout(user, address, payload.payment_method)
    return _order_response(order, user, "Order placed successfully")


@app.get("/customer/orders")
def customer_orders(user: dict = Depends(require("order.customer"))):
    return {"success": True, "orders": _views(lifecycle.list_orders(user_id=user["_id"]), user)}


def _own_order(order_id: str, user: dict) -> dict:
    order = lifecycle.load_order(order_id)
    if order.get("user_id") != user["_id"]:
        raise NotFoundError("Order not found")
    return order


@app.get("/customer/order/{order_id}")
def customer_order(order_id: str, user: dict = Depends(require("order.customer"))):
    return _order_response(_own_order(order_id, user), user)


@app.get("/customer/order/{order_id}/tracking")
def customer_tracking(order_id: str, user: dict = Depends(require("order.customer"))):
    return {"success": True, "tracking": lifecycle.tracking(_own_order(order_id, user))}


@app.post("/customer/order/{order_id}/cancel")
def customer_cancel(order_id: str, payload: CancelPayload = CancelPayload(),
                    user: dict = Depends(require("order.customer"))):
    order = lifecycle.cancel(order_id, user, payload.reason)
    return _order_response(order, user, "Order cancelled successfully")


# Manager / admin order handling
class AssignDesignerPayload(BaseModel):
    designer_id: str = Field(..., validation_alias=AliasChoices("designer_id", "designerId"))


class DeliverySlotPayload(BaseModel):
    date: Optional[datetime] = None
    time_slot: Optional[str] = Field(None, validation_alias=AliasChoices("time_slot", "timeSlot"))


class AssignDeliveryPayload(BaseModel):
    delivery_person_id: str = Field(..., validation_alias=AliasChoices("delivery_person_id", "deliveryPersonId"))
    delivery_slot: Optional[DeliverySlotPayload] = Field(
        None, validation_alias=AliasChoices("delivery_slot", "deliverySlot"))


class ShipPayload(BaseModel):
    tracking_number: Optional[str] = Field(None, validation_alias=AliasChoices("tracking_number", "trackingNumber"))


class DeliverPayload(BaseModel):
    otp: str


class StatusPayload(BaseModel):
    status: str
    otp: Optional[str] = None
    note: Optional[str] = None


@app.get("/manager/orders")
def manager_orders(status: Optional[str] = None, user: dict = Depends(require("order.view_all"))):
    return {"success": True, "orders": _views(lifecycle.list_orders(status=status), user)}


@app.get("/manager/order/{order_id}")
def manager_order(order_id: str, user: dict = Depends(require("order.view_all"))):
    order = lifecycle.load_order(order_id)
    body = _order_response(order, user)
    body["nextStatuses"] = [s.value for s in allowed_next(order["status"], is_custom_order(order))]
    return body


@app.post("/manager/order/{order_id}/claim")
def claim_order(order_id: str, user: dict = Depends(require("order.claim"))):
    return _order_response(lifecycle.claim(order_id, user), user, "Order assigned to manager")


@app.post("/manager/order/{order_id}/assign")
def assign_designer(order_id: str, payload: AssignDesignerPayload,
                    user: dict = Depends(require("order.assign_designer"))):
    order = lifecycle.assign_designer(order_id, payload.designer_id, user)
    return _order_response(order, user, "Order assigned to designer successfully")


@app.post("/manager/order/{order_id}/assign-delivery")
def assign_delivery(order_id: str, payload: AssignDeliveryPayload,
                    user: dict = Depends(require("order.assign_delivery"))):
    slot = payload.delivery_slot.model_dump() if payload.delivery_slot else None
    order = lifecycle.assign_delivery(order_id, payload.delivery_person_id, user, slot)
    return _order_response(order, user, "Order assigned to delivery person successfully")


@app.post("/manager/order/{order_id}/ship")
def manager_ship(order_id: str, payload: ShipPayload = ShipPayload(), user: dict = Depends(require("order.ship"))):
    return _order_response(lifecycle.ship(order_id, user, payload.tracking_number), user, "Order shipped")


@app.post("/manager/order/{order_id}/deliver")
def manager_deliver(order_id: str, payload: DeliverPayload, user: dict = Depends(require("order.deliver"))):
    return _order_response(lifecycle.deliver(order_id, user, payload.otp), user, "Order delivered successfully")


@app.post("/manager/order/{order_id}/cancel")
def manager_cancel(order_id: str, payload: CancelPayload = CancelPayload(),
                   user: dict = Depends(require("order.cancel"))):
    return _order_response(lifecycle.cancel(order_id, user, payload.reason), user, "Order cancelled")


@app.put("/admin/order/{order_id}/status")
def admin_set_status(order_id: str, payload: StatusPayload, user: dict = Depends(require("order.set_status"))):
    order = lifecycle.set_status(order_id, user, payload.status, otp=payload.otp, note=payload.note)
    return _order_response(order, user, "Order status updated")


@app.get("/admin/orders")
def admin_orders(status: Optional[str] = None, user: dict = Depends(require("order.set_status"))):
    return {"success": True, "orders": _views(lifecycle.list_orders(status=status), user)}


@app.get("/manager/api/designers")
def list_designers(user: dict = Depends(require("staff.list"))):
    return {"success": True, "designers": [serialize(d) for d in eligible_designers()]}


@app.get("/manager/api/delivery-persons")
def list_delivery_persons(user: dict = Depends(require("staff.list"))):
    return {"success": True, "deliveryPersons": [serialize(d) for d in eligible_delivery_persons()]}


# Designer work
class ProgressPayload(BaseModel):
    progress_percentage: int = Field(..., validation_alias=AliasChoices("progress_percentage", "progressPercentage"))
    note: Optional[str] = None


class CompletePayload(BaseModel):
    note: Optional[str] = None


class AvailabilityPayload(BaseModel):
    availability_status: Literal["available", "busy", "not_accepting"] = Field(
        ..., validation_alias=AliasChoices("availability_status", "availabilityStatus"))


@app.get("/designer/orders")
def designer_orders(status: Optional[str] = None, user: dict = Depends(require("order.design_work"))):
    return {"success": True, "orders": _views(lifecycle.list_orders(status=status, designer_id=user["_id"]), user)}


@app.post("/designer/orders/{order_id}/accept")
def designer_accept(order_id: str, user: dict = Depends(require("order.design_work"))):
    return _order_response(lifecycle.accept(order_id, user), user, "Order accepted successfully")


@app.post("/designer/orders/{order_id}/start")
def designer_start(order_id: str, user: dict = Depends(require("order.design_work"))):
    return _order_response(lifecycle.start_production(order_id, user), user, "Production started")


@app.post("/designer/orders/{order_id}/progress")
def designer_progress(order_id: str, payload: ProgressPayload, user: dict = Depends(require("order.design_work"))):
    order = lifecycle.update_progress(order_id, user, payload.progress_percentage, payload.note)
    return _order_response(order, user, "Progress updated")


class MilestonePayload(BaseModel):
    milestone: Milestone
    status: MilestoneStatus = "in_progress"
    notes: Optional[str] = None
    images: Optional[List[str]] = None


@app.get("/api/order/{order_id}/milestones")
def order_milestones(order_id: str, user: dict = Depends(require("order.milestones"))):
    return {"success": True, "milestones": [serialize(m) for m in lifecycle.list_milestones(order_id, user)]}


@app.post("/api/order/{order_id}/milestones")
def record_milestone(order_id: str, payload: MilestonePayload, user: dict = Depends(require("order.design_work"))):
    order = lifecycle.record_milestone(order_id, user, payload.milestone, payload.status, payload.notes, payload.images)
    body = _order_response(order, user, "Milestone updated")
    body["progress"] = order["progress_percentage"]
    return body


@app.post("/designer/orders/{order_id}/complete")
def designer_complete(order_id: str, payload: CompletePayload = CompletePayload(),
                      user: dict = Depends(require("order.design_work"))):
    order = lifecycle.complete_production(order_id, user, payload.note)
    return _order_response(order, user, "Production completed. Order sent back to manager for delivery assignment.")


@app.put("/designer/availability")
def designer_availability(payload: AvailabilityPayload, user: dict = Depends(require("designer.availability"))):
    if user.get("designer_profile"):
        changes = {"designer_profile.availability_status": payload.availability_status}
    else:
        changes = {"designer_profile": DesignerProfile(availability_status=payload.availability_status).model_dump()}
    changes["updated_at"] = utcnow()
    collection("user").update_one({"_id": to_object_id(user["_id"])}, {"$set": changes})
    return {"success": True, "designer": serialize(find_by_id("user", user["_id"]))}


# Delivery work
@app.get("/delivery/orders")
def delivery_orders(status: Optional[str] = None, user: dict = Depends(require("order.delivery_work"))):
    orders = lifecycle.list_orders(status=status, delivery_person_id=user["_id"])
    return {"success": True, "orders": _views(orders, user)}


@app.post("/delivery/orders/{order_id}/out-for-delivery")
def delivery_out(order_id: str, payload: ShipPayload = ShipPayload(),
                 user: dict = Depends(require("order.delivery_work"))):
    return _order_response(lifecycle.ship(order_id, user, payload.tracking_number), user, "Order is out for delivery")


@app.post("/delivery/orders/{order_id}/deliver")
def delivery_deliver(order_id: str, payload: DeliverPayload, user: dict = Depends(require("order.delivery_work"))):
    return _order_response(lifecycle.deliver(order_id, user, payload.otp), user, "Order delivered successfully!")


# Earnings and payouts
class PayoutRequestPayload(BaseModel):
    amount: float = Field(..., gt=0)
    payment_method: Literal["bank_transfer", "upi", "paypal"] = Field(
        ..., validation_alias=AliasChoices("payment_method", "paymentMethod"))
    payment_details: dict = Field(default_factory=dict,
                                  validation_alias=AliasChoices("payment_details", "paymentDetails"))


class PayoutActionPayload(BaseModel):
    action: Literal["approve", "reject", "process", "complete"]
    reason: Optional[str] = None
    transaction_id: Optional[str] = Field(None, validation_alias=AliasChoices("transaction_id", "transactionId"))


@app.get("/api/platform/commission-info")
def commission_info():
    return {"success": True, "commission": ledger.commission_info()}


@app.get("/designer/earnings")
def designer_earnings(user: dict = Depends(require("earnings.view"))):
    summary = ledger.earnings_summary(user["_id"])
    summary["earnings"] = [serialize(e) for e in summary["earnings"]]
    return {"success": True, "earnings": summary}


@app.post("/designer/payout/request")
def request_payout(payload: PayoutRequestPayload, user: dict = Depends(require("payout.request"))):
    request = ledger.create_payout_request(user["_id"], payload.amount, payload.payment_method,
                                           payload.payment_details)
    return {"success": True, "request": serialize(request), "message": "Payout request submitted"}


@app.get("/designer/payout/requests")
def designer_payouts(user: dict = Depends(require("earnings.view"))):
    return {"success": True, "requests": [serialize(r) for r in ledger.list_payout_requests(user["_id"])]}


@app.get("/manager/payouts")
def manager_payouts(status: Optional[str] = None, user: dict = Depends(require("payout.process"))):
    return {"success": True, "requests": [serialize(r) for r in ledger.list_payout_requests(status=status)]}


@app.post("/manager/payout/{request_id}/process")
def process_payout(request_id: str, payload: PayoutActionPayload, user: dict = Depends(require("payout.process"))):
    request = ledger.process_payout(request_id, payload.action, user, payload.reason, payload.transaction_id)
    return {"success": True, "request": serialize(request), "message": f"Payout {request['status']}"}


# Feedback
class FeedbackPayload(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)
    order_id: Optional[str] = Field(None, validation_alias=AliasChoices("order_id", "orderId"))


@app.post("/feedback/submit")
def submit_feedback(payload: FeedbackPayload, user: dict = Depends(get_current_user)):
    feedback_id = store.submit_feedback(user, payload.rating, payload.comment, payload.order_id)
    return {"success": True, "_id": feedback_id, "message": "Thank you for your feedback"}


@app.get("/admin/feedbacks")
def list_feedback(user: dict = Depends(require("feedback.view"))):
    return {"success": True, "feedbacks": [serialize(f) for f in store.list_feedback()]}


# Notifications
@app.get("/api/notifications")
def my_notifications(unread: bool = False, user: dict = Depends(get_current_user)):
    items = notifications.list_notifications(user["_id"], unread_only=unread)
    return {"success": True, "notifications": [serialize(n) for n in items]}


@app.post("/api/notifications/{notification_id}/read")
def read_notification(notification_id: str, user: dict = Depends(get_current_user)):
    return {"success": True, "read": notifications.mark_read(notification_id, user["_id"])}


# Order chat
class MessagePayload(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)


@app.get("/api/order/{order_id}/messages")
def get_messages(order_id: str, user: dict = Depends(require("chat"))):
    return {"success": True, "messages": [serialize(m) for m in notifications.get_messages(order_id, user)]}


@app.post("/api/order/{order_id}/messages")
def send_message(order_id: str, payload: MessagePayload, user: dict = Depends(require("chat"))):
    return {"success": True, "message": notifications.send_message(order_id, user, payload.message)}


@app.get("/api/order/{order_id}/messages/unread")
def unread_messages(order_id: str, user: dict = Depends(require("chat"))):
    return {"success": True, "unreadCount": notifications.unread_count(order_id, user["_id"])}


# Users (admin)
class ApprovalPayload(BaseModel):
    approved: bool


@app.get("/admin/users")
def list_users(role: Optional[str] = None, user: dict = Depends(require("user.manage"))):
    users = database.get_documents("user", {"role": role} if role else {})
    return {"success": True, "users": [serialize(u) for u in users]}


@app.put("/admin/users/{user_id}/approval")
def set_approval(user_id: str, payload: ApprovalPayload, user: dict = Depends(require("user.manage"))):
    target = find_by_id("user", user_id)
    if not target:
        raise NotFoundError("User not found")
    if target.get("role") not in ("designer", "manager"):
        raise ValidationError("Only designers and managers need approval")
    collection("user").update_one({"_id": target["_id"]}, {"$set": {"approved": payload.approved, "updated_at": utcnow()}})
    logger.info("user %s approval set to %s by %s", user_id, payload.approved, user["_id"])
    return {"success": True, "user": serialize(find_by_id("user", user_id))}


# Seed demo staff and catalog
@app.post("/api/auth/seed")
def seed_users(caller: Optional[dict] = Depends(get_optional_user)):
    if not ALLOW_SEED:
        raise HTTPException(status_code=403, detail="Seeding is disabled")
    if collection("user").find_one({"role": "admin"}) and (caller is None or caller["role"] != "admin"):
        raise HTTPException(status_code=403, detail="Only an admin may re-seed")
    from faker import Faker
    fake = Faker()
    created = {}
    staff = [
        ("admin", "Admin", "admin@designden.io", "Admin@123"),
        ("manager", "Manager", "manager@designden.io", "Manager@123"),
    ]
    for role, name, email, pwd in staff:
        if not collection("user").find_one({"role": role}):
            create_document("user", User(name=name, email=email, password_hash=hash_password(pwd), role=role))
            created[role] = created.get(role, 0) + 1

    wanted = {"designer": 5, "delivery": 3}
    for role, count in wanted.items():
        existing = collection("user").count_documents({"role": role})
        for _ in range(max(0, count - existing)):
            profile = None
            if role == "designer":
                profile = DesignerProfile(
                    bio=fake.sentence(nb_words=12),
                    specializations=fake.random_elements(["ethnic", "streetwear", "formal", "bridal", "kidswear"],
                                                         length=2, unique=True),
                    rating=round(fake.pyfloat(min_value=3.5, max_value=5), 1),
                    turnaround_days=fake.random_int(min=3, max=14),
                )
            user = User(name=fake.name(), email=fake.unique.email(), password_hash=hash_password("Password@123"),
                        role=role, designer_profile=profile)
            create_document("user", user)
            created[role] = created.get(role, 0) + 1

    if collection("product").count_documents({}) == 0:
        for _ in range(8):
            product = Product(
                name=f"{fake.color_name()} {fake.random_element(['Kurta', 'Shirt', 'Dress', 'Hoodie', 'Saree'])}",
                description=fake.sentence(),
                category=fake.random_element(["tops", "bottoms", "ethnic", "outerwear"]),
                gender=fake.random_element(["men", "women", "kids"]),
                price=float(fake.random_int(min=499, max=4999)),
                sizes=["S", "M", "L", "XL"],
                colors=[fake.color_name() for _ in range(3)],
                stock_quantity=fake.random_int(min=5, max=50),
            )
            create_document("product", product)
            created["product"] = created.get("product", 0) + 1
    return {"success": True, "created": created}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
