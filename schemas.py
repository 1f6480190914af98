"""
Database Schemas for DesignDen

Each Pydantic model represents a MongoDB collection. Collection name is the lowercase of the class name.
"""
from typing import Optional, List, Literal
from pydantic import BaseModel, Field, EmailStr
from datetime import datetime

Role = Literal["customer", "designer", "manager", "admin", "delivery"]
AvailabilityStatus = Literal["available", "busy", "not_accepting"]
EarningStatus = Literal["pending", "processing", "paid", "on_hold"]
PayoutStatus = Literal["pending", "approved", "processing", "completed", "rejected"]
PaymentMethod = Literal["bank_transfer", "upi", "paypal"]
# Production milestones in the order they are worked through
Milestone = Literal["design_review", "fabric_selection", "cutting", "stitching", "embroidery",
                    "finishing", "quality_check", "packaging", "ready_for_pickup"]
MilestoneStatus = Literal["pending", "in_progress", "completed"]


class PriceRange(BaseModel):
    min: float = Field(0, ge=0)
    max: float = Field(0, ge=0)


class DesignerProfile(BaseModel):
    bio: Optional[str] = None
    specializations: List[str] = Field(default_factory=list)
    rating: float = Field(0, ge=0, le=5)
    availability_status: AvailabilityStatus = "available"
    price_range: PriceRange = Field(default_factory=PriceRange)
    turnaround_days: int = Field(7, ge=1)
    portfolio: List[str] = Field(default_factory=list)


# Users collection
class User(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password_hash: str = Field(..., min_length=10)
    role: Role = "customer"
    approved: bool = True
    is_active: bool = True
    contact_number: Optional[str] = None
    designer_profile: Optional[DesignerProfile] = None


# Products collection (catalog and designer graphics)
class Product(BaseModel):
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    gender: Optional[str] = None
    price: float = Field(..., ge=0)
    sizes: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    fabrics: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    in_stock: bool = True
    stock_quantity: int = Field(0, ge=0)
    featured: bool = False
    designer_id: Optional[str] = None


# Custom designs saved from the design studio
class Design(BaseModel):
    user_id: str
    name: str
    category: Optional[str] = None
    fabric: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    graphic: Optional[str] = None
    custom_text: Optional[str] = None
    estimated_price: Optional[float] = Field(None, ge=0)
    base_price: float = Field(500, ge=0)


# Wishlist collection, one row per saved product or design
class Wishlist(BaseModel):
    user_id: str
    product_id: Optional[str] = None
    design_id: Optional[str] = None


# Product reviews, one per customer per product
class Review(BaseModel):
    product_id: str
    user_id: str
    order_id: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=200)
    comment: Optional[str] = Field(None, max_length=2000)
    verified: bool = False
    helpful: List[str] = Field(default_factory=list)


# Carts collection, one per user
class CartItem(BaseModel):
    item_id: str
    product_id: Optional[str] = None
    design_id: Optional[str] = None
    quantity: int = Field(1, ge=1)
    size: Optional[str] = None
    color: Optional[str] = None


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)


# Orders collection
class OrderItem(BaseModel):
    product_id: Optional[str] = None
    design_id: Optional[str] = None
    name: Optional[str] = None
    quantity: int = Field(..., ge=1)
    size: Optional[str] = None
    color: Optional[str] = None
    price: float = Field(..., ge=0)


class TimelineEntry(BaseModel):
    status: str
    note: Optional[str] = None
    at: datetime
    by: Optional[str] = None
    by_role: Optional[str] = None


class DeliverySlot(BaseModel):
    date: Optional[datetime] = None
    time_slot: Optional[str] = None


class ShippingAddress(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "India"


# Address book entry kept on the user document
class SavedAddress(ShippingAddress):
    address_id: str
    is_default: bool = False


class Order(BaseModel):
    order_number: str
    user_id: str
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    order_type: Literal["shop", "custom"] = "shop"
    status: str = "pending"
    payment_method: Literal["card", "upi", "netbanking", "cod", "wallet"] = "card"
    payment_status: Literal["pending", "completed", "failed", "refunded", "paid"] = "pending"
    shipping_address: Optional[ShippingAddress] = None
    manager_id: Optional[str] = None
    designer_id: Optional[str] = None
    delivery_person_id: Optional[str] = None
    progress_percentage: int = Field(0, ge=0, le=100)
    delivery_slot: Optional[DeliverySlot] = None
    tracking_number: Optional[str] = None
    otp: Optional[str] = None
    otp_verified: bool = False
    chat_enabled: bool = False
    timeline: List[TimelineEntry] = Field(default_factory=list)
    current_milestone: Optional[Milestone] = None


class ProductionMilestone(BaseModel):
    order_id: str
    designer_id: str
    milestone: Milestone
    status: MilestoneStatus = "pending"
    notes: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    completed_at: Optional[datetime] = None


# Feedback collection
class Feedback(BaseModel):
    user_id: str
    order_id: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


# Earnings collection, one row per completed custom order
class Earning(BaseModel):
    designer_id: str
    order_id: str
    order_amount: float = Field(..., ge=0)
    commission_rate: float = Field(..., ge=0, le=100)
    designer_earning: float = Field(..., ge=0)
    status: EarningStatus = "pending"
    payout_request_id: Optional[str] = None
    # id of the earning a partial payout was split off from
    split_of: Optional[str] = None


# Per-designer running total of amounts held by open payout requests
class DesignerLedger(BaseModel):
    reserved: float = 0


# Payout requests collection
class PayoutRequest(BaseModel):
    designer_id: str
    amount: float = Field(..., gt=0)
    payment_method: PaymentMethod
    payment_details: dict = Field(default_factory=dict)
    status: PayoutStatus = "pending"
    transaction_id: Optional[str] = None
    rejection_reason: Optional[str] = None
    processed_by: Optional[str] = None


class Notification(BaseModel):
    user_id: str
    order_id: Optional[str] = None
    message: str
    type: Literal["info", "success", "warning", "error"] = "info"
    read: bool = False


# Order-scoped chat between customer and designer
class Message(BaseModel):
    order_id: str
    sender_id: str
    sender_role: Literal["customer", "designer"]
    receiver_id: str
    receiver_role: Literal["customer", "designer"]
    message: str = Field(..., min_length=1, max_length=2000)
    read: bool = False
