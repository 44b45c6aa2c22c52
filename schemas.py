"""
Database Schemas for the SwapCell phone marketplace

Each Pydantic model corresponds to a MongoDB collection (lowercased class name).
References between documents are stored as stringified ObjectIds.

Collections:
- user
- phone
- cart
- order
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

# ---------- Enumerations ----------

class Role(str, Enum):
    buyer = "buyer"
    seller = "seller"
    admin = "admin"


class ListingStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class OrderStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"


class Brand(str, Enum):
    apple = "Apple"
    samsung = "Samsung"
    google = "Google"
    oneplus = "OnePlus"
    xiaomi = "Xiaomi"
    huawei = "Huawei"
    sony = "Sony"
    lg = "LG"
    motorola = "Motorola"
    nokia = "Nokia"
    other = "Other"


class Condition(str, Enum):
    excellent = "Excellent"
    very_good = "Very Good"
    good = "Good"
    fair = "Fair"


MOBILE_PATTERN = r"^(\+94|0)[0-9]{9}$"

# ---------- Core Domain Schemas ----------

class Document(BaseModel):
    model_config = ConfigDict(use_enum_values=True)


class User(Document):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Login email, stored lowercased")
    password_hash: str = Field(..., description="Hashed password (bcrypt)")
    phone: Optional[str] = Field(None, description="Contact number")
    role: Role = Field(Role.buyer, description="buyer|seller|admin")
    profile_picture: Optional[str] = Field(None, description="Public URL of profile image")
    rating: float = Field(0, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    favorites: List[str] = Field(default_factory=list, description="Favorite phone ids")
    is_active: bool = Field(True, description="Inactive accounts cannot log in")
    last_login_at: Optional[datetime] = None
    password_reset_code: Optional[str] = None
    password_reset_expires: Optional[datetime] = None


class PhoneSpecs(BaseModel):
    ram: Optional[str] = None
    storage: Optional[str] = None
    battery: Optional[str] = None
    camera: Optional[str] = None
    processor: Optional[str] = None
    screen: Optional[str] = None
    os: Optional[str] = None


class Phone(Document):
    title: str
    brand: Brand
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    condition: Condition
    description: Optional[str] = None
    images: List[str] = Field(default_factory=list, description="Array of image URLs")
    specs: PhoneSpecs = Field(default_factory=PhoneSpecs)
    location: Optional[str] = None
    seller_id: str = Field(..., description="Owner user id (stringified ObjectId)")
    is_available: bool = Field(True, description="False once purchased or rejected")
    views: int = Field(0, ge=0)
    status: ListingStatus = Field(ListingStatus.pending, description="Moderation status")
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    admin_notes: Optional[str] = None


class CartItem(BaseModel):
    phone_id: str
    quantity: int = Field(1, ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)


class DeliveryAddress(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    district: Optional[str] = None
    province: Optional[str] = None


class OrderItem(BaseModel):
    phone_id: str
    seller_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price at time of purchase")


class StatusChange(Document):
    status: OrderStatus
    timestamp: datetime
    updated_by: Optional[str] = None


class Order(Document):
    order_number: str
    user_id: str
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    delivery_address: DeliveryAddress
    contact_number: str
    notes: Optional[str] = None
    status: OrderStatus = OrderStatus.pending
    status_history: List[StatusChange] = Field(default_factory=list)


# ---------- Request/Response DTOs ----------

class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: Literal["buyer", "seller"] = "buyer"
    phone: Optional[str] = None

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    profile_picture: Optional[str] = None

class ForgotPasswordRequest(BaseModel):
    email: EmailStr

class ResetPasswordRequest(BaseModel):
    email: EmailStr
    code: str
    new_password: str = Field(..., min_length=6)

class ListingCreate(BaseModel):
    title: str
    brand: Brand
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    condition: Condition
    description: Optional[str] = None
    images: List[str] = []
    specs: PhoneSpecs = PhoneSpecs()
    location: Optional[str] = None

class ListingUpdate(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    title: Optional[str] = None
    brand: Optional[Brand] = None
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    condition: Optional[Condition] = None
    description: Optional[str] = None
    images: Optional[List[str]] = None
    specs: Optional[PhoneSpecs] = None
    location: Optional[str] = None

class ApproveListingRequest(BaseModel):
    admin_notes: Optional[str] = None

class RejectListingRequest(BaseModel):
    reason: Optional[str] = None
    admin_notes: Optional[str] = None

class BatchApproveRequest(BaseModel):
    phone_ids: List[str] = []
    admin_notes: Optional[str] = None

class CartAddRequest(BaseModel):
    phone_id: str
    quantity: int = 1

class CartUpdateRequest(BaseModel):
    phone_id: str
    quantity: int

class GuestCartItem(BaseModel):
    phone_id: str
    quantity: int = Field(1, ge=1)

class MergeCartRequest(BaseModel):
    guest_items: List[GuestCartItem]

class PlaceOrderRequest(BaseModel):
    delivery_address: DeliveryAddress
    contact_number: str = Field(..., pattern=MOBILE_PATTERN)
    notes: Optional[str] = None

class OrderStatusUpdate(BaseModel):
    status: OrderStatus

class FavoriteToggleRequest(BaseModel):
    phone_id: str
