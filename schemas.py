"""
Database Schemas for the Storefront API

Each storage model below corresponds to a MongoDB collection
(User -> "users", Category -> "categories", Product -> "products",
Order -> "orders"). Request models accept camelCase JSON.
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional, get_args

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, computed_field
from pydantic.alias_generators import to_camel

Role = Literal["user", "admin"]
ROLE_USER = "user"
ROLE_ADMIN = "admin"

OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
ORDER_STATUSES = get_args(OrderStatus)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Document(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ===================== Storage models =====================

class User(Document):
    email: EmailStr = Field(..., description="Unique email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    name: str = Field(..., description="Display name")
    role: Role = ROLE_USER


class Category(Document):
    name: str = Field(..., description="Category name")
    description: str = ""


class Review(Document):
    id: ObjectId = Field(default_factory=ObjectId, alias="_id")
    user_id: ObjectId = Field(..., description="Author reference")
    user_name: str = Field(..., description="Author name at review time")
    rating: int = Field(..., ge=1, le=5)
    comment: str
    created_at: datetime = Field(default_factory=_now)


class Product(Document):
    name: str
    description: str = ""
    price: float = Field(..., gt=0)
    stock: int = Field(0, ge=0)
    category_id: ObjectId = Field(..., description="Reference to category _id")
    reviews: List[Review] = []


class OrderItem(Document):
    product_id: ObjectId
    quantity: int = Field(..., ge=1)
    price: float = Field(..., description="Unit price at order time")


class Order(Document):
    user_id: ObjectId = Field(..., description="Owning user")
    items: List[OrderItem] = Field(..., min_length=1)
    status: OrderStatus = "pending"

    @computed_field
    @property
    def total(self) -> float:
        total = 0.0
        for item in self.items:
            total += item.price * item.quantity
        return total


# ===================== Request models =====================

class RegisterRequest(RequestModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1)


class LoginRequest(RequestModel):
    email: EmailStr
    password: str


class UserUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None


class CategoryCreate(RequestModel):
    name: str = Field(..., min_length=1)
    description: str = ""


class CategoryUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None


class ProductCreate(RequestModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    price: float = Field(..., gt=0)
    stock: int = Field(0, ge=0)
    category_id: str


class ProductUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    stock: Optional[int] = Field(None, ge=0)
    category_id: Optional[str] = None


class ReviewCreate(RequestModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


class OrderLine(RequestModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class OrderCreate(RequestModel):
    items: List[OrderLine] = Field(..., min_length=1)


class OrderStatusUpdate(RequestModel):
    status: OrderStatus
