"""
Database Schemas for the Peripherals Store

Each Pydantic model corresponds to a MongoDB collection. The collection name is the lowercase of the class name.

Example: class Product -> collection "product"

Computed views (order totals, statistics) live here too but are never persisted.
"""
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator
from datetime import datetime

Role = Literal["user", "admin"]
OrderStatus = Literal["pending", "shipped", "delivered", "cancelled"]

ORDER_STATUSES = ("pending", "shipped", "delivered", "cancelled")

# Core domain models

class User(BaseModel):
    id: Optional[str] = None
    name: str
    email: str
    password_hash: str = ""
    role: Role = "user"
    address: str = ""
    phone: str = ""
    bio: str = ""
    created_at: Optional[datetime] = None

    def public(self) -> "PublicUser":
        return PublicUser(**self.model_dump(exclude={"password_hash"}))

class PublicUser(BaseModel):
    id: Optional[str] = None
    name: str
    email: str
    role: Role = "user"
    address: str = ""
    phone: str = ""
    bio: str = ""
    created_at: Optional[datetime] = None

class Category(BaseModel):
    id: Optional[str] = None
    name: str
    description: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class Review(BaseModel):
    id: Optional[str] = None
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field("", max_length=500)
    created_at: Optional[datetime] = None

class Product(BaseModel):
    id: Optional[str] = None
    category_id: str
    name: str
    description: str = ""
    price: float = Field(..., gt=0)
    stock: int = Field(0, ge=0)
    reviews: List[Review] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class OrderItem(BaseModel):
    product_id: str
    quantity: int = Field(..., gt=0)
    # Filled in by pricing at read time, never stored.
    unit_price: float = 0.0
    line_total: float = 0.0

class Order(BaseModel):
    id: Optional[str] = None
    user_id: str
    items: List[OrderItem]
    status: OrderStatus = "pending"
    total_price: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class WishlistItem(BaseModel):
    id: Optional[str] = None
    user_id: str
    product_id: str
    created_at: Optional[datetime] = None

# Partial updates: None means "leave unchanged"

class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None

class ProductUpdate(BaseModel):
    category_id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    stock: Optional[int] = None

class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    bio: Optional[str] = None

# Statistics (computed, not persisted)

class TimeWindow(BaseModel):
    """Creation-time filter for statistics.

    A calendar year is half-open ``[start, end)``; an explicit date range is
    closed ``[start, end]``.
    """
    start: datetime
    end: datetime
    end_inclusive: bool = True

class SalesStatistics(BaseModel):
    total_orders: int = 0
    total_revenue: float = 0.0
    average_order: float = 0.0
    pending_orders: int = 0
    shipped_orders: int = 0
    delivered_orders: int = 0
    cancelled_orders: int = 0

class ProductStatistics(BaseModel):
    total_products: int = 0
    total_stock: int = 0
    out_of_stock: int = 0
    total_reviews: int = 0
    average_rating: float = 0.0
    total_categories: int = 0

class SalesTotals(BaseModel):
    """Raw sales aggregates as returned by the statistics store."""
    status_counts: dict = Field(default_factory=dict)
    total_revenue: float = 0.0

    @field_validator("status_counts")
    @classmethod
    def known_statuses_only(cls, v):
        return {k: int(n) for k, n in v.items() if k in ORDER_STATUSES}

class ProductTotals(BaseModel):
    """Raw catalog aggregates as returned by the statistics store."""
    total_products: int = 0
    total_stock: int = 0
    out_of_stock: int = 0
    total_reviews: int = 0
    rating_sum: float = 0.0
    rating_count: int = 0
