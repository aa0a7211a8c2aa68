"""
Pydantic Schemas for Request/Response Validation

Guest side: menu, order submission, order status, kitchen message.
Staff side: kitchen and caisse projections, menu and settings admin, PINs.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List
from datetime import date, datetime
from enum import Enum


# =============================================================================
# ENUMS
# =============================================================================

class OrderStatusEnum(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"


class CurrencyEnum(str, Enum):
    EUR = "EUR"
    DJF = "DJF"
    USD = "USD"


class SessionScopeEnum(str, Enum):
    ADMIN = "admin"
    SECURITY = "security"


class PinTypeEnum(str, Enum):
    ADMIN = "admin"
    SECURITY = "security"


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(BaseModel):
    """Single line of a guest order. Prices come from the menu, not the client."""
    dish_id: str = Field(..., min_length=1, examples=["5b0c8f4e-3f1a-4a43-9d2e-1f0c2b7d9a10"])
    quantity: int = Field(..., ge=1, le=99, examples=[2])
    notes: Optional[str] = Field(None, max_length=200)


class OrderCreate(BaseModel):
    """Request schema for submitting a cart."""
    table_number: str = Field(..., max_length=20, examples=["12"])
    items: List[OrderItemCreate] = Field(..., min_length=1)
    customer_message: Optional[str] = Field(None, max_length=500)

    @field_validator("table_number")
    @classmethod
    def validate_table(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Table number is required")
        return v


class StatusUpdate(BaseModel):
    status: OrderStatusEnum


class AdditionalMessageUpdate(BaseModel):
    message: str = Field(..., max_length=500)


class StaffLogin(BaseModel):
    pin: str = Field(..., min_length=1, max_length=12)
    scope: SessionScopeEnum = SessionScopeEnum.ADMIN


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    display_order: int = Field(default=0)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    display_order: Optional[int] = None


class DishCreate(BaseModel):
    """A dish as typed by staff: price is in the display currency."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    price: float = Field(..., gt=0, examples=[2000.0])
    category_id: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)
    is_available: bool = True


class DishUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    price: Optional[float] = Field(None, gt=0)
    category_id: Optional[str] = None
    image_url: Optional[str] = Field(None, max_length=500)
    is_available: Optional[bool] = None


class SettingsUpdate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    currency: CurrencyEnum
    eur_to_djf: float = Field(..., gt=0)
    eur_to_usd: float = Field(..., gt=0)


class PinChange(BaseModel):
    pin_type: PinTypeEnum
    current: str = Field(..., min_length=1)
    new_pin: str = Field(..., min_length=1, max_length=12)
    confirm: str = Field(..., min_length=1, max_length=12)


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class PriceView(BaseModel):
    """Amount in display currency, plus its presentation string."""
    amount: float
    symbol: str
    currency: str
    formatted: str


class OrderItemView(BaseModel):
    id: str
    dish_id: Optional[str]
    dish_name: str
    unit_price_eur: Optional[float] = None
    quantity: int
    notes: Optional[str] = None


class OrderView(BaseModel):
    """One order as every projection shows it."""
    id: str
    short_id: str
    table_number: str
    status: OrderStatusEnum
    status_label: str
    total_price: float
    display_total: PriceView
    customer_message: Optional[str]
    additional_message: Optional[str]
    is_paid: bool
    is_archived: bool
    created_at: datetime
    items: List[OrderItemView]


class KitchenView(BaseModel):
    active: List[OrderView]
    history: List[OrderView]
    active_count: int
    history_count: int


class CaisseView(BaseModel):
    day: date
    to_pay: List[OrderView]
    active: List[OrderView]
    paid: List[OrderView]
    paid_count: int
    revenue_eur: float
    revenue: PriceView


class GuestOrderView(BaseModel):
    order: OrderView
    can_send_message: bool


class OrderCreateResponse(BaseModel):
    """Response after successfully submitting a cart."""
    success: bool
    message: str
    order_id: str
    status_url: str
    total_price: float
    display_total: PriceView
    order: OrderView


class ArchiveResponse(BaseModel):
    success: bool
    archived: int


class SessionResponse(BaseModel):
    token: str
    scope: SessionScopeEnum
    expires_at: datetime


class CategoryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    display_order: int


class DishView(BaseModel):
    id: str
    name: str
    description: Optional[str]
    price_eur: float
    price: PriceView
    category_id: Optional[str]
    category_name: str
    image_url: Optional[str]
    is_available: bool


class MenuView(BaseModel):
    restaurant_name: str
    currency: str
    symbol: str
    categories: List[CategoryView]
    dishes: List[DishView]


class SettingsView(BaseModel):
    """Restaurant settings without the PIN hashes."""
    model_config = ConfigDict(from_attributes=True)

    name: str
    currency: CurrencyEnum
    eur_to_djf: float
    eur_to_usd: float
    updated_at: Optional[datetime] = None


class PublicSettingsView(BaseModel):
    name: str
    currency: str
    symbol: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    change_feed: str
    timestamp: datetime
