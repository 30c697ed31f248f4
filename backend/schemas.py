from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, validator

from models import ServiceType, TableStatus, money
from tickets import LineItem


def _clean_flavors(v: Optional[List[str]]) -> List[str]:
    if not v:
        return []
    return [name.strip() for name in v if name and name.strip()]


def _check_price(v: Optional[Decimal]) -> Optional[Decimal]:
    if v is None:
        return v
    if v < 0:
        raise ValueError("Price cannot be negative")
    if v > 1000000:
        raise ValueError("Price is too high")
    return money(v)


def _check_quantity(v: int) -> int:
    if v <= 0:
        raise ValueError("Quantity must be greater than 0")
    if v > 100:
        raise ValueError("Quantity cannot exceed 100")
    return v


class SessionCreate(BaseModel):
    table_id: int
    service_type: str
    occupancy_count: int

    @validator("service_type")
    def validate_service_type(cls, v: str) -> str:
        if v not in ServiceType.ALL:
            raise ValueError("Service type must be either 'Unliwings' or 'Ala-carte'")
        return v

    @validator("occupancy_count")
    def validate_occupancy_count(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Occupancy count must be at least 1")
        if v > 50:
            raise ValueError("Occupancy count cannot exceed 50")
        return v


class OccupancyUpdate(BaseModel):
    occupancy_count: int

    @validator("occupancy_count")
    def validate_occupancy_count(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Occupancy count must be at least 1")
        return v


class TicketItemCreate(BaseModel):
    """Line of a dine-in ticket as sent by the table QR menu."""

    id: Optional[int] = None
    name: Optional[str] = None
    price: Optional[Decimal] = None
    quantity: int = 1
    flavors: Optional[List[str]] = None
    notes: Optional[str] = None
    isUnliwings: bool = False

    @validator("price")
    def validate_price(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _check_price(v)

    @validator("quantity")
    def validate_quantity(cls, v: int) -> int:
        return _check_quantity(v)

    @validator("flavors")
    def validate_flavors(cls, v: Optional[List[str]]) -> List[str]:
        return _clean_flavors(v)

    def to_line_item(self) -> LineItem:
        if self.isUnliwings:
            return LineItem.unliwings(quantity=self.quantity, name=self.name, flavors=self.flavors or [], notes=self.notes)
        return LineItem.menu_item(self.id, self.price, self.quantity, name=self.name, flavors=self.flavors or [], notes=self.notes)


class TicketCreate(BaseModel):
    sessionId: Optional[int] = None
    items: List[TicketItemCreate]
    isTakeout: bool = False

    @validator("items")
    def validate_items(cls, v: List[TicketItemCreate]) -> List[TicketItemCreate]:
        if not v:
            raise ValueError("Items list cannot be empty")
        return v


class TakeoutItemCreate(BaseModel):
    """Line of a take-out order as sent by the kiosk."""

    menu_item_id: Optional[int] = None
    name: Optional[str] = None
    price: Optional[Decimal] = None
    quantity: int = 1
    flavors: Optional[List[str]] = None
    is_unliwings: bool = False
    notes: Optional[str] = None

    @validator("price")
    def validate_price(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _check_price(v)

    @validator("quantity")
    def validate_quantity(cls, v: int) -> int:
        return _check_quantity(v)

    @validator("flavors")
    def validate_flavors(cls, v: Optional[List[str]]) -> List[str]:
        return _clean_flavors(v)

    def to_line_item(self) -> LineItem:
        if self.is_unliwings:
            return LineItem.unliwings(quantity=self.quantity, name=self.name, flavors=self.flavors or [], notes=self.notes)
        return LineItem.menu_item(self.menu_item_id, self.price, self.quantity, name=self.name, flavors=self.flavors or [], notes=self.notes)


class TakeoutCreate(BaseModel):
    items: List[TakeoutItemCreate]

    @validator("items")
    def validate_items(cls, v: List[TakeoutItemCreate]) -> List[TakeoutItemCreate]:
        if not v:
            raise ValueError("Items list cannot be empty")
        return v


class TicketStatusUpdate(BaseModel):
    status: str
    payment_method: Optional[str] = None
    processed_by: Optional[int] = None


class PaymentCreate(BaseModel):
    payment_method: str
    processed_by: Optional[int] = None

    @validator("payment_method")
    def validate_payment_method(cls, v: str) -> str:
        if not v or len(v.strip()) == 0:
            raise ValueError("Payment method cannot be empty")
        if len(v) > 50:
            raise ValueError("Payment method cannot exceed 50 characters")
        return v.strip()


class TableStatusUpdate(BaseModel):
    status: str

    @validator("status")
    def validate_status(cls, v: str) -> str:
        if v not in TableStatus.ALL:
            raise ValueError("Invalid status value")
        return v


class TableResponse(BaseModel):
    id: int
    table_number: int
    status: str
    qr_code_path: Optional[str] = None
    active_session_id: Optional[int] = None


class SessionResponse(BaseModel):
    id: int
    table_id: int
    table_number: Optional[int] = None
    table_status: Optional[str] = None
    service_type: str
    occupancy_count: int
    status: str
    unliwings_base_price: Optional[float] = None
    unliwings_total_charge: Optional[float] = None
    total_amount: float
    amount_due: float
    is_paid: bool
    payment_method: Optional[str] = None
    payment_date: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class FlavorSelection(BaseModel):
    id: int
    name: str
    quantity: int


class OrderItemResponse(BaseModel):
    id: int
    menu_item_id: Optional[int] = None
    item_name: str
    unit_price: float
    quantity: int
    subtotal: float
    is_unliwings: bool
    notes: Optional[str] = None
    flavors: List[FlavorSelection] = []


class TicketResponse(BaseModel):
    id: int
    session_id: Optional[int] = None
    table_number: Optional[int] = None
    is_takeout: bool
    ticket_number: str
    status: str
    total_amount: float
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []


class TicketCreated(BaseModel):
    ticketId: int
    ticketNumber: str
    totalAmount: float


class TakeoutCreated(BaseModel):
    id: int
    orderNumber: str
    totalAmount: float


class PaymentResponse(BaseModel):
    id: int
    session_id: Optional[int] = None
    ticket_id: Optional[int] = None
    take_out_order_id: Optional[int] = None
    amount_paid: float
    payment_method: Optional[str] = None
    payment_date: Optional[datetime] = None
    processed_by: Optional[int] = None


class ReceiptResponse(BaseModel):
    payment_id: int
    session_id: Optional[int] = None
    ticket_id: Optional[int] = None
    items_total: float
    unliwings_charge: float
    amount_paid: float
    payment_method: Optional[str] = None
    payment_date: Optional[datetime] = None
