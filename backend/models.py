# models.py
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base

CENTS = Decimal("0.01")


def money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class TableStatus:
    AVAILABLE = "Available"
    OCCUPIED = "Occupied"
    FOR_PAYMENT = "For Payment"

    ALL = (AVAILABLE, OCCUPIED, FOR_PAYMENT)


class ServiceType:
    UNLIWINGS = "Unliwings"
    ALA_CARTE = "Ala-carte"

    ALL = (UNLIWINGS, ALA_CARTE)


class SessionStatus:
    ACTIVE = "Active"
    COMPLETED = "Completed"
    PAID = "Paid"

    ALL = (ACTIVE, COMPLETED, PAID)
    OPEN = (ACTIVE, COMPLETED)


class TicketStatus:
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    DECLINED = "Declined"
    READY = "Ready"
    COMPLETED = "Completed"

    DINE_IN = (PENDING, ACCEPTED, DECLINED, COMPLETED)
    TAKEOUT = (PENDING, ACCEPTED, DECLINED, READY, COMPLETED)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, index=True, nullable=False)
    role = Column(String(20), nullable=False)

    __table_args__ = (
        CheckConstraint("role IN ('cashier', 'chef', 'admin')", name="ck_users_role"),
    )


class Table(Base):
    __tablename__ = "tables"

    id = Column(Integer, primary_key=True, index=True)
    table_number = Column(Integer, unique=True, index=True, nullable=False)
    status = Column(String(20), nullable=False, default=TableStatus.AVAILABLE)
    qr_code_path = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    sessions = relationship("TableSession", back_populates="table")


class MenuCategory(Base):
    __tablename__ = "menu_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)
    display_order = Column(Integer, nullable=False)

    items = relationship("MenuItem", back_populates="category")


class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False)
    category_id = Column(Integer, ForeignKey("menu_categories.id"), nullable=True)
    is_available = Column(Boolean, default=True)
    is_wing_item = Column(Boolean, default=False)
    is_unli_eligible = Column(Boolean, default=False)
    portion_size = Column(Integer, nullable=True)
    max_flavor_count = Column(Integer, nullable=True)
    order_count = Column(Integer, nullable=False, default=0)

    category = relationship("MenuCategory", back_populates="items")


class WingFlavor(Base):
    __tablename__ = "wing_flavors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)
    is_available = Column(Boolean, default=True)
    order_count = Column(Integer, nullable=False, default=0)


class TableSession(Base):
    __tablename__ = "table_sessions"

    id = Column(Integer, primary_key=True, index=True)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=False)
    service_type = Column(String(20), nullable=False)
    occupancy_count = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default=SessionStatus.ACTIVE)
    unliwings_base_price = Column(Numeric(10, 2), nullable=True)
    unliwings_total_charge = Column(Numeric(10, 2), nullable=True)
    # Cached sum of non-declined ticket totals; ledger.current_total is authoritative.
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    is_paid = Column(Boolean, nullable=False, default=False)
    payment_method = Column(String(50), nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    table = relationship("Table", back_populates="sessions")
    tickets = relationship("OrderTicket", back_populates="session")

    __table_args__ = (
        CheckConstraint("occupancy_count >= 1", name="ck_table_sessions_occupancy"),
        CheckConstraint(
            "service_type IN ('Unliwings', 'Ala-carte')", name="ck_table_sessions_service_type"
        ),
        Index(
            "uq_table_sessions_one_active",
            "table_id",
            unique=True,
            postgresql_where=(status == SessionStatus.ACTIVE),
            sqlite_where=(status == SessionStatus.ACTIVE),
        ),
    )


class OrderTicket(Base):
    __tablename__ = "order_tickets"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("table_sessions.id"), nullable=True, index=True)
    is_takeout = Column(Boolean, nullable=False, default=False)
    ticket_number = Column(String(20), unique=True, nullable=False)
    status = Column(String(20), nullable=False, default=TicketStatus.PENDING)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    session = relationship("TableSession", back_populates="tickets")
    items = relationship("OrderItem", back_populates="ticket", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint(
            "is_takeout OR session_id IS NOT NULL", name="ck_order_tickets_dine_in_session"
        ),
    )


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("order_tickets.id"), nullable=False, index=True)
    # NULL only for the unliwings placeholder line.
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=True)
    item_name = Column(String(100), nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    subtotal = Column(Numeric(10, 2), nullable=False)
    is_unliwings = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    ticket = relationship("OrderTicket", back_populates="items")
    flavors = relationship("OrderItemFlavor", back_populates="order_item", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity"),
        CheckConstraint(
            "(is_unliwings AND menu_item_id IS NULL) OR (NOT is_unliwings AND menu_item_id IS NOT NULL)",
            name="ck_order_items_kind",
        ),
    )


class OrderItemFlavor(Base):
    __tablename__ = "order_item_flavors"

    id = Column(Integer, primary_key=True, index=True)
    order_item_id = Column(Integer, ForeignKey("order_items.id"), nullable=False, index=True)
    flavor_id = Column(Integer, ForeignKey("wing_flavors.id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    order_item = relationship("OrderItem", back_populates="flavors")
    flavor = relationship("WingFlavor")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("table_sessions.id"), nullable=True, unique=True)
    ticket_id = Column(Integer, ForeignKey("order_tickets.id"), nullable=True, unique=True)
    take_out_order_id = Column(Integer, ForeignKey("order_tickets.id"), nullable=True, unique=True)
    amount_paid = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(50), nullable=True)
    payment_date = Column(DateTime(timezone=True), server_default=func.now())
    processed_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "(session_id IS NOT NULL AND ticket_id IS NULL AND take_out_order_id IS NULL) OR "
            "(session_id IS NULL AND ticket_id IS NOT NULL AND take_out_order_id IS NULL) OR "
            "(session_id IS NULL AND ticket_id IS NULL AND take_out_order_id IS NOT NULL)",
            name="ck_payments_single_target",
        ),
    )
