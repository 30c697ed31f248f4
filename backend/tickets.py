"""
Ticket builder: turns a validated order request into a ticket, its lines and
flavor picks, all inside one transaction.

Ticket numbers are checked before insert. A concurrent insert that still wins
the same number trips the unique constraint, and the whole ticket is built
again under a fresh number.
"""
import logging
import os
import random
import string
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import catalog
import ledger
import models
from database import transaction
from errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from models import SessionStatus, TicketStatus, money

logger = logging.getLogger(__name__)

TICKET_NUMBER_ATTEMPTS = int(os.getenv("TICKET_NUMBER_ATTEMPTS", "10"))

UNLIWINGS_ITEM_NAME = "Unliwings"


@dataclass
class LineItem:
    """One requested line. A line is either a real menu item or the unliwings placeholder."""

    unit_price: Optional[Decimal]
    quantity: int
    menu_item_id: Optional[int] = None
    is_unliwings: bool = False
    name: Optional[str] = None
    flavors: List[str] = field(default_factory=list)
    notes: Optional[str] = None

    @classmethod
    def menu_item(cls, menu_item_id, unit_price, quantity, **kwargs) -> "LineItem":
        price = money(unit_price) if unit_price is not None else None
        return cls(unit_price=price, quantity=quantity, menu_item_id=menu_item_id, **kwargs)

    @classmethod
    def unliwings(cls, quantity=1, **kwargs) -> "LineItem":
        kwargs.setdefault("name", UNLIWINGS_ITEM_NAME)
        return cls(unit_price=Decimal("0.00"), quantity=quantity, is_unliwings=True, **kwargs)

    @property
    def subtotal(self) -> Decimal:
        return money(self.unit_price * self.quantity)


def generate_ticket_number(db: Session, prefix: str) -> str:
    date_code = datetime.now().strftime("%y%m%d")
    for _ in range(TICKET_NUMBER_ATTEMPTS):
        digits = "".join(random.choices(string.digits, k=4))
        number = f"{prefix}{date_code}-{digits}"
        exists = db.query(models.OrderTicket.id).filter(models.OrderTicket.ticket_number == number).first()
        if not exists:
            return number
        logger.warning("Ticket number %s already taken, drawing another", number)
    raise ConflictError("Could not allocate a free ticket number, please retry")


def _validate_lines(items: List[LineItem]) -> None:
    if not items:
        raise ValidationError("Items list cannot be empty")
    for line in items:
        if line.quantity is None or line.quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        if line.unit_price is None:
            raise ValidationError("Every item except unliwings needs a price")
        if line.unit_price < 0:
            raise ValidationError("Price cannot be negative")
        if not line.is_unliwings and line.menu_item_id is None:
            raise ValidationError("Every item except unliwings needs a menu item id")


def _add_flavors(db: Session, order_item: models.OrderItem, flavor_names: List[str]) -> None:
    for flavor_name in flavor_names:
        flavor = catalog.find_flavor_by_name(db, flavor_name)
        if not flavor:
            # Unknown flavors are dropped; the rest of the ticket still goes through.
            logger.warning("Unknown flavor %r on ticket %s skipped", flavor_name, order_item.ticket_id)
            continue
        db.add(models.OrderItemFlavor(order_item_id=order_item.id, flavor_id=flavor.id, quantity=1))
        catalog.increment_flavor_count(db, flavor.id)


def create_ticket(db: Session, session_id: Optional[int], items: List[LineItem], is_takeout: bool = False) -> models.OrderTicket:
    _validate_lines(items)
    if not is_takeout and session_id is None:
        raise ValidationError("Dine-in tickets require a session id")
    if is_takeout and session_id is not None:
        raise ValidationError("Take-out tickets cannot belong to a table session")

    for _ in range(TICKET_NUMBER_ATTEMPTS):
        try:
            return _insert_ticket(db, session_id, items, is_takeout)
        except PersistenceError as e:
            # Another transaction took the same number between our check and insert.
            if not _is_ticket_number_clash(e.__cause__):
                raise
            logger.warning("Ticket number clashed on insert, building the ticket again")
    raise ConflictError("Could not allocate a free ticket number, please retry")


def _is_ticket_number_clash(exc) -> bool:
    return isinstance(exc, IntegrityError) and "ticket_number" in str(exc.orig)


def _insert_ticket(db: Session, session_id: Optional[int], items: List[LineItem], is_takeout: bool) -> models.OrderTicket:
    with transaction(db):
        if session_id is not None:
            session = ledger.get_session(db, session_id, lock=True)
            if session.status != SessionStatus.ACTIVE:
                raise ConflictError(f"Session {session_id} is {session.status} and no longer takes orders")

        menu_items = {}
        for line in items:
            if line.is_unliwings:
                continue
            menu_item = catalog.get_menu_item(db, line.menu_item_id)
            if not menu_item:
                raise NotFoundError("Menu item", line.menu_item_id)
            menu_items[line.menu_item_id] = menu_item

        ticket_number = generate_ticket_number(db, "TO" if is_takeout else "T")
        total_amount = money(sum((line.subtotal for line in items), Decimal("0")))

        ticket = models.OrderTicket(
            session_id=session_id,
            is_takeout=is_takeout,
            ticket_number=ticket_number,
            status=TicketStatus.PENDING,
            total_amount=total_amount,
        )
        db.add(ticket)
        db.flush()

        for line in items:
            if line.is_unliwings:
                name = line.name or UNLIWINGS_ITEM_NAME
            else:
                name = line.name or menu_items[line.menu_item_id].name
            order_item = models.OrderItem(
                ticket_id=ticket.id,
                menu_item_id=None if line.is_unliwings else line.menu_item_id,
                item_name=name,
                unit_price=line.unit_price,
                quantity=line.quantity,
                subtotal=line.subtotal,
                is_unliwings=line.is_unliwings,
                notes=line.notes or None,
            )
            db.add(order_item)
            db.flush()

            if line.flavors:
                _add_flavors(db, order_item, line.flavors)

            if not line.is_unliwings:
                catalog.increment_menu_item_count(db, line.menu_item_id, line.quantity)

        if session_id is not None:
            ledger.apply_ticket_delta(db, session_id, total_amount, 1)

    logger.info("Ticket %s created (%s, total %s)", ticket_number, "take-out" if is_takeout else f"session {session_id}", total_amount)
    return ticket
