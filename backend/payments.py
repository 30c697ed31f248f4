"""
Payment finalizer.

A settled session or take-out ticket gets exactly one row in ``payments``.
Both the explicit payment endpoints and the ticket status path go through
``record_takeout_payment`` so a take-out ticket paid twice still has one row.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session
from sqlalchemy.sql import func

import catalog
import ledger
import models
from database import transaction
from errors import AlreadyPaidError, ConflictError, NotFoundError, ValidationError
from models import SessionStatus, TableStatus, TicketStatus, money

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_METHOD = "Cash"


@dataclass
class Receipt:
    payment_id: int
    amount_paid: Decimal
    payment_method: Optional[str]
    payment_date: Optional[datetime]
    session_id: Optional[int] = None
    ticket_id: Optional[int] = None
    items_total: Decimal = Decimal("0.00")
    unliwings_charge: Decimal = Decimal("0.00")


def _check_staff(db: Session, processed_by: Optional[int]) -> None:
    if processed_by is not None and not catalog.get_staff_member(db, processed_by):
        raise NotFoundError("Staff member", processed_by)


def record_takeout_payment(db: Session, ticket: models.OrderTicket, payment_method: Optional[str], processed_by: Optional[int] = None) -> models.Payment:
    """Insert the take-out payment row unless one exists. Runs in the caller's transaction."""
    existing = db.query(models.Payment).filter(models.Payment.take_out_order_id == ticket.id).first()
    if existing:
        logger.info("Ticket %s already has payment %s, not recording another", ticket.ticket_number, existing.id)
        return existing

    _check_staff(db, processed_by)
    payment = models.Payment(
        take_out_order_id=ticket.id,
        amount_paid=money(ticket.total_amount),
        payment_method=payment_method or DEFAULT_PAYMENT_METHOD,
        processed_by=processed_by,
    )
    db.add(payment)
    db.flush()
    logger.info("Payment %s of %s recorded for take-out %s", payment.id, payment.amount_paid, ticket.ticket_number)
    return payment


def pay_session(db: Session, session_id: int, payment_method: str, processed_by: Optional[int] = None) -> Receipt:
    if not payment_method:
        raise ValidationError("Payment method is required")

    with transaction(db):
        session = ledger.get_session(db, session_id, lock=True)
        if session.is_paid or session.status == SessionStatus.PAID:
            raise AlreadyPaidError(session_id)
        _check_staff(db, processed_by)

        items_total = ledger.reconcile_total(db, session)
        unliwings_charge = money(session.unliwings_total_charge)
        amount = money(items_total + unliwings_charge)

        session.status = SessionStatus.PAID
        session.is_paid = True
        session.payment_method = payment_method
        session.payment_date = func.now()
        session.completed_at = func.now()

        payment = models.Payment(
            session_id=session.id,
            amount_paid=amount,
            payment_method=payment_method,
            processed_by=processed_by,
        )
        db.add(payment)

        table = db.query(models.Table).filter(models.Table.id == session.table_id).first()
        if table:
            table.status = TableStatus.AVAILABLE
        db.flush()

    logger.info("Session %s paid: %s (%s)", session_id, amount, payment_method)
    return Receipt(
        payment_id=payment.id,
        amount_paid=money(payment.amount_paid),
        payment_method=payment.payment_method,
        payment_date=payment.payment_date,
        session_id=session_id,
        items_total=items_total,
        unliwings_charge=unliwings_charge,
    )


def pay_takeout_ticket(db: Session, ticket_id: int, payment_method: Optional[str], processed_by: Optional[int] = None) -> Receipt:
    with transaction(db):
        ticket = (
            db.query(models.OrderTicket)
            .filter(models.OrderTicket.id == ticket_id, models.OrderTicket.is_takeout.is_(True))
            .with_for_update()
            .first()
        )
        if not ticket:
            raise NotFoundError("Take-out order", ticket_id)
        if ticket.status == TicketStatus.DECLINED:
            raise ConflictError(f"Take-out order {ticket.ticket_number} was declined and cannot be paid")

        ticket.status = TicketStatus.COMPLETED
        payment = record_takeout_payment(db, ticket, payment_method, processed_by)
        db.flush()

    return Receipt(
        payment_id=payment.id,
        amount_paid=money(payment.amount_paid),
        payment_method=payment.payment_method,
        payment_date=payment.payment_date,
        ticket_id=ticket_id,
        items_total=money(payment.amount_paid),
    )
