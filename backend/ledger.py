"""
Session ledger: table sessions and their running totals.

``table_sessions.total_amount`` is only a cache that is moved up and down as
tickets are created and declined. Anything that reports or charges money goes
through ``current_total``, which sums the session's non-declined tickets.
"""
import logging
import os
from decimal import Decimal
from typing import List

from sqlalchemy import func
from sqlalchemy.orm import Session

import models
from database import transaction
from errors import ConflictError, NotFoundError, ValidationError
from models import ServiceType, SessionStatus, TableStatus, TicketStatus, money

logger = logging.getLogger(__name__)

UNLIWINGS_BASE_PRICE = money(os.getenv("UNLIWINGS_BASE_PRICE", "289"))


def get_session(db: Session, session_id: int, lock: bool = False) -> models.TableSession:
    query = db.query(models.TableSession).filter(models.TableSession.id == session_id)
    if lock:
        query = query.with_for_update()
    session = query.first()
    if not session:
        raise NotFoundError("Session", session_id)
    return session


def open_session_for_table(db: Session, table_id: int):
    return (
        db.query(models.TableSession)
        .filter(
            models.TableSession.table_id == table_id,
            models.TableSession.status.in_(SessionStatus.OPEN),
        )
        .first()
    )


def start_session(db: Session, table_id: int, service_type: str, occupancy_count: int) -> models.TableSession:
    if service_type not in ServiceType.ALL:
        raise ValidationError(f"Invalid service type: {service_type}")
    if occupancy_count is None or occupancy_count < 1:
        raise ValidationError("Occupancy count must be at least 1")

    with transaction(db):
        table = db.query(models.Table).filter(models.Table.id == table_id).with_for_update().first()
        if not table:
            raise NotFoundError("Table", table_id)

        existing = open_session_for_table(db, table_id)
        if existing:
            raise ConflictError(f"Table {table.table_number} already has an open session ({existing.id})")

        session = models.TableSession(
            table_id=table_id,
            service_type=service_type,
            occupancy_count=occupancy_count,
            status=SessionStatus.ACTIVE,
            total_amount=Decimal("0.00"),
        )
        if service_type == ServiceType.UNLIWINGS:
            # Frozen for the life of the session.
            session.unliwings_base_price = UNLIWINGS_BASE_PRICE
            session.unliwings_total_charge = money(UNLIWINGS_BASE_PRICE * occupancy_count)

        table.status = TableStatus.OCCUPIED
        db.add(session)
        db.flush()

    logger.info("Session %s started on table %s (%s, %s pax)", session.id, table_id, service_type, occupancy_count)
    return session


def current_total(db: Session, session_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(models.OrderTicket.total_amount), 0))
        .filter(
            models.OrderTicket.session_id == session_id,
            models.OrderTicket.status != TicketStatus.DECLINED,
        )
        .scalar()
    )
    return money(total)


def amount_due(db: Session, session: models.TableSession) -> Decimal:
    return money(current_total(db, session.id) + money(session.unliwings_total_charge))


def apply_ticket_delta(db: Session, session_id: int, ticket_total, sign: int) -> None:
    """Move the cached running total by one ticket. Runs in the caller's transaction."""
    if sign not in (1, -1):
        raise ValueError("sign must be 1 or -1")
    delta = money(ticket_total) * sign
    db.query(models.TableSession).filter(models.TableSession.id == session_id).update(
        {models.TableSession.total_amount: models.TableSession.total_amount + delta},
        synchronize_session=False,
    )


def reconcile_total(db: Session, session: models.TableSession) -> Decimal:
    """Rewrite the cached total from the tickets and return it."""
    total = current_total(db, session.id)
    if money(session.total_amount) != total:
        logger.warning(
            "Session %s cached total %s drifted from tickets (%s), rebuilding",
            session.id, session.total_amount, total,
        )
        session.total_amount = total
    return total


def list_active_sessions(db: Session) -> List[models.TableSession]:
    return (
        db.query(models.TableSession)
        .filter(models.TableSession.status == SessionStatus.ACTIVE)
        .order_by(models.TableSession.created_at.desc(), models.TableSession.id.desc())
        .all()
    )


def complete_session(db: Session, session_id: int) -> models.TableSession:
    """Guests are done ordering; the table waits for the cashier."""
    with transaction(db):
        session = get_session(db, session_id, lock=True)
        if session.status == SessionStatus.COMPLETED:
            return session
        if session.status != SessionStatus.ACTIVE:
            raise ConflictError(f"Session {session_id} is {session.status} and cannot be completed")

        session.status = SessionStatus.COMPLETED
        session.completed_at = func.now()
        table = db.query(models.Table).filter(models.Table.id == session.table_id).first()
        if table:
            table.status = TableStatus.FOR_PAYMENT
        db.flush()

    return session


def update_occupancy(db: Session, session_id: int, occupancy_count: int) -> models.TableSession:
    if occupancy_count is None or occupancy_count < 1:
        raise ValidationError("Occupancy count must be at least 1")

    with transaction(db):
        session = get_session(db, session_id, lock=True)
        if session.status != SessionStatus.ACTIVE:
            raise ConflictError(f"Session {session_id} is {session.status}")
        # unliwings_total_charge stays as it was priced at seating time
        session.occupancy_count = occupancy_count
        db.flush()

    return session
