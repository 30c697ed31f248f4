"""
Ticket status transitions and the side effects each one triggers.

    Pending  -> Accepted | Declined
    Accepted -> Ready (take-out only) | Completed
    Ready    -> Completed
    Declined, Completed: terminal

Declining a dine-in ticket takes its total off the session. Completing a
take-out ticket records its payment. Completing a dine-in ticket records
nothing: dine-in is settled once for the whole session by payments.pay_session.
"""
import logging
from typing import Optional, Sequence

from sqlalchemy.orm import Session

import ledger
import models
import payments
from database import transaction
from errors import ConflictError, NotFoundError, ValidationError
from models import SessionStatus, TicketStatus

logger = logging.getLogger(__name__)

TICKET_TRANSITIONS = {
    TicketStatus.PENDING: {TicketStatus.ACCEPTED, TicketStatus.DECLINED},
    TicketStatus.ACCEPTED: {TicketStatus.READY, TicketStatus.COMPLETED},
    TicketStatus.READY: {TicketStatus.COMPLETED},
    TicketStatus.DECLINED: set(),
    TicketStatus.COMPLETED: set(),
}


def allowed_statuses(ticket: models.OrderTicket) -> Sequence[str]:
    return TicketStatus.TAKEOUT if ticket.is_takeout else TicketStatus.DINE_IN


def set_ticket_status(
    db: Session,
    ticket_id: int,
    new_status: str,
    payment_method: Optional[str] = None,
    processed_by: Optional[int] = None,
    takeout_only: bool = False,
) -> models.OrderTicket:
    if new_status not in TicketStatus.TAKEOUT:
        raise ValidationError("Invalid status value")

    with transaction(db):
        query = db.query(models.OrderTicket).filter(models.OrderTicket.id == ticket_id)
        if takeout_only:
            query = query.filter(models.OrderTicket.is_takeout.is_(True))
        ticket = query.with_for_update().first()
        if not ticket:
            raise NotFoundError("Take-out order" if takeout_only else "Ticket", ticket_id)

        if new_status not in allowed_statuses(ticket):
            raise ValidationError(f"Status {new_status} is not valid for dine-in tickets")

        old_status = ticket.status
        if new_status == old_status:
            return ticket
        if new_status not in TICKET_TRANSITIONS[old_status]:
            raise ConflictError(f"Cannot move ticket {ticket.ticket_number} from {old_status} to {new_status}")

        if new_status == TicketStatus.DECLINED and not ticket.is_takeout and ticket.session_id:
            session = ledger.get_session(db, ticket.session_id, lock=True)
            if session.status == SessionStatus.PAID:
                raise ConflictError(f"Session {session.id} is already paid")
            ledger.apply_ticket_delta(db, ticket.session_id, ticket.total_amount, -1)

        ticket.status = new_status

        if new_status == TicketStatus.COMPLETED and ticket.is_takeout:
            payments.record_takeout_payment(db, ticket, payment_method, processed_by)

        db.flush()

    logger.info("Ticket %s: %s -> %s", ticket.ticket_number, old_status, new_status)
    return ticket
