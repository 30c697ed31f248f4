import logging
import os
from datetime import datetime
from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

import ledger
import models
import payments
import tickets
import transitions
from database import check_database, engine, get_db, init_restaurant_config, transaction, wait_for_db
from errors import AppError, ConflictError, NotFoundError, ValidationError
from models import SessionStatus, TableStatus, TicketStatus, money
from redis_client import redis_client
from schemas import (
    FlavorSelection,
    OccupancyUpdate,
    OrderItemResponse,
    PaymentCreate,
    PaymentResponse,
    ReceiptResponse,
    SessionCreate,
    SessionResponse,
    TableResponse,
    TableStatusUpdate,
    TakeoutCreate,
    TakeoutCreated,
    TicketCreate,
    TicketCreated,
    TicketResponse,
    TicketStatusUpdate,
)

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("wings_pos")


app = FastAPI(title="Wings POS")


origins = [
    "http://localhost",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
if os.getenv("CORS_ORIGINS"):
    origins.extend(o.strip() for o in os.getenv("CORS_ORIGINS").split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def envelope(data=None, message: Optional[str] = None, **extra) -> dict:
    body = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    body.update(extra)
    return body


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse({"success": False, "message": exc.message}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    else:
        message = "Invalid request data"
    logger.warning("%s %s invalid: %s", request.method, request.url.path, message)
    return JSONResponse({"success": False, "message": message}, status_code=status.HTTP_400_BAD_REQUEST)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"success": False, "message": str(exc.detail)}, status_code=exc.status_code)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"success": False, "message": "Server error"}, status_code=500)


@app.on_event("startup")
def startup_event():
    if wait_for_db():
        try:
            logger.info("Creating database tables...")
            models.Base.metadata.create_all(bind=engine)
            init_restaurant_config()
            logger.info("Database initialised")
        except Exception:
            logger.exception("Error while creating or initialising the database")
    else:
        logger.error("Database did not become ready during startup")

    if redis_client.is_available():
        logger.info("Redis available")
    else:
        logger.warning("Redis unavailable, table board caching disabled")


@app.get("/health")
def health_check():
    database_ok = check_database()
    return {
        "status": "ok" if database_ok else "degraded",
        "database": database_ok,
        "cache": redis_client.get_cache_info(),
    }


# ========== Tables ==========

@app.get("/tables")
def get_tables(db: Session = Depends(get_db)):
    cached_tables = redis_client.get_cached_tables()
    if cached_tables:
        return envelope([TableResponse(**table) for table in cached_tables])

    open_sessions = dict(
        db.query(models.TableSession.table_id, models.TableSession.id)
        .filter(models.TableSession.status.in_(SessionStatus.OPEN))
        .all()
    )
    tables = db.query(models.Table).order_by(models.Table.table_number).all()
    tables_data = [get_table_response(t, open_sessions.get(t.id)) for t in tables]

    redis_client.cache_tables([t.dict() for t in tables_data])

    return envelope(tables_data)


@app.get("/tables/{table_id}")
def get_table(table_id: int, db: Session = Depends(get_db)):
    table = db.query(models.Table).filter(models.Table.id == table_id).first()
    if not table:
        raise NotFoundError("Table", table_id)
    open_session = ledger.open_session_for_table(db, table_id)
    return envelope(get_table_response(table, open_session.id if open_session else None))


@app.put("/tables/{table_id}/status")
def update_table_status(table_id: int, update: TableStatusUpdate, db: Session = Depends(get_db)):
    with transaction(db):
        table = db.query(models.Table).filter(models.Table.id == table_id).with_for_update().first()
        if not table:
            raise NotFoundError("Table", table_id)
        open_session = ledger.open_session_for_table(db, table_id)
        if update.status == TableStatus.AVAILABLE and open_session:
            raise ConflictError(f"Table {table.table_number} still has unpaid session {open_session.id}")
        table.status = update.status

    redis_client.invalidate_tables_cache()

    return envelope(
        get_table_response(table, open_session.id if open_session else None),
        message=f"Table status updated to {update.status}",
    )


# ========== Sessions ==========

@app.post("/sessions", status_code=status.HTTP_201_CREATED)
def create_session(payload: SessionCreate, db: Session = Depends(get_db)):
    table_session = ledger.start_session(db, payload.table_id, payload.service_type, payload.occupancy_count)

    redis_client.invalidate_tables_cache()

    return envelope(get_session_response(db, table_session), message="Table session created successfully")


@app.get("/sessions/active")
def get_active_sessions(db: Session = Depends(get_db)):
    return envelope([get_session_response(db, s) for s in ledger.list_active_sessions(db)])


@app.get("/sessions/{session_id}")
def get_session(session_id: int, db: Session = Depends(get_db)):
    return envelope(get_session_response(db, ledger.get_session(db, session_id)))


@app.put("/sessions/{session_id}/occupancy")
def update_session_occupancy(session_id: int, payload: OccupancyUpdate, db: Session = Depends(get_db)):
    table_session = ledger.update_occupancy(db, session_id, payload.occupancy_count)
    return envelope(get_session_response(db, table_session), message="Occupancy updated")


@app.put("/sessions/{session_id}/complete")
def complete_session(session_id: int, db: Session = Depends(get_db)):
    table_session = ledger.complete_session(db, session_id)

    redis_client.invalidate_tables_cache()

    return envelope(get_session_response(db, table_session), message="Session ready for payment")


@app.post("/sessions/{session_id}/payment")
def pay_session(session_id: int, payload: PaymentCreate, db: Session = Depends(get_db)):
    receipt = payments.pay_session(db, session_id, payload.payment_method, payload.processed_by)

    redis_client.invalidate_tables_cache()

    return envelope(get_receipt_response(receipt), message="Payment processed successfully")


# ========== Orders ==========

@app.post("/orders/tickets", status_code=status.HTTP_201_CREATED)
def create_ticket(payload: TicketCreate, db: Session = Depends(get_db)):
    ticket = tickets.create_ticket(
        db,
        payload.sessionId,
        [item.to_line_item() for item in payload.items],
        is_takeout=payload.isTakeout,
    )
    return envelope(
        TicketCreated(ticketId=ticket.id, ticketNumber=ticket.ticket_number, totalAmount=float(ticket.total_amount)),
        message="Order created successfully",
    )


@app.post("/orders/takeout", status_code=status.HTTP_201_CREATED)
def create_takeout_order(payload: TakeoutCreate, db: Session = Depends(get_db)):
    ticket = tickets.create_ticket(db, None, [item.to_line_item() for item in payload.items], is_takeout=True)
    return envelope(
        TakeoutCreated(id=ticket.id, orderNumber=ticket.ticket_number, totalAmount=float(ticket.total_amount)),
        message="Take-out order created successfully",
    )


@app.get("/orders/tickets/{ticket_id}")
def get_ticket(ticket_id: int, db: Session = Depends(get_db)):
    ticket = db.query(models.OrderTicket).filter(models.OrderTicket.id == ticket_id).first()
    if not ticket:
        raise NotFoundError("Ticket", ticket_id)
    return envelope(get_ticket_response(ticket))


@app.get("/orders/sessions/{session_id}/tickets")
def get_session_tickets(session_id: int, db: Session = Depends(get_db)):
    ledger.get_session(db, session_id)
    session_tickets = (
        db.query(models.OrderTicket)
        .filter(models.OrderTicket.session_id == session_id)
        .order_by(models.OrderTicket.created_at.desc(), models.OrderTicket.id.desc())
        .all()
    )
    return envelope([get_ticket_response(t) for t in session_tickets])


@app.put("/orders/tickets/{ticket_id}/status")
def update_ticket_status(ticket_id: int, update: TicketStatusUpdate, db: Session = Depends(get_db)):
    if update.status not in TicketStatus.DINE_IN:
        raise_invalid_status()
    ticket = transitions.set_ticket_status(
        db, ticket_id, update.status, update.payment_method, update.processed_by
    )
    return envelope(get_ticket_response(ticket, with_items=False), message=f"Ticket status updated to {update.status}")


@app.get("/orders/takeout")
def get_takeout_orders(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    query = db.query(models.OrderTicket).filter(models.OrderTicket.is_takeout.is_(True))
    if start_date and end_date:
        query = query.filter(models.OrderTicket.created_at.between(start_date, end_date))
    orders = query.order_by(models.OrderTicket.created_at.desc(), models.OrderTicket.id.desc()).all()
    return envelope([get_ticket_response(o, with_items=False) for o in orders])


@app.get("/orders/takeout/{order_id}")
def get_takeout_order(order_id: int, db: Session = Depends(get_db)):
    order = (
        db.query(models.OrderTicket)
        .filter(models.OrderTicket.id == order_id, models.OrderTicket.is_takeout.is_(True))
        .first()
    )
    if not order:
        raise NotFoundError("Take-out order", order_id)
    return envelope(get_ticket_response(order))


@app.put("/orders/takeout/{order_id}/status")
def update_takeout_status(order_id: int, update: TicketStatusUpdate, db: Session = Depends(get_db)):
    if update.status not in TicketStatus.TAKEOUT:
        raise_invalid_status()
    order = transitions.set_ticket_status(
        db, order_id, update.status, update.payment_method, update.processed_by, takeout_only=True
    )
    return envelope(get_ticket_response(order, with_items=False), message=f"Take-out order status updated to {update.status}")


@app.post("/orders/takeout/{order_id}/payment")
def pay_takeout_order(order_id: int, payload: PaymentCreate, db: Session = Depends(get_db)):
    receipt = payments.pay_takeout_ticket(db, order_id, payload.payment_method, payload.processed_by)
    return envelope(get_receipt_response(receipt), message="Take-out payment processed successfully")


@app.get("/orders/completed")
def get_completed_orders(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = 50,
    db: Session = Depends(get_db),
):
    query = db.query(models.OrderTicket).filter(models.OrderTicket.status == TicketStatus.COMPLETED)
    if start_date and end_date:
        query = query.filter(models.OrderTicket.updated_at.between(start_date, end_date))
    orders = (
        query.order_by(models.OrderTicket.updated_at.desc(), models.OrderTicket.id.desc())
        .limit(max(1, min(limit, 500)))
        .all()
    )
    data = [get_ticket_response(o) for o in orders]
    return envelope(data, count=len(data))


@app.get("/orders/payments")
def get_payments(db: Session = Depends(get_db)):
    rows = db.query(models.Payment).order_by(models.Payment.payment_date.desc(), models.Payment.id.desc()).all()
    return envelope([get_payment_response(p) for p in rows])


# ========== Response builders ==========

def raise_invalid_status():
    raise ValidationError("Invalid status value")


def _optional_amount(value) -> Optional[float]:
    return float(money(value)) if value is not None else None


def get_table_response(table: models.Table, active_session_id: Optional[int] = None) -> TableResponse:
    return TableResponse(
        id=table.id,
        table_number=table.table_number,
        status=table.status,
        qr_code_path=table.qr_code_path,
        active_session_id=active_session_id,
    )


def get_session_response(db: Session, table_session: models.TableSession) -> SessionResponse:
    # Totals always come from the tickets, never from the cached column.
    items_total = ledger.current_total(db, table_session.id)
    table = table_session.table
    return SessionResponse(
        id=table_session.id,
        table_id=table_session.table_id,
        table_number=table.table_number if table else None,
        table_status=table.status if table else None,
        service_type=table_session.service_type,
        occupancy_count=table_session.occupancy_count,
        status=table_session.status,
        unliwings_base_price=_optional_amount(table_session.unliwings_base_price),
        unliwings_total_charge=_optional_amount(table_session.unliwings_total_charge),
        total_amount=float(items_total),
        amount_due=float(ledger.amount_due(db, table_session)),
        is_paid=bool(table_session.is_paid),
        payment_method=table_session.payment_method,
        payment_date=table_session.payment_date,
        started_at=table_session.started_at,
        completed_at=table_session.completed_at,
    )


def get_ticket_response(ticket: models.OrderTicket, with_items: bool = True) -> TicketResponse:
    table_number = None
    if ticket.session is not None and ticket.session.table is not None:
        table_number = ticket.session.table.table_number

    items = []
    if with_items:
        for item in ticket.items:
            items.append(OrderItemResponse(
                id=item.id,
                menu_item_id=item.menu_item_id,
                item_name=item.item_name,
                unit_price=float(money(item.unit_price)),
                quantity=item.quantity,
                subtotal=float(money(item.subtotal)),
                is_unliwings=bool(item.is_unliwings),
                notes=item.notes,
                flavors=[
                    FlavorSelection(id=f.flavor.id, name=f.flavor.name, quantity=f.quantity)
                    for f in item.flavors
                ],
            ))

    return TicketResponse(
        id=ticket.id,
        session_id=ticket.session_id,
        table_number=table_number,
        is_takeout=bool(ticket.is_takeout),
        ticket_number=ticket.ticket_number,
        status=ticket.status,
        total_amount=float(money(ticket.total_amount)),
        created_at=ticket.created_at,
        updated_at=ticket.updated_at,
        items=items,
    )


def get_payment_response(payment: models.Payment) -> PaymentResponse:
    return PaymentResponse(
        id=payment.id,
        session_id=payment.session_id,
        ticket_id=payment.ticket_id,
        take_out_order_id=payment.take_out_order_id,
        amount_paid=float(money(payment.amount_paid)),
        payment_method=payment.payment_method,
        payment_date=payment.payment_date,
        processed_by=payment.processed_by,
    )


def get_receipt_response(receipt: payments.Receipt) -> ReceiptResponse:
    return ReceiptResponse(
        payment_id=receipt.payment_id,
        session_id=receipt.session_id,
        ticket_id=receipt.ticket_id,
        items_total=float(receipt.items_total),
        unliwings_charge=float(receipt.unliwings_charge),
        amount_paid=float(receipt.amount_paid),
        payment_method=receipt.payment_method,
        payment_date=receipt.payment_date,
    )


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
