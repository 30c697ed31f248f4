from decimal import Decimal

import pytest

import ledger
import models
import tickets
import transitions
from errors import ConflictError, NotFoundError, ValidationError
from tickets import LineItem


def _table(db, table_id):
    db.expire_all()
    return db.query(models.Table).filter(models.Table.id == table_id).one()


def test_unliwings_charge_is_frozen_at_seating(db, tables):
    session = ledger.start_session(db, tables[4], "Unliwings", 4)

    assert session.status == "Active"
    assert session.unliwings_base_price == Decimal("289.00")
    assert session.unliwings_total_charge == Decimal("1156.00")
    assert _table(db, tables[4]).status == "Occupied"

    ledger.update_occupancy(db, session.id, 6)

    session = ledger.get_session(db, session.id)
    assert session.occupancy_count == 6
    assert session.unliwings_total_charge == Decimal("1156.00")
    assert ledger.amount_due(db, session) == Decimal("1156.00")


def test_ala_carte_session_has_no_unliwings_charge(db, tables):
    session = ledger.start_session(db, tables[1], "Ala-carte", 2)

    assert session.unliwings_base_price is None
    assert session.unliwings_total_charge is None
    assert ledger.amount_due(db, session) == Decimal("0.00")


def test_second_session_on_busy_table_conflicts(db, tables):
    ledger.start_session(db, tables[1], "Ala-carte", 2)

    with pytest.raises(ConflictError):
        ledger.start_session(db, tables[1], "Unliwings", 3)

    db.expire_all()
    assert db.query(models.TableSession).count() == 1


def test_completed_but_unpaid_session_still_holds_the_table(db, tables):
    session = ledger.start_session(db, tables[1], "Ala-carte", 2)
    ledger.complete_session(db, session.id)

    with pytest.raises(ConflictError):
        ledger.start_session(db, tables[1], "Ala-carte", 2)


@pytest.mark.parametrize("service_type, occupancy", [("Buffet", 2), ("Ala-carte", 0)])
def test_bad_session_input_is_rejected(db, tables, service_type, occupancy):
    with pytest.raises(ValidationError):
        ledger.start_session(db, tables[1], service_type, occupancy)


def test_unknown_table_is_not_found(db):
    with pytest.raises(NotFoundError):
        ledger.start_session(db, 999, "Ala-carte", 2)


def test_declined_ticket_leaves_the_running_total(db, menu, tables):
    session = ledger.start_session(db, tables[2], "Ala-carte", 2)
    first = tickets.create_ticket(db, session.id, [LineItem.menu_item(menu["Cheese Fries"], "100", 1)])
    second = tickets.create_ticket(db, session.id, [LineItem.menu_item(menu["Cheese Fries"], "50", 1)])
    assert ledger.current_total(db, session.id) == Decimal("150.00")

    transitions.set_ticket_status(db, second.id, "Declined")
    assert ledger.current_total(db, session.id) == Decimal("100.00")
    assert ledger.get_session(db, session.id).total_amount == Decimal("100.00")

    transitions.set_ticket_status(db, first.id, "Declined")
    assert ledger.current_total(db, session.id) == Decimal("0.00")
    assert ledger.get_session(db, session.id).total_amount == Decimal("0.00")


def test_drifted_cache_is_rebuilt_from_tickets(db, menu, tables):
    session = ledger.start_session(db, tables[2], "Ala-carte", 2)
    tickets.create_ticket(db, session.id, [LineItem.menu_item(menu["3pcs Wings"], "109", 2)])

    db.query(models.TableSession).filter(models.TableSession.id == session.id).update(
        {models.TableSession.total_amount: Decimal("12.34")}, synchronize_session=False
    )
    db.commit()
    db.expire_all()

    session = ledger.get_session(db, session.id)
    assert ledger.current_total(db, session.id) == Decimal("218.00")
    assert ledger.reconcile_total(db, session) == Decimal("218.00")
    db.commit()

    assert ledger.get_session(db, session.id).total_amount == Decimal("218.00")


def test_ticket_delta_only_accepts_a_direction(db, tables):
    session = ledger.start_session(db, tables[1], "Ala-carte", 1)
    with pytest.raises(ValueError):
        ledger.apply_ticket_delta(db, session.id, Decimal("10"), 2)


def test_completing_a_session_waits_for_payment(db, tables):
    session = ledger.start_session(db, tables[3], "Ala-carte", 2)

    ledger.complete_session(db, session.id)
    # Completing twice is harmless.
    ledger.complete_session(db, session.id)

    session = ledger.get_session(db, session.id)
    assert session.status == "Completed"
    assert session.completed_at is not None
    assert _table(db, tables[3]).status == "For Payment"


def test_completed_session_takes_no_more_orders(db, menu, tables):
    session = ledger.start_session(db, tables[3], "Ala-carte", 2)
    ledger.complete_session(db, session.id)

    with pytest.raises(ConflictError):
        tickets.create_ticket(db, session.id, [LineItem.menu_item(menu["3pcs Wings"], "109", 1)])
    with pytest.raises(ConflictError):
        ledger.update_occupancy(db, session.id, 3)


def test_active_sessions_list_skips_closed_ones(db, tables):
    open_one = ledger.start_session(db, tables[1], "Ala-carte", 2)
    closed = ledger.start_session(db, tables[2], "Ala-carte", 2)
    ledger.complete_session(db, closed.id)

    assert [s.id for s in ledger.list_active_sessions(db)] == [open_one.id]
