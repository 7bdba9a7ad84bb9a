import pytest

from stockhold.exceptions import AppendOnlyViolation, InvariantViolation
from stockhold.models.stock_movement import StockCounter
from stockhold.outcomes import Outcome
from stockhold.repositories.movement_repo import MovementLog
from stockhold.repositories.stock_ledger import StockLedger


def test_try_reserve_moves_reserved_only(db, make_variant, counters):
    vid = make_variant(on_hand=5)
    with db.begin():
        change = StockLedger(db).try_reserve(vid, 2)
    assert change.ok
    assert change.counter is StockCounter.RESERVED
    assert (change.before, change.after) == (0, 2)
    assert change.available == 3
    assert counters(vid) == (5, 2)


def test_try_reserve_insufficient_leaves_counters(db, make_variant, counters):
    vid = make_variant(on_hand=3)
    with db.begin():
        change = StockLedger(db).try_reserve(vid, 4)
    assert change.outcome is Outcome.INSUFFICIENT_STOCK
    assert change.available == 3
    assert counters(vid) == (3, 0)


def test_try_reserve_unknown_and_inactive(db, make_variant):
    vid = make_variant(on_hand=3, is_active=False)
    with db.begin():
        ledger = StockLedger(db)
        assert ledger.try_reserve(9999, 1).outcome is Outcome.NOT_FOUND
        assert ledger.try_reserve(vid, 1).outcome is Outcome.INACTIVE


def test_release_floors_at_zero(db, make_variant, counters):
    vid = make_variant(on_hand=5)
    with db.begin():
        ledger = StockLedger(db)
        ledger.try_reserve(vid, 1)
        change = ledger.release_reserved(vid, 3)
    assert change.ok
    assert (change.before, change.after) == (1, 0)
    assert counters(vid) == (5, 0)


def test_confirm_sale_decrements_both(db, make_variant, counters):
    vid = make_variant(on_hand=5)
    with db.begin():
        ledger = StockLedger(db)
        ledger.try_reserve(vid, 2)
        change = ledger.confirm_sale(vid, 2)
    assert change.counter is StockCounter.ON_HAND
    assert (change.before, change.after) == (5, 3)
    assert counters(vid) == (3, 0)


def test_confirm_sale_without_reservation_is_invariant_violation(db, make_variant, counters):
    vid = make_variant(on_hand=5)
    with pytest.raises(InvariantViolation):
        with db.begin():
            StockLedger(db).confirm_sale(vid, 1)
    assert counters(vid) == (5, 0)


def test_adjust_cannot_cut_below_reserved(db, make_variant, counters):
    vid = make_variant(on_hand=5)
    with db.begin():
        ledger = StockLedger(db)
        ledger.try_reserve(vid, 4)
        refused = ledger.adjust_on_hand(vid, -2)
        accepted = ledger.adjust_on_hand(vid, -1)
    assert refused.outcome is Outcome.INVARIANT_VIOLATION
    assert accepted.ok and accepted.after == 4
    assert counters(vid) == (4, 4)


def test_get_available_unknown_variant(db):
    with db.begin():
        assert StockLedger(db).get_available(12345) is None


def test_movements_are_append_only(db, make_variant):
    vid = make_variant(on_hand=5)

    with pytest.raises(AppendOnlyViolation):
        with db.begin():
            m = MovementLog(db).list_for_variant(vid)[0]
            m.reason = "rewritten"
            db.flush()

    with pytest.raises(AppendOnlyViolation):
        with db.begin():
            db.delete(MovementLog(db).list_for_variant(vid)[0])
            db.flush()
