from datetime import timedelta

import pytest

from stockhold.db import SessionLocal
from stockhold.models.stock_movement import MovementType, StockCounter
from stockhold.models.stock_reservation import ReservationStatus
from stockhold.outcomes import CartLine, Outcome
from stockhold.services.reservation_engine import ReservationEngine
from stockhold.services.stock_admin_service import StockAdminService
from stockhold.utils.clock import utcnow


def _movements(variant_id):
    db = SessionLocal()
    try:
        return StockAdminService(db).list_movements(variant_id, limit=500)
    finally:
        db.close()


def test_reserve_confirm_scenario(db, make_variant, counters):
    vid = make_variant(on_hand=10)
    engine = ReservationEngine(db)

    res = engine.reserve(vid, 3, cart_ref="cart-1")
    assert res.ok
    assert res.available == 7
    assert res.reservation.status is ReservationStatus.ACTIVE
    assert counters(vid) == (10, 3)

    done = engine.confirm(res.reservation.id, "order-1")
    assert done.ok
    assert done.reservation.status is ReservationStatus.CONFIRMED
    assert done.reservation.order_ref == "order-1"
    assert counters(vid) == (7, 0)

    types = [m.movement_type for m in reversed(_movements(vid))]
    assert types == [MovementType.RESTOCK, MovementType.RESERVATION_HOLD, MovementType.SALE]


def test_end_to_end_counters(db, make_variant, counters):
    vid = make_variant(on_hand=10)
    engine = ReservationEngine(db)

    first = engine.reserve(vid, 4)
    assert first.available == 6
    second = engine.reserve(vid, 6)
    assert second.available == 0
    assert counters(vid) == (10, 10)
    assert engine.reserve(vid, 1).outcome is Outcome.INSUFFICIENT_STOCK

    assert engine.confirm(first.reservation.id, "order-e2e").ok
    assert counters(vid) == (6, 6)
    assert engine.release(second.reservation.id).ok
    assert counters(vid) == (6, 0)
    assert engine.get_available(vid) == 6

    moves = list(reversed(_movements(vid)))
    assert [(m.movement_type, m.quantity_before, m.quantity_after) for m in moves] == [
        (MovementType.RESTOCK, 0, 10),
        (MovementType.RESERVATION_HOLD, 0, 4),
        (MovementType.RESERVATION_HOLD, 4, 10),
        (MovementType.SALE, 10, 6),
        (MovementType.RESERVATION_RELEASE, 6, 0),
    ]
    assert all(m.quantity_after - m.quantity_before == m.quantity for m in moves)


def test_reserve_more_than_available(db, make_variant, counters):
    vid = make_variant(on_hand=2)
    res = ReservationEngine(db).reserve(vid, 3)
    assert res.outcome is Outcome.INSUFFICIENT_STOCK
    assert res.available == 2
    assert res.reservation is None
    assert res.message == "Not enough available, reduce quantity"
    assert counters(vid) == (2, 0)


def test_reserve_rejects_bad_quantity(db, make_variant):
    vid = make_variant(on_hand=2)
    with pytest.raises(ValueError):
        ReservationEngine(db).reserve(vid, 0)


def test_requested_hold_is_honoured(db, make_variant):
    vid = make_variant(on_hand=2)
    now = utcnow()
    res = ReservationEngine(db).reserve(vid, 1, hold_minutes=45, now=now)
    assert res.ok
    delta = res.reservation.expires_at.replace(tzinfo=None) - now.replace(tzinfo=None)
    assert delta == timedelta(minutes=45)


def test_oversize_or_zero_hold_is_rejected(db, make_variant, counters, monkeypatch):
    from stockhold.config import settings

    monkeypatch.setattr(settings, "MAX_HOLD_MINUTES", 60)
    vid = make_variant(on_hand=2)
    engine = ReservationEngine(db)
    with pytest.raises(ValueError):
        engine.reserve(vid, 1, hold_minutes=120)
    with pytest.raises(ValueError):
        engine.reserve(vid, 1, hold_minutes=0)
    with pytest.raises(ValueError):
        engine.reserve_cart([CartLine(vid, 1)], hold_minutes=0)
    assert counters(vid) == (2, 0)


def test_confirm_is_idempotent_for_same_order(db, make_variant, counters):
    vid = make_variant(on_hand=5)
    engine = ReservationEngine(db)
    rid = engine.reserve(vid, 2).reservation.id

    assert engine.confirm(rid, "order-9").ok
    again = engine.confirm(rid, "order-9")
    assert again.ok
    other = engine.confirm(rid, "order-10")
    assert other.outcome is Outcome.ALREADY_TERMINAL
    assert counters(vid) == (3, 0)
    sales = [m for m in _movements(vid) if m.movement_type is MovementType.SALE]
    assert len(sales) == 1


def test_confirm_after_expiry_is_refused(db, make_variant, counters):
    vid = make_variant(on_hand=5)
    engine = ReservationEngine(db)
    t0 = utcnow()
    rid = engine.reserve(vid, 2, now=t0).reservation.id

    late = engine.confirm(rid, "order-1", now=t0 + timedelta(minutes=16))
    assert late.outcome is Outcome.EXPIRED
    assert late.message == "Your hold expired, please re-add to cart"
    # stock stays held until the sweep
    assert counters(vid) == (5, 2)

    report = engine.sweep_expired(now=t0 + timedelta(minutes=16))
    assert report.released == 1
    assert counters(vid) == (5, 0)
    assert engine.confirm(rid, "order-1", now=t0 + timedelta(minutes=17)).outcome is Outcome.EXPIRED


def test_release_then_repeat_is_ok(db, make_variant, counters):
    vid = make_variant(on_hand=5)
    engine = ReservationEngine(db)
    rid = engine.reserve(vid, 2).reservation.id

    first = engine.release(rid, "checkout_abandoned")
    assert first.ok
    assert first.reservation.status is ReservationStatus.RELEASED
    assert first.reservation.release_reason == "checkout_abandoned"
    second = engine.release(rid)
    assert second.ok
    assert counters(vid) == (5, 0)
    releases = [m for m in _movements(vid) if m.movement_type is MovementType.RESERVATION_RELEASE]
    assert len(releases) == 1


def test_release_of_confirmed_is_terminal(db, make_variant, counters):
    vid = make_variant(on_hand=5)
    engine = ReservationEngine(db)
    rid = engine.reserve(vid, 2).reservation.id
    engine.confirm(rid, "order-1")

    res = engine.release(rid)
    assert res.outcome is Outcome.ALREADY_TERMINAL
    assert counters(vid) == (3, 0)


def test_cancel_marks_cancelled(db, make_variant, counters):
    vid = make_variant(on_hand=5)
    engine = ReservationEngine(db)
    rid = engine.reserve(vid, 1).reservation.id

    res = engine.cancel(rid)
    assert res.ok
    assert res.reservation.status is ReservationStatus.CANCELLED
    assert res.reservation.release_reason == "user_cancelled"
    assert counters(vid) == (5, 0)


def test_unknown_reservation(db):
    engine = ReservationEngine(db)
    assert engine.confirm(404, "order-x").outcome is Outcome.NOT_FOUND
    assert engine.release(404).outcome is Outcome.NOT_FOUND
    assert engine.extend(404, 5).outcome is Outcome.NOT_FOUND
    assert engine.validate(404).valid is False


def test_extend_active_and_expired(db, make_variant):
    vid = make_variant(on_hand=5)
    engine = ReservationEngine(db)
    t0 = utcnow()
    rid = engine.reserve(vid, 1, hold_minutes=10, now=t0).reservation.id

    ext = engine.extend(rid, 5, now=t0 + timedelta(minutes=1))
    assert ext.ok
    assert ext.reservation.expires_at.replace(tzinfo=None) == (t0 + timedelta(minutes=15)).replace(
        tzinfo=None
    )

    gone = engine.extend(rid, 5, now=t0 + timedelta(minutes=20))
    assert gone.outcome is Outcome.NOT_ACTIVE


def test_extend_adds_to_current_expiry(db, make_variant, monkeypatch):
    from stockhold.config import settings

    vid = make_variant(on_hand=5)
    engine = ReservationEngine(db)
    t0 = utcnow()
    rid = engine.reserve(vid, 1, hold_minutes=50, now=t0).reservation.id

    # lowering the ceiling never pulls an existing hold in
    monkeypatch.setattr(settings, "MAX_HOLD_MINUTES", 30)
    ext = engine.extend(rid, 20, now=t0)
    assert ext.ok
    assert ext.reservation.expires_at.replace(tzinfo=None) == (t0 + timedelta(minutes=70)).replace(
        tzinfo=None
    )

    with pytest.raises(ValueError):
        engine.extend(rid, 31, now=t0)


def test_reserve_cart_all_or_nothing(db, make_variant, counters):
    a = make_variant("SNK-A", on_hand=5)
    b = make_variant("SNK-B", on_hand=1)
    engine = ReservationEngine(db)

    failed = engine.reserve_cart([CartLine(a, 2), CartLine(b, 2)], cart_ref="cart-x")
    assert failed.outcome is Outcome.INSUFFICIENT_STOCK
    assert failed.failed_line.variant_id == b
    assert failed.available == 1
    assert counters(a) == (5, 0)
    assert counters(b) == (1, 0)
    assert engine.list_for_cart("cart-x") == []

    ok = engine.reserve_cart([CartLine(a, 1), CartLine(b, 1), CartLine(a, 1)], cart_ref="cart-y")
    assert ok.ok
    assert sorted((r.variant_id, r.quantity) for r in ok.reservations) == [(a, 2), (b, 1)]
    assert counters(a) == (5, 2)
    assert counters(b) == (1, 1)


def test_release_cart(db, make_variant, counters):
    vid = make_variant(on_hand=10)
    engine = ReservationEngine(db)
    engine.reserve(vid, 1, cart_ref="cart-z")
    kept = engine.reserve(vid, 2, cart_ref="cart-z").reservation.id
    engine.confirm(kept, "order-z")
    engine.reserve(vid, 3, cart_ref="cart-z")

    assert engine.release_cart("cart-z") == 2
    assert engine.release_cart("cart-z") == 0
    assert counters(vid) == (8, 0)


def test_validate(db, make_variant):
    vid = make_variant(on_hand=5)
    engine = ReservationEngine(db)
    t0 = utcnow()
    rid = engine.reserve(vid, 1, now=t0).reservation.id

    ok = engine.validate(rid, now=t0 + timedelta(minutes=5))
    assert ok.valid
    assert ok.seconds_remaining == 600

    late = engine.validate(rid, now=t0 + timedelta(minutes=15))
    assert not late.valid
    assert late.reason == "Reservation has expired"

    engine.release(rid)
    assert engine.validate(rid).reason == "Reservation is released"


def test_stats(db, make_variant):
    vid = make_variant(on_hand=20)
    engine = ReservationEngine(db)
    t0 = utcnow()
    engine.reserve(vid, 1, hold_minutes=1, now=t0)  # needs cleanup at t0+2
    engine.reserve(vid, 1, hold_minutes=5, now=t0)  # expiring soon at t0+2
    engine.reserve(vid, 1, hold_minutes=30, now=t0)

    stats = engine.stats(now=t0 + timedelta(minutes=2))
    assert stats.active_count == 3
    assert stats.needs_cleanup_count == 1
    assert stats.expiring_soon_count == 1
    assert stats.expired_count == 0
    assert stats.next_cleanup_recommended


def test_audit_stays_consistent(db, make_variant):
    vid = make_variant(on_hand=10)
    engine = ReservationEngine(db)
    t0 = utcnow()
    a = engine.reserve(vid, 2, now=t0).reservation.id
    b = engine.reserve(vid, 3, now=t0).reservation.id
    engine.reserve(vid, 1, now=t0, hold_minutes=1)
    engine.confirm(a, "order-a", now=t0)
    engine.release(b, now=t0)
    engine.sweep_expired(now=t0 + timedelta(minutes=2))

    report = StockAdminService(db).audit(vid)
    assert report["consistent"]
    assert report["quantity_reserved"] == report["active_reservation_quantity"] == 0
    assert report["quantity_on_hand"] == 8

    # on_hand is the sum of its movements; a sale also consumes the held quantity
    moves = _movements(vid)
    on_hand = sum(m.quantity for m in moves if m.counter is StockCounter.ON_HAND)
    held = sum(m.quantity for m in moves if m.counter is StockCounter.RESERVED)
    sold = sum(m.quantity for m in moves if m.movement_type is MovementType.SALE)
    assert on_hand == 8
    assert held + sold == 0
    assert len(moves) == 7
