from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from stockhold.api.errors import not_found, outcome_error
from stockhold.db import get_db
from stockhold.models.stock_movement import MovementType
from stockhold.outcomes import CartLine
from stockhold.schemas.inventory_schema import (
    AlertOut,
    ConfirmIn,
    ExtendIn,
    MovementOut,
    ReleaseIn,
    ReservationOut,
    ReserveCartIn,
    ReserveIn,
)
from stockhold.services.alert_service import AlertService
from stockhold.services.reservation_engine import ReservationEngine
from stockhold.services.stock_admin_service import StockAdminService
from stockhold.utils.transactions import smart_transaction

router = APIRouter(prefix="/api/inventory", tags=["inventory"])


def _reservation_body(result):
    body = ReservationOut.model_validate(result.reservation).model_dump(mode="json")
    if result.available is not None:
        body["available"] = result.available
    return body


def _raise_unless_ok(result):
    if not result.ok:
        raise outcome_error(
            result.outcome,
            result.message,
            available=result.available,
            reservation_id=result.reservation.id if result.reservation is not None else None,
        )


@router.post("/reservations", status_code=201, summary="Reserve stock for a variant")
def reserve(payload: ReserveIn, db: Session = Depends(get_db)):
    engine = ReservationEngine(db)
    try:
        result = engine.reserve(
            payload.variant_id,
            payload.quantity,
            hold_minutes=payload.hold_minutes,
            cart_ref=payload.cart_ref,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    _raise_unless_ok(result)
    return _reservation_body(result)


@router.post("/reservations/cart", status_code=201, summary="Reserve a whole cart (all or nothing)")
def reserve_cart(payload: ReserveCartIn, db: Session = Depends(get_db)):
    engine = ReservationEngine(db)
    try:
        result = engine.reserve_cart(
            [CartLine(it.variant_id, it.quantity) for it in payload.items],
            hold_minutes=payload.hold_minutes,
            cart_ref=payload.cart_ref,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not result.ok:
        raise outcome_error(
            result.outcome,
            variant_id=result.failed_line.variant_id,
            requested=result.failed_line.quantity,
            available=result.available,
        )
    return {
        "cart_ref": payload.cart_ref,
        "reservations": [
            ReservationOut.model_validate(r).model_dump(mode="json") for r in result.reservations
        ],
    }


@router.get("/reservations/{reservation_id}", summary="Get a reservation")
def get_reservation(reservation_id: int, db: Session = Depends(get_db)):
    r = ReservationEngine(db).get_reservation(reservation_id)
    if r is None:
        raise not_found("Reservation not found")
    return ReservationOut.model_validate(r).model_dump(mode="json")


@router.get("/reservations/{reservation_id}/validate", summary="Check a reservation is still held")
def validate(reservation_id: int, db: Session = Depends(get_db)):
    v = ReservationEngine(db).validate(reservation_id)
    return {
        "reservation_id": reservation_id,
        "valid": v.valid,
        "reason": v.reason,
        "seconds_remaining": v.seconds_remaining,
    }


@router.post("/reservations/{reservation_id}/extend", summary="Extend an active hold")
def extend(reservation_id: int, payload: ExtendIn, db: Session = Depends(get_db)):
    try:
        result = ReservationEngine(db).extend(reservation_id, payload.additional_minutes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    _raise_unless_ok(result)
    return _reservation_body(result)


@router.post("/reservations/{reservation_id}/confirm", summary="Convert a hold into a sale")
def confirm(reservation_id: int, payload: ConfirmIn, db: Session = Depends(get_db)):
    result = ReservationEngine(db).confirm(reservation_id, payload.order_ref)
    _raise_unless_ok(result)
    return _reservation_body(result)


@router.post("/reservations/{reservation_id}/release", summary="Release a hold")
def release(reservation_id: int, payload: Optional[ReleaseIn] = None, db: Session = Depends(get_db)):
    reason = payload.reason if payload is not None else "released"
    result = ReservationEngine(db).release(reservation_id, reason)
    _raise_unless_ok(result)
    return _reservation_body(result)


@router.post("/reservations/{reservation_id}/cancel", summary="Cancel a hold (user initiated)")
def cancel(reservation_id: int, db: Session = Depends(get_db)):
    result = ReservationEngine(db).cancel(reservation_id)
    _raise_unless_ok(result)
    return _reservation_body(result)


@router.get("/carts/{cart_ref}/reservations", summary="List a cart's reservations")
def list_cart(cart_ref: str, db: Session = Depends(get_db)):
    items = ReservationEngine(db).list_for_cart(cart_ref)
    return {
        "cart_ref": cart_ref,
        "items": [ReservationOut.model_validate(r).model_dump(mode="json") for r in items],
    }


@router.post("/carts/{cart_ref}/release", summary="Release every active hold of a cart")
def release_cart(cart_ref: str, payload: Optional[ReleaseIn] = None, db: Session = Depends(get_db)):
    reason = payload.reason if payload is not None else "checkout_abandoned"
    released = ReservationEngine(db).release_cart(cart_ref, reason)
    return {"cart_ref": cart_ref, "released": released}


@router.get("/variants/{variant_id}/available", summary="Available quantity and stock level")
def available(variant_id: int, db: Session = Depends(get_db)):
    found = ReservationEngine(db).stock_level(variant_id)
    if found is None:
        raise not_found("Variant not found")
    variant, level = found
    return {
        "variant_id": variant.id,
        "sku": variant.sku,
        "available": variant.quantity_available,
        "on_hand": variant.quantity_on_hand,
        "reserved": variant.quantity_reserved,
        "stock_level": level.value,
        "is_active": variant.is_active,
    }


@router.get("/variants/{variant_id}/movements", summary="Stock movement history")
def movements(
    variant_id: int,
    movement_type: Optional[MovementType] = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    svc = StockAdminService(db)
    if svc.get_variant(variant_id) is None:
        raise not_found("Variant not found")
    items = svc.list_movements(variant_id, movement_type, limit=limit, offset=offset)
    return {
        "variant_id": variant_id,
        "items": [MovementOut.model_validate(m).model_dump(mode="json") for m in items],
    }


@router.get("/alerts", summary="Open low/out-of-stock alerts")
def list_alerts(
    alert_type: Optional[str] = Query(None, alias="type", pattern="^(low_stock|out_of_stock)$"),
    status: Optional[str] = Query(None, pattern="^(active|acknowledged|resolved)$"),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    with smart_transaction(db):
        alerts = AlertService(db).list_alerts(alert_type=alert_type, status=status, limit=limit)
    return {"items": [AlertOut.model_validate(a).model_dump(mode="json") for a in alerts]}


@router.post("/alerts/{alert_id}/acknowledge", summary="Acknowledge an alert")
def acknowledge_alert(alert_id: int, db: Session = Depends(get_db)):
    with smart_transaction(db):
        alert = AlertService(db).acknowledge(alert_id)
    if alert is None:
        raise not_found("Alert not found")
    return AlertOut.model_validate(alert).model_dump(mode="json")
