from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from stockhold.api.errors import not_found, outcome_error
from stockhold.db import get_db
from stockhold.models.stock_movement import MovementType
from stockhold.outcomes import Outcome, StockUpdate
from stockhold.schemas.inventory_schema import (
    AdjustIn,
    BatchStockIn,
    MovementOut,
    ReconciliationIssueOut,
    RegisterVariantIn,
    ResolveIssueIn,
    SetStockIn,
    VariantOut,
)
from stockhold.services.alert_service import StockLevel
from stockhold.services.payment_callback_service import PaymentCallbackService
from stockhold.services.stock_admin_service import StockAdminService

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _change_body(change):
    return {
        "variant_id": change.variant_id,
        "before": change.before,
        "after": change.after,
        "on_hand": change.on_hand,
        "reserved": change.reserved,
        "available": change.available,
    }


def _change_error(change):
    if change.outcome is Outcome.INVARIANT_VIOLATION:
        # refused before any write; a bad request rather than a server fault
        return HTTPException(
            status_code=409,
            detail={
                "error": change.outcome.value,
                "message": "Adjustment would drop on-hand below the reserved quantity",
                "on_hand": change.on_hand,
                "reserved": change.reserved,
            },
        )
    if change.outcome is Outcome.NOT_FOUND:
        return outcome_error(change.outcome, "Variant not found")
    return outcome_error(change.outcome, on_hand=change.on_hand, reserved=change.reserved)


def _raise_unless_ok(change):
    if not change.ok:
        raise _change_error(change)


@router.post("/variants", status_code=201, summary="Register or update a variant")
def register_variant(payload: RegisterVariantIn, db: Session = Depends(get_db)):
    svc = StockAdminService(db)
    try:
        v = svc.register_variant(**payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return VariantOut.model_validate(v).model_dump(mode="json")


@router.get("/variants/{variant_id}", summary="Get a variant's counters")
def get_variant(variant_id: int, db: Session = Depends(get_db)):
    v = StockAdminService(db).get_variant(variant_id)
    if v is None:
        raise not_found("Variant not found")
    return VariantOut.model_validate(v).model_dump(mode="json")


@router.post("/variants/{variant_id}/adjust", summary="Restock or correct on-hand stock")
def adjust(variant_id: int, payload: AdjustIn, db: Session = Depends(get_db)):
    svc = StockAdminService(db)
    try:
        change = svc.adjust_on_hand(
            variant_id,
            payload.delta,
            reason=payload.reason,
            movement_type=MovementType(payload.movement_type),
            reference_id=payload.reference_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    _raise_unless_ok(change)
    return _change_body(change)


@router.patch("/variants/{variant_id}/stock", summary="Set on-hand stock to a counted value")
def set_stock(variant_id: int, payload: SetStockIn, db: Session = Depends(get_db)):
    change = StockAdminService(db).set_on_hand(
        variant_id,
        payload.new_on_hand,
        expected_on_hand=payload.expected_on_hand,
        reason=payload.reason,
        reference_id=payload.reference_id,
    )
    _raise_unless_ok(change)
    return _change_body(change)


@router.patch("/products/{product_sku}/stock", summary="Set on-hand stock for several variants")
def set_product_stock(product_sku: str, payload: BatchStockIn, db: Session = Depends(get_db)):
    report = StockAdminService(db).adjust_batch(
        product_sku,
        [StockUpdate(u.variant_id, u.new_on_hand, u.expected_on_hand) for u in payload.updates],
        reason=payload.reason,
        reference_id=payload.reference_id,
    )
    if report is None:
        raise not_found("Product not found")
    results = []
    for change in report.results:
        row = _change_body(change)
        row["outcome"] = change.outcome.value
        if not change.ok:
            row["message"] = _change_error(change).detail["message"]
        results.append(row)
    return {
        "product_sku": product_sku,
        "updated": report.updated,
        "failed": report.failed,
        "results": results,
    }


@router.get("/stock", summary="Stock levels, filtered by product and level")
def list_stock(
    product_sku: Optional[str] = None,
    level: Optional[StockLevel] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    rows = StockAdminService(db).list_stock(product_sku, level, limit=limit, offset=offset)
    if rows is None:
        raise not_found("Product not found")
    items = []
    for v, lvl in rows:
        item = VariantOut.model_validate(v).model_dump(mode="json")
        item["stock_level"] = lvl.value
        items.append(item)
    return {"product_sku": product_sku, "status": level.value if level else None, "items": items}


@router.get("/products/{product_sku}/movements", summary="Stock movements across a product's variants")
def product_movements(
    product_sku: str,
    movement_type: Optional[MovementType] = Query(None, alias="type"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    items = StockAdminService(db).list_product_movements(
        product_sku, movement_type, limit=limit, offset=offset
    )
    if items is None:
        raise not_found("Product not found")
    return {
        "product_sku": product_sku,
        "items": [MovementOut.model_validate(m).model_dump(mode="json") for m in items],
    }


@router.get("/variants/{variant_id}/audit", summary="Reconcile reserved against active holds")
def audit(variant_id: int, db: Session = Depends(get_db)):
    report = StockAdminService(db).audit(variant_id)
    if report is None:
        raise not_found("Variant not found")
    return report


@router.get("/reconciliation", summary="List reconciliation issues")
def list_reconciliation(
    status: Optional[str] = Query("open", pattern="^(open|resolved)$"),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    issues = PaymentCallbackService(db).list_issues(status=status, limit=limit)
    return [ReconciliationIssueOut.model_validate(i).model_dump(mode="json") for i in issues]


@router.post("/reconciliation/{issue_id}/resolve", summary="Mark a reconciliation issue resolved")
def resolve_reconciliation(
    issue_id: int, payload: Optional[ResolveIssueIn] = None, db: Session = Depends(get_db)
):
    note = payload.note if payload is not None else None
    issue = PaymentCallbackService(db).resolve_issue(issue_id, note)
    if issue is None:
        raise not_found("Reconciliation issue not found")
    return ReconciliationIssueOut.model_validate(issue).model_dump(mode="json")
