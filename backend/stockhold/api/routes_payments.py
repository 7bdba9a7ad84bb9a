from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from stockhold.db import get_db
from stockhold.schemas.inventory_schema import PaymentCallbackIn
from stockhold.services.payment_callback_service import PaymentCallbackService

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.post("/callback", summary="Apply a payment result to an order's reservations")
def payment_callback(payload: PaymentCallbackIn, db: Session = Depends(get_db)):
    # always 200: the processor only needs to know we recorded it
    svc = PaymentCallbackService(db)
    return svc.handle(
        payload.order_ref,
        payload.reservation_ids,
        succeeded=payload.status == "succeeded",
        reason=payload.reason,
    )
