from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from stockhold.models.stock_reservation import ReservationStatus, StockReservation


class ReservationStore:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        variant_id: int,
        quantity: int,
        expires_at: datetime,
        now: datetime,
        cart_ref: Optional[str] = None,
    ) -> StockReservation:
        r = StockReservation(
            variant_id=variant_id,
            quantity=quantity,
            status=ReservationStatus.ACTIVE,
            cart_ref=cart_ref,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )
        self.db.add(r)
        self.db.flush()  # ensure id assigned
        return r

    def get(self, reservation_id: int) -> Optional[StockReservation]:
        return self.db.execute(
            select(StockReservation)
            .where(StockReservation.id == reservation_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def transition(
        self,
        reservation_id: int,
        to_status: ReservationStatus,
        now: datetime,
        *,
        unexpired_only: bool = False,
        expired_only: bool = False,
        order_ref: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Optional[Tuple[int, int]]:
        """
        Compare-and-swap active -> `to_status`.

        Returns (variant_id, quantity) when this call won the transition, None
        when the row is missing or no longer active (someone else won).
        """
        criteria = [
            StockReservation.id == reservation_id,
            StockReservation.status == ReservationStatus.ACTIVE,
        ]
        if unexpired_only:
            criteria.append(StockReservation.expires_at > now)
        if expired_only:
            criteria.append(StockReservation.expires_at <= now)

        values = {"status": to_status, "updated_at": now}
        if to_status is ReservationStatus.CONFIRMED:
            values.update(confirmed_at=now, order_ref=order_ref)
        else:
            values.update(released_at=now, release_reason=reason)

        stmt = (
            update(StockReservation)
            .where(*criteria)
            .values(**values)
            .returning(StockReservation.variant_id, StockReservation.quantity)
            .execution_options(synchronize_session=False)
        )
        row = self.db.execute(stmt).first()
        return (row[0], row[1]) if row is not None else None

    def extend(
        self, reservation_id: int, seen_expires_at: datetime, new_expires_at: datetime, now: datetime
    ) -> bool:
        stmt = (
            update(StockReservation)
            .where(
                StockReservation.id == reservation_id,
                StockReservation.status == ReservationStatus.ACTIVE,
                StockReservation.expires_at == seen_expires_at,
                StockReservation.expires_at > now,
            )
            .values(expires_at=new_expires_at, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).rowcount == 1

    def expired_ids(self, now: datetime, limit: int) -> List[int]:
        stmt = (
            select(StockReservation.id)
            .where(
                StockReservation.status == ReservationStatus.ACTIVE,
                StockReservation.expires_at <= now,
            )
            .order_by(StockReservation.expires_at)
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars())

    def active_ids_for_cart(self, cart_ref: str) -> List[int]:
        stmt = select(StockReservation.id).where(
            StockReservation.cart_ref == cart_ref,
            StockReservation.status == ReservationStatus.ACTIVE,
        )
        return list(self.db.execute(stmt).scalars())

    def list_for_cart(self, cart_ref: str) -> List[StockReservation]:
        stmt = (
            select(StockReservation)
            .where(StockReservation.cart_ref == cart_ref)
            .order_by(StockReservation.id)
        )
        return list(self.db.execute(stmt).scalars())

    def count(self, status: ReservationStatus, expires_before: Optional[datetime] = None) -> int:
        stmt = select(func.count(StockReservation.id)).where(StockReservation.status == status)
        if expires_before is not None:
            stmt = stmt.where(StockReservation.expires_at <= expires_before)
        return self.db.execute(stmt).scalar() or 0

    def active_quantity(self, variant_id: int) -> int:
        stmt = select(func.coalesce(func.sum(StockReservation.quantity), 0)).where(
            StockReservation.variant_id == variant_id,
            StockReservation.status == ReservationStatus.ACTIVE,
        )
        return int(self.db.execute(stmt).scalar() or 0)
