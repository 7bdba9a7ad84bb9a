import enum
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
)

from stockhold.db import Base
from stockhold.utils.clock import ensure_utc


class ReservationStatus(str, enum.Enum):
    ACTIVE = "active"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    RELEASED = "released"
    CANCELLED = "cancelled"


class StockReservation(Base):
    __tablename__ = "stock_reservations"
    id = Column(Integer, primary_key=True, autoincrement=True)
    variant_id = Column(
        Integer, ForeignKey("variant_stock.id", ondelete="RESTRICT"), nullable=False
    )
    quantity = Column(Integer, nullable=False)
    status = Column(
        Enum(
            ReservationStatus,
            native_enum=False,
            length=16,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=ReservationStatus.ACTIVE,
    )
    cart_ref = Column(String(128), nullable=True, index=True)
    order_ref = Column(String(128), nullable=True, index=True)
    release_reason = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    expires_at = Column(DateTime(timezone=True), nullable=False)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_reservation_quantity_positive"),
        Index("ix_stock_reservations_variant_status", "variant_id", "status"),
        Index("ix_stock_reservations_status_expires", "status", "expires_at"),
    )

    def is_active(self, now=None):
        if not now:
            now = datetime.now(timezone.utc)
        return self.status == ReservationStatus.ACTIVE and ensure_utc(self.expires_at) > now

    def __repr__(self):
        return (
            f"<StockReservation id={self.id} variant={self.variant_id} "
            f"qty={self.quantity} status={self.status.value}>"
        )
