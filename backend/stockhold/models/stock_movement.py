import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, String, event

from stockhold.db import Base
from stockhold.exceptions import AppendOnlyViolation


class MovementType(str, enum.Enum):
    RESERVATION_HOLD = "reservation_hold"
    RESERVATION_RELEASE = "reservation_release"
    SALE = "sale"
    RESTOCK = "restock"
    ADJUSTMENT = "adjustment"


class StockCounter(str, enum.Enum):
    ON_HAND = "on_hand"
    RESERVED = "reserved"


def _enum_column(enum_cls, length):
    return Enum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda e: [m.value for m in e],
    )


class StockMovement(Base):
    """Audit trail row; one per ledger mutation, never updated or deleted."""

    __tablename__ = "stock_movements"
    id = Column(Integer, primary_key=True, autoincrement=True)
    variant_id = Column(
        Integer, ForeignKey("variant_stock.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    movement_type = Column(_enum_column(MovementType, 32), nullable=False)
    counter = Column(_enum_column(StockCounter, 16), nullable=False)
    quantity = Column(Integer, nullable=False)  # signed delta applied to `counter`
    quantity_before = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=True)
    reference_id = Column(String(128), nullable=True, index=True)
    created_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )

    __table_args__ = (
        Index("ix_stock_movements_variant_created", "variant_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<StockMovement {self.id}: {self.movement_type.value} "
            f"{self.quantity:+d} {self.counter.value} on variant {self.variant_id}>"
        )


@event.listens_for(StockMovement, "before_update")
def _refuse_update(mapper, connection, target):
    raise AppendOnlyViolation(f"stock movement {target.id} is append-only")


@event.listens_for(StockMovement, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"stock movement {target.id} is append-only")
