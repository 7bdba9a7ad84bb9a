from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
)

from stockhold.db import Base


class VariantStock(Base):
    """
    Stock ledger row for one sellable SKU (product + size/colour).

    quantity_reserved is the sum of active reservation quantities; it is only
    ever changed through the conditional updates in StockLedger.
    """

    __tablename__ = "variant_stock"
    id = Column(Integer, primary_key=True, autoincrement=True)
    sku = Column(String(64), unique=True, nullable=False, index=True)
    product_id = Column(
        Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True
    )
    size = Column(String(32), nullable=True)
    color = Column(String(64), nullable=True)
    quantity_on_hand = Column(Integer, nullable=False, default=0)
    quantity_reserved = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint("quantity_on_hand >= 0", name="ck_variant_on_hand_non_negative"),
        CheckConstraint("quantity_reserved >= 0", name="ck_variant_reserved_non_negative"),
        CheckConstraint(
            "quantity_on_hand >= quantity_reserved", name="ck_variant_reserved_within_on_hand"
        ),
    )

    @property
    def quantity_available(self) -> int:
        return max(0, (self.quantity_on_hand or 0) - (self.quantity_reserved or 0))

    def __repr__(self):
        return (
            f"<VariantStock sku={self.sku} on_hand={self.quantity_on_hand} "
            f"reserved={self.quantity_reserved}>"
        )
