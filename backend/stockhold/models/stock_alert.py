from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, text

from stockhold.db import Base


class StockAlert(Base):
    __tablename__ = "stock_alerts"
    id = Column(Integer, primary_key=True, autoincrement=True)
    variant_id = Column(
        Integer, ForeignKey("variant_stock.id", ondelete="CASCADE"), nullable=False, index=True
    )
    alert_type = Column(String(32), nullable=False)  # low_stock, out_of_stock
    status = Column(
        String(16), nullable=False, default="active"
    )  # active, acknowledged, resolved
    priority = Column(String(16), nullable=False, default="high")  # high, critical
    threshold_value = Column(Integer, nullable=True)
    current_value = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_stock_alerts_variant_type_status", "variant_id", "alert_type", "status"),
        # one open alert per variant and type
        Index(
            "uq_stock_alerts_open_type",
            "variant_id",
            "alert_type",
            unique=True,
            sqlite_where=text("status IN ('active', 'acknowledged')"),
            postgresql_where=text("status IN ('active', 'acknowledged')"),
        ),
    )
