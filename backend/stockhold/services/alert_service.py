import enum
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockhold.config import settings
from stockhold.models.product import Product
from stockhold.models.stock_alert import StockAlert
from stockhold.models.variant_stock import VariantStock
from stockhold.utils.log import get_logger

log = get_logger("alerts")

OPEN_STATUSES = ("active", "acknowledged")


class StockLevel(str, enum.Enum):
    OUT_OF_STOCK = "out_of_stock"
    LOW_STOCK = "low_stock"
    IN_STOCK = "in_stock"


_PRIORITY = {StockLevel.OUT_OF_STOCK: "critical", StockLevel.LOW_STOCK: "high"}


def classify(available: int, threshold: int) -> StockLevel:
    if available <= 0:
        return StockLevel.OUT_OF_STOCK
    if available <= threshold:
        return StockLevel.LOW_STOCK
    return StockLevel.IN_STOCK


class AlertService:
    """Derives low/out-of-stock alerts from ledger state. Never touches counters."""

    def __init__(self, db: Session):
        self.db = db

    def threshold_for(self, variant: VariantStock) -> int:
        if variant.low_stock_threshold is not None:
            return variant.low_stock_threshold
        if variant.product_id is not None:
            product_threshold = self.db.execute(
                select(Product.low_stock_threshold).where(Product.id == variant.product_id)
            ).scalar()
            if product_threshold is not None:
                return product_threshold
        return settings.DEFAULT_LOW_STOCK_THRESHOLD

    def level_for(self, variant: VariantStock) -> StockLevel:
        return classify(variant.quantity_available, self.threshold_for(variant))

    def refresh(self, variant: VariantStock) -> StockLevel:
        """
        Raise or update the open alert matching the variant's current level and
        resolve open alerts of any other type. Runs in the caller's transaction.
        """
        threshold = self.threshold_for(variant)
        available = variant.quantity_available
        level = classify(available, threshold)
        now = datetime.now(timezone.utc)

        open_alerts = list(
            self.db.execute(
                select(StockAlert).where(
                    StockAlert.variant_id == variant.id,
                    StockAlert.status.in_(OPEN_STATUSES),
                )
            ).scalars()
        )
        current = None
        for alert in open_alerts:
            if alert.alert_type == level.value:
                current = alert
                continue
            alert.status = "resolved"
            alert.resolved_at = now
            log.info("resolved %s alert for variant %s", alert.alert_type, variant.id)

        if level is not StockLevel.IN_STOCK:
            if current is None:
                self._raise(variant.id, level, threshold, available)
            else:
                current.current_value = available
                current.threshold_value = threshold
        self.db.flush()
        return level

    def _raise(
        self, variant_id: int, level: StockLevel, threshold: int, available: int
    ) -> Optional[StockAlert]:
        alert = StockAlert(
            variant_id=variant_id,
            alert_type=level.value,
            status="active",
            priority=_PRIORITY[level],
            threshold_value=threshold,
            current_value=available,
        )
        try:
            with self.db.begin_nested():
                self.db.add(alert)
                self.db.flush()
        except IntegrityError:
            # another writer opened the same alert first; update theirs instead
            existing = self.db.execute(
                select(StockAlert).where(
                    StockAlert.variant_id == variant_id,
                    StockAlert.alert_type == level.value,
                    StockAlert.status.in_(OPEN_STATUSES),
                )
            ).scalars().first()
            if existing is not None:
                existing.current_value = available
                existing.threshold_value = threshold
            return existing
        log.info("raised %s alert for variant %s (available=%s)", level.value, variant_id, available)
        return alert

    def list_alerts(
        self,
        alert_type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[StockAlert]:
        stmt = select(StockAlert)
        if alert_type:
            stmt = stmt.where(StockAlert.alert_type == alert_type)
        if status:
            stmt = stmt.where(StockAlert.status == status)
        else:
            stmt = stmt.where(StockAlert.status.in_(OPEN_STATUSES))
        # out of stock first, newest first within a type
        stmt = stmt.order_by(
            (StockAlert.alert_type == StockLevel.OUT_OF_STOCK.value).desc(),
            StockAlert.updated_at.desc(),
        ).limit(limit)
        return list(self.db.execute(stmt).scalars())

    def acknowledge(self, alert_id: int) -> Optional[StockAlert]:
        alert = self.db.get(StockAlert, alert_id)
        if alert is None:
            return None
        if alert.status == "active":
            alert.status = "acknowledged"
            alert.acknowledged_at = datetime.now(timezone.utc)
            self.db.flush()
        return alert
