from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockhold.models.product import Product
from stockhold.models.stock_movement import MovementType, StockCounter, StockMovement
from stockhold.models.variant_stock import VariantStock
from stockhold.outcomes import BatchStockResult, LedgerResult, Outcome, StockUpdate
from stockhold.repositories.movement_repo import MovementLog
from stockhold.repositories.reservation_repo import ReservationStore
from stockhold.repositories.stock_ledger import StockLedger
from stockhold.services.alert_service import AlertService, StockLevel
from stockhold.utils.log import get_logger
from stockhold.utils.transactions import smart_transaction

log = get_logger("admin")

ADJUSTMENT_TYPES = (MovementType.RESTOCK, MovementType.ADJUSTMENT)


class StockAdminService:
    """Administrative seam: variant registration, restocks and corrections."""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = StockLedger(db)
        self.movements = MovementLog(db)
        self.alerts = AlertService(db)

    def register_variant(
        self,
        sku: str,
        product_sku: Optional[str] = None,
        product_name: Optional[str] = None,
        size: Optional[str] = None,
        color: Optional[str] = None,
        initial_on_hand: int = 0,
        low_stock_threshold: Optional[int] = None,
        product_low_stock_threshold: Optional[int] = None,
        is_active: Optional[bool] = None,
    ) -> VariantStock:
        """
        Create a variant, or update the descriptive fields of an existing one.
        Counters of an existing variant are never overwritten here; use
        adjust_on_hand so the change is audited.
        Fields left as None keep their stored value on an existing variant.
        """
        if initial_on_hand < 0:
            raise ValueError("initial_on_hand must not be negative")
        with smart_transaction(self.db):
            product = None
            if product_sku:
                product = self.db.execute(
                    select(Product).where(Product.sku == product_sku)
                ).scalar_one_or_none()
                if product is None:
                    product = Product(sku=product_sku, name=product_name or product_sku)
                    self.db.add(product)
                elif product_name:
                    product.name = product_name
                if product_low_stock_threshold is not None:
                    product.low_stock_threshold = product_low_stock_threshold
                self.db.flush()

            v = self.db.execute(
                select(VariantStock).where(VariantStock.sku == sku)
            ).scalar_one_or_none()
            if v:
                v.size = size if size is not None else v.size
                v.color = color if color is not None else v.color
                if low_stock_threshold is not None:
                    v.low_stock_threshold = low_stock_threshold
                if is_active is not None:
                    v.is_active = is_active
                if product is not None:
                    v.product_id = product.id
                created = False
            else:
                v = VariantStock(
                    sku=sku,
                    product_id=product.id if product is not None else None,
                    size=size,
                    color=color,
                    quantity_on_hand=0,
                    quantity_reserved=0,
                    low_stock_threshold=low_stock_threshold,
                    is_active=True if is_active is None else is_active,
                )
                self.db.add(v)
                created = True
            self.db.flush()

            if created and initial_on_hand:
                change = self.ledger.adjust_on_hand(v.id, initial_on_hand)
                self.movements.record(change, MovementType.RESTOCK, reason="initial stock")
            v = self.ledger.get(v.id)
            self.alerts.refresh(v)

        log.info("%s variant %s (id=%s)", "registered" if created else "updated", sku, v.id)
        return v

    def adjust_on_hand(
        self,
        variant_id: int,
        delta: int,
        reason: Optional[str] = None,
        movement_type: MovementType = MovementType.ADJUSTMENT,
        reference_id: Optional[str] = None,
    ) -> LedgerResult:
        if movement_type not in ADJUSTMENT_TYPES:
            raise ValueError(f"{movement_type.value} is not an administrative movement")
        if delta == 0:
            raise ValueError("delta must be non-zero")
        with smart_transaction(self.db):
            change = self.ledger.adjust_on_hand(variant_id, delta)
            if change.ok:
                self.movements.record(
                    change, movement_type, reason=reason, reference_id=reference_id
                )
                self.alerts.refresh(self.ledger.get(variant_id))
        if change.ok:
            log.info(
                "%s variant %s on_hand %s -> %s (%s)",
                movement_type.value,
                variant_id,
                change.before,
                change.after,
                reason,
            )
        return change

    def set_on_hand(
        self,
        variant_id: int,
        new_on_hand: int,
        expected_on_hand: Optional[int] = None,
        reason: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> LedgerResult:
        """
        Set on_hand to an absolute count, as a stocktake would.

        The delta is computed from the value read and applied with a compare on
        that value, so a concurrent sale or restock is never overwritten. When
        the caller passes expected_on_hand (the count it showed the user) a
        mismatch is reported as CONFLICT; otherwise a lost race is re-read and
        retried. An increase is recorded as a restock, a decrease as an
        adjustment.
        """
        if new_on_hand < 0:
            raise ValueError("new_on_hand must not be negative")
        change = LedgerResult(Outcome.CONFLICT, variant_id)
        for _ in range(3):
            with smart_transaction(self.db):
                v = self.ledger.get(variant_id)
                if v is None:
                    return LedgerResult(Outcome.NOT_FOUND, variant_id)
                seen = v.quantity_on_hand
                if expected_on_hand is not None and seen != expected_on_hand:
                    return LedgerResult(
                        Outcome.CONFLICT, variant_id, on_hand=seen, reserved=v.quantity_reserved
                    )
                delta = new_on_hand - seen
                if delta == 0:
                    return LedgerResult(
                        Outcome.OK,
                        variant_id,
                        counter=StockCounter.ON_HAND,
                        before=seen,
                        after=seen,
                        on_hand=seen,
                        reserved=v.quantity_reserved,
                    )
                movement_type = MovementType.RESTOCK if delta > 0 else MovementType.ADJUSTMENT
                change = self.ledger.adjust_on_hand(variant_id, delta, expected_on_hand=seen)
                if change.ok:
                    self.movements.record(
                        change, movement_type, reason=reason, reference_id=reference_id
                    )
                    self.alerts.refresh(self.ledger.get(variant_id))
            if change.ok:
                log.info(
                    "set variant %s on_hand %s -> %s (%s)",
                    variant_id,
                    change.before,
                    change.after,
                    reason,
                )
                return change
            if change.outcome is not Outcome.CONFLICT or expected_on_hand is not None:
                return change
        return change

    def adjust_batch(
        self,
        product_sku: str,
        updates: List[StockUpdate],
        reason: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> Optional[BatchStockResult]:
        """
        Set on_hand for several variants of one product. Each variant is its own
        unit of work, so one refused line does not undo the others. Returns
        None when the product is unknown.
        """
        with smart_transaction(self.db):
            product = self._product(product_sku)
            if product is None:
                return None
            own_ids = set(
                self.db.execute(
                    select(VariantStock.id).where(VariantStock.product_id == product.id)
                ).scalars()
            )
        report = BatchStockResult(product_sku)
        for u in updates:
            if u.variant_id not in own_ids:
                report.results.append(LedgerResult(Outcome.NOT_FOUND, u.variant_id))
                continue
            report.results.append(
                self.set_on_hand(
                    u.variant_id,
                    u.new_on_hand,
                    expected_on_hand=u.expected_on_hand,
                    reason=reason,
                    reference_id=reference_id,
                )
            )
        log.info(
            "batch stock update for product %s: %s updated, %s failed",
            product_sku,
            report.updated,
            report.failed,
        )
        return report

    def list_stock(
        self,
        product_sku: Optional[str] = None,
        level: Optional[StockLevel] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Optional[List[Tuple[VariantStock, StockLevel]]]:
        """Variants with their stock level, optionally narrowed to one product and level."""
        with smart_transaction(self.db):
            stmt = select(VariantStock)
            if product_sku is not None:
                product = self._product(product_sku)
                if product is None:
                    return None
                stmt = stmt.where(VariantStock.product_id == product.id)
            variants = list(self.db.execute(stmt.order_by(VariantStock.id)).scalars())
            # thresholds can come from the product, so the level is worked out per row
            rows = [(v, self.alerts.level_for(v)) for v in variants]
        if level is not None:
            rows = [(v, lvl) for v, lvl in rows if lvl is level]
        return rows[offset:offset + limit]

    def list_product_movements(
        self,
        product_sku: str,
        movement_type: Optional[MovementType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Optional[List[StockMovement]]:
        with smart_transaction(self.db):
            product = self._product(product_sku)
            if product is None:
                return None
            return self.movements.list_for_product(product.id, movement_type, limit, offset)

    def _product(self, product_sku: str) -> Optional[Product]:
        return self.db.execute(
            select(Product).where(Product.sku == product_sku)
        ).scalar_one_or_none()

    def get_variant(self, variant_id: int) -> Optional[VariantStock]:
        with smart_transaction(self.db):
            return self.ledger.get(variant_id)

    def list_movements(
        self,
        variant_id: int,
        movement_type: Optional[MovementType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[StockMovement]:
        with smart_transaction(self.db):
            return self.movements.list_for_variant(variant_id, movement_type, limit, offset)

    def audit(self, variant_id: int) -> Optional[Dict]:
        """Reconcile the reserved counter against the active reservations."""
        with smart_transaction(self.db):
            v = self.ledger.get(variant_id)
            if v is None:
                return None
            active_sum = ReservationStore(self.db).active_quantity(variant_id)
        consistent = (
            v.quantity_on_hand >= v.quantity_reserved >= 0
            and v.quantity_reserved == active_sum
        )
        if not consistent:
            log.error(
                "INVARIANT VIOLATION: variant %s on_hand=%s reserved=%s active_sum=%s",
                variant_id,
                v.quantity_on_hand,
                v.quantity_reserved,
                active_sum,
            )
        return {
            "variant_id": v.id,
            "sku": v.sku,
            "quantity_on_hand": v.quantity_on_hand,
            "quantity_reserved": v.quantity_reserved,
            "quantity_available": v.quantity_available,
            "active_reservation_quantity": active_sum,
            "consistent": consistent,
            "outcome": Outcome.OK.value if consistent else Outcome.INVARIANT_VIOLATION.value,
        }
