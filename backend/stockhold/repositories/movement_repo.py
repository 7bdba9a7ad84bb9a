from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockhold.models.stock_movement import MovementType, StockMovement
from stockhold.models.variant_stock import VariantStock
from stockhold.outcomes import LedgerResult


class MovementLog:
    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        change: LedgerResult,
        movement_type: MovementType,
        reason: Optional[str] = None,
        reference_id=None,
    ) -> StockMovement:
        """
        Append the audit row for a successful ledger change. Must run in the
        same transaction as the change itself.
        """
        m = StockMovement(
            variant_id=change.variant_id,
            movement_type=movement_type,
            counter=change.counter,
            quantity=change.after - change.before,
            quantity_before=change.before,
            quantity_after=change.after,
            reason=reason,
            reference_id=str(reference_id) if reference_id is not None else None,
        )
        self.db.add(m)
        self.db.flush()
        return m

    def list_for_variant(
        self,
        variant_id: int,
        movement_type: Optional[MovementType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[StockMovement]:
        stmt = select(StockMovement).where(StockMovement.variant_id == variant_id)
        if movement_type is not None:
            stmt = stmt.where(StockMovement.movement_type == movement_type)
        stmt = stmt.order_by(StockMovement.id.desc()).offset(offset).limit(limit)
        return list(self.db.execute(stmt).scalars())

    def list_for_product(
        self,
        product_id: int,
        movement_type: Optional[MovementType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[StockMovement]:
        stmt = (
            select(StockMovement)
            .join(VariantStock, VariantStock.id == StockMovement.variant_id)
            .where(VariantStock.product_id == product_id)
        )
        if movement_type is not None:
            stmt = stmt.where(StockMovement.movement_type == movement_type)
        stmt = stmt.order_by(StockMovement.id.desc()).offset(offset).limit(limit)
        return list(self.db.execute(stmt).scalars())

    def list_for_reference(self, reference_id) -> List[StockMovement]:
        stmt = (
            select(StockMovement)
            .where(StockMovement.reference_id == str(reference_id))
            .order_by(StockMovement.id)
        )
        return list(self.db.execute(stmt).scalars())
