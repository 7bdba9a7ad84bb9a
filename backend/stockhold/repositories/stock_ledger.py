from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from stockhold.exceptions import InvariantViolation
from stockhold.models.stock_movement import StockCounter
from stockhold.models.variant_stock import VariantStock
from stockhold.outcomes import LedgerResult, Outcome
from stockhold.utils.log import get_logger

log = get_logger("ledger")

_RETURNING = (VariantStock.quantity_on_hand, VariantStock.quantity_reserved)


class StockLedger:
    """
    Atomic adjustment primitives over variant_stock counters.

    Every mutator is one conditional UPDATE ... RETURNING: the check and the
    effect are the same statement, so concurrent callers can't both pass the
    check. Mutators don't open transactions; call them inside one.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, variant_id: int) -> Optional[VariantStock]:
        return self.db.execute(
            select(VariantStock)
            .where(VariantStock.id == variant_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get_available(self, variant_id: int) -> Optional[int]:
        row = self.db.execute(select(*_RETURNING).where(VariantStock.id == variant_id)).first()
        if row is None:
            return None
        on_hand, reserved = row
        return max(0, on_hand - reserved)

    def _update(self, variant_id: int, *criteria, **values):
        stmt = (
            update(VariantStock)
            .where(VariantStock.id == variant_id, *criteria)
            .values(**values)
            .returning(*_RETURNING)
            .execution_options(synchronize_session=False)
        )
        return self.db.execute(stmt).first()

    def try_reserve(self, variant_id: int, quantity: int) -> LedgerResult:
        row = self._update(
            variant_id,
            VariantStock.is_active.is_(True),
            VariantStock.quantity_on_hand - VariantStock.quantity_reserved >= quantity,
            quantity_reserved=VariantStock.quantity_reserved + quantity,
        )
        if row is not None:
            on_hand, reserved = row
            return LedgerResult(
                Outcome.OK,
                variant_id,
                counter=StockCounter.RESERVED,
                before=reserved - quantity,
                after=reserved,
                on_hand=on_hand,
                reserved=reserved,
            )

        # nothing was written; work out why
        variant = self.get(variant_id)
        if variant is None:
            return LedgerResult(Outcome.NOT_FOUND, variant_id)
        outcome = Outcome.INACTIVE if not variant.is_active else Outcome.INSUFFICIENT_STOCK
        return LedgerResult(
            outcome,
            variant_id,
            on_hand=variant.quantity_on_hand,
            reserved=variant.quantity_reserved,
        )

    def release_reserved(self, variant_id: int, quantity: int) -> LedgerResult:
        row = self._update(
            variant_id,
            VariantStock.quantity_reserved >= quantity,
            quantity_reserved=VariantStock.quantity_reserved - quantity,
        )
        if row is not None:
            on_hand, reserved = row
            return LedgerResult(
                Outcome.OK,
                variant_id,
                counter=StockCounter.RESERVED,
                before=reserved + quantity,
                after=reserved,
                on_hand=on_hand,
                reserved=reserved,
            )

        # reserved < quantity: floor at zero, compare-and-swap on the value we saw
        for _ in range(3):
            variant = self.get(variant_id)
            if variant is None:
                return LedgerResult(Outcome.NOT_FOUND, variant_id)
            seen = variant.quantity_reserved
            if seen >= quantity:
                return self.release_reserved(variant_id, quantity)
            row = self._update(
                variant_id,
                VariantStock.quantity_reserved == seen,
                quantity_reserved=0,
            )
            if row is not None:
                log.warning(
                    "release of %s on variant %s exceeds reserved=%s; floored at 0",
                    quantity,
                    variant_id,
                    seen,
                )
                on_hand, reserved = row
                return LedgerResult(
                    Outcome.OK,
                    variant_id,
                    counter=StockCounter.RESERVED,
                    before=seen,
                    after=reserved,
                    on_hand=on_hand,
                    reserved=reserved,
                )
        raise InvariantViolation(
            f"could not floor reserved quantity on variant {variant_id}", variant_id=variant_id
        )

    def confirm_sale(self, variant_id: int, quantity: int) -> LedgerResult:
        row = self._update(
            variant_id,
            VariantStock.quantity_on_hand >= quantity,
            VariantStock.quantity_reserved >= quantity,
            quantity_on_hand=VariantStock.quantity_on_hand - quantity,
            quantity_reserved=VariantStock.quantity_reserved - quantity,
        )
        if row is None:
            variant = self.get(variant_id)
            detail = (
                "variant missing"
                if variant is None
                else f"on_hand={variant.quantity_on_hand} reserved={variant.quantity_reserved}"
            )
            log.error(
                "INVARIANT VIOLATION: confirm_sale(%s, %s) rejected, %s",
                variant_id,
                quantity,
                detail,
            )
            raise InvariantViolation(
                f"cannot sell {quantity} of variant {variant_id}: {detail}",
                variant_id=variant_id,
            )
        on_hand, reserved = row
        return LedgerResult(
            Outcome.OK,
            variant_id,
            counter=StockCounter.ON_HAND,
            before=on_hand + quantity,
            after=on_hand,
            on_hand=on_hand,
            reserved=reserved,
        )

    def adjust_on_hand(
        self, variant_id: int, delta: int, expected_on_hand: Optional[int] = None
    ) -> LedgerResult:
        """
        Shift on_hand by delta, never below reserved or zero. With
        expected_on_hand the write only lands if on_hand still holds that value;
        otherwise the result is CONFLICT and nothing changes.
        """
        criteria = [
            VariantStock.quantity_on_hand + delta >= VariantStock.quantity_reserved,
            VariantStock.quantity_on_hand + delta >= 0,
        ]
        if expected_on_hand is not None:
            criteria.append(VariantStock.quantity_on_hand == expected_on_hand)
        row = self._update(
            variant_id, *criteria, quantity_on_hand=VariantStock.quantity_on_hand + delta
        )
        if row is not None:
            on_hand, reserved = row
            return LedgerResult(
                Outcome.OK,
                variant_id,
                counter=StockCounter.ON_HAND,
                before=on_hand - delta,
                after=on_hand,
                on_hand=on_hand,
                reserved=reserved,
            )

        variant = self.get(variant_id)
        if variant is None:
            return LedgerResult(Outcome.NOT_FOUND, variant_id)
        if expected_on_hand is not None and variant.quantity_on_hand != expected_on_hand:
            return LedgerResult(
                Outcome.CONFLICT,
                variant_id,
                on_hand=variant.quantity_on_hand,
                reserved=variant.quantity_reserved,
            )
        log.error(
            "adjust_on_hand(%s, %+d) refused: on_hand=%s reserved=%s",
            variant_id,
            delta,
            variant.quantity_on_hand,
            variant.quantity_reserved,
        )
        return LedgerResult(
            Outcome.INVARIANT_VIOLATION,
            variant_id,
            on_hand=variant.quantity_on_hand,
            reserved=variant.quantity_reserved,
        )
