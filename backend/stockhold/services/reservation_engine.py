from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from stockhold.config import settings
from stockhold.exceptions import InvariantViolation
from stockhold.models.stock_movement import MovementType
from stockhold.models.stock_reservation import ReservationStatus, StockReservation
from stockhold.models.variant_stock import VariantStock
from stockhold.outcomes import (
    CartLine,
    CartReservationResult,
    LedgerResult,
    Outcome,
    ReservationResult,
    ReservationStats,
    ReservationValidity,
    SweepReport,
)
from stockhold.repositories.movement_repo import MovementLog
from stockhold.repositories.reservation_repo import ReservationStore
from stockhold.repositories.stock_ledger import StockLedger
from stockhold.services.alert_service import AlertService, StockLevel
from stockhold.utils.clock import ensure_utc, utcnow
from stockhold.utils.log import get_logger
from stockhold.utils.transactions import smart_transaction

log = get_logger("reservations")

# reason codes that mark a user-initiated cancellation rather than a release
CANCEL_REASONS = frozenset({"user_cancelled", "cancelled"})


class _CartRollback(Exception):
    def __init__(self, result: CartReservationResult):
        super().__init__(result.outcome.value)
        self.result = result


class ReservationEngine:
    """
    Reservation lifecycle: reserve, extend, confirm, release and sweep.

    The only component allowed to call StockLedger mutators. Every public
    method runs in its own transaction, or in a SAVEPOINT when the caller
    already holds one. Status changes are compare-and-swap updates keyed on
    status == active, so racing confirm/release/sweep calls resolve to exactly
    one winner and the others see `already_terminal` (or `expired`).
    """

    def __init__(self, db: Session, now_fn: Callable[[], datetime] = utcnow):
        self.db = db
        self.ledger = StockLedger(db)
        self.store = ReservationStore(db)
        self.movements = MovementLog(db)
        self.alerts = AlertService(db)
        self._now_fn = now_fn

    def _now(self, now: Optional[datetime]) -> datetime:
        return ensure_utc(now) if now is not None else self._now_fn()

    @staticmethod
    def _hold(hold_minutes: Optional[int]) -> timedelta:
        minutes = settings.RESERVATION_HOLD_MINUTES if hold_minutes is None else hold_minutes
        if minutes <= 0:
            raise ValueError("Hold duration must be positive")
        if minutes > settings.MAX_HOLD_MINUTES:
            raise ValueError(f"Hold duration may not exceed {settings.MAX_HOLD_MINUTES} minutes")
        return timedelta(minutes=minutes)

    def _refresh_alerts(self, variant_id: int) -> None:
        variant = self.ledger.get(variant_id)
        if variant is not None:
            self.alerts.refresh(variant)

    # --- reserve ---------------------------------------------------------

    def _reserve_line(
        self,
        variant_id: int,
        quantity: int,
        hold: timedelta,
        cart_ref: Optional[str],
        now: datetime,
    ) -> ReservationResult:
        change = self.ledger.try_reserve(variant_id, quantity)
        if not change.ok:
            return ReservationResult(change.outcome, available=change.available)

        r = self.store.create(variant_id, quantity, now + hold, now, cart_ref=cart_ref)
        self.movements.record(
            change,
            MovementType.RESERVATION_HOLD,
            reason=f"hold for cart {cart_ref}" if cart_ref else "reservation hold",
            reference_id=r.id,
        )
        self._refresh_alerts(variant_id)
        return ReservationResult(Outcome.OK, r, available=change.available)

    def reserve(
        self,
        variant_id: int,
        quantity: int,
        hold_minutes: Optional[int] = None,
        cart_ref: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ReservationResult:
        if quantity <= 0:
            raise ValueError("Quantity must be positive")
        hold = self._hold(hold_minutes)
        now = self._now(now)
        with smart_transaction(self.db):
            result = self._reserve_line(variant_id, quantity, hold, cart_ref, now)

        if result.ok:
            log.info(
                "reserved %s of variant %s as reservation %s (cart=%s, available=%s)",
                quantity,
                variant_id,
                result.reservation.id,
                cart_ref,
                result.available,
            )
        else:
            log.info("reserve %s of variant %s refused: %s", quantity, variant_id, result.outcome.value)
        return result

    def reserve_cart(
        self,
        lines: Iterable[CartLine],
        hold_minutes: Optional[int] = None,
        cart_ref: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CartReservationResult:
        """
        Reserve every line or none of them. Lines for the same variant are
        merged and variants are visited in id order so two carts can't lock
        the same rows in opposite orders.
        """
        merged: Dict[int, int] = {}
        for line in lines:
            if line.quantity <= 0:
                raise ValueError("Quantity must be positive")
            merged[line.variant_id] = merged.get(line.variant_id, 0) + line.quantity
        if not merged:
            raise ValueError("Cart has no lines")

        hold = self._hold(hold_minutes)
        now = self._now(now)
        reservations: List[StockReservation] = []
        try:
            with smart_transaction(self.db):
                for variant_id in sorted(merged):
                    line = CartLine(variant_id, merged[variant_id])
                    res = self._reserve_line(variant_id, line.quantity, hold, cart_ref, now)
                    if not res.ok:
                        raise _CartRollback(
                            CartReservationResult(
                                res.outcome, failed_line=line, available=res.available
                            )
                        )
                    reservations.append(res.reservation)
        except _CartRollback as stop:
            log.info(
                "cart %s not reserved: variant %s %s",
                cart_ref,
                stop.result.failed_line.variant_id,
                stop.result.outcome.value,
            )
            return stop.result

        log.info("reserved cart %s: %s reservations", cart_ref, len(reservations))
        return CartReservationResult(Outcome.OK, reservations=reservations)

    # --- extend ----------------------------------------------------------

    def extend(
        self, reservation_id: int, additional_minutes: int, now: Optional[datetime] = None
    ) -> ReservationResult:
        if additional_minutes <= 0:
            raise ValueError("Extension must be positive")
        if additional_minutes > settings.MAX_HOLD_MINUTES:
            raise ValueError(f"Extension may not exceed {settings.MAX_HOLD_MINUTES} minutes")
        now = self._now(now)

        for _ in range(3):
            with smart_transaction(self.db):
                r = self.store.get(reservation_id)
                if r is None:
                    return ReservationResult(Outcome.NOT_FOUND)
                seen = r.expires_at
                if not r.is_active(now):
                    return ReservationResult(Outcome.NOT_ACTIVE, r)
                new_expiry = ensure_utc(seen) + timedelta(minutes=additional_minutes)
                if self.store.extend(reservation_id, seen, new_expiry, now):
                    r = self.store.get(reservation_id)
                    log.info("extended reservation %s to %s", reservation_id, new_expiry.isoformat())
                    return ReservationResult(Outcome.OK, r)
            # expiry moved under us (another extend or a terminal transition); re-read

        with smart_transaction(self.db):
            r = self.store.get(reservation_id)
        if r is not None and r.is_active(now):
            # still active but every CAS lost to a concurrent extend; its later expiry stands
            return ReservationResult(Outcome.OK, r)
        return ReservationResult(Outcome.NOT_ACTIVE, r)

    # --- confirm ---------------------------------------------------------

    def confirm(
        self, reservation_id: int, order_ref: str, now: Optional[datetime] = None
    ) -> ReservationResult:
        if not order_ref:
            raise ValueError("order_ref is required")
        now = self._now(now)
        try:
            with smart_transaction(self.db):
                won = self.store.transition(
                    reservation_id,
                    ReservationStatus.CONFIRMED,
                    now,
                    unexpired_only=True,
                    order_ref=order_ref,
                )
                if won is not None:
                    variant_id, quantity = won
                    change = self.ledger.confirm_sale(variant_id, quantity)
                    self.movements.record(
                        change,
                        MovementType.SALE,
                        reason=f"reservation {reservation_id} confirmed",
                        reference_id=order_ref,
                    )
                    self._refresh_alerts(variant_id)
                r = self.store.get(reservation_id)
        except InvariantViolation as exc:
            exc.reservation_id = reservation_id
            log.error(
                "confirm of reservation %s for order %s rolled back: %s",
                reservation_id,
                order_ref,
                exc,
            )
            raise

        if won is not None:
            log.info("confirmed reservation %s for order %s", reservation_id, order_ref)
            return ReservationResult(Outcome.OK, r, available=change.available)

        result = self._confirm_outcome(r, order_ref, now)
        if result.outcome is not Outcome.OK:
            log.info(
                "confirm of reservation %s for order %s: %s",
                reservation_id,
                order_ref,
                result.outcome.value,
            )
        return result

    @staticmethod
    def _confirm_outcome(
        r: Optional[StockReservation], order_ref: str, now: datetime
    ) -> ReservationResult:
        if r is None:
            return ReservationResult(Outcome.NOT_FOUND)
        if r.status is ReservationStatus.CONFIRMED:
            if r.order_ref == order_ref:
                return ReservationResult(Outcome.OK, r)  # webhook retry
            return ReservationResult(Outcome.ALREADY_TERMINAL, r)
        if r.status in (ReservationStatus.ACTIVE, ReservationStatus.EXPIRED):
            # active here means past expiry but not yet swept
            return ReservationResult(Outcome.EXPIRED, r)
        return ReservationResult(Outcome.ALREADY_TERMINAL, r)

    # --- release / expire ------------------------------------------------

    def _terminate(
        self,
        reservation_id: int,
        to_status: ReservationStatus,
        reason: str,
        now: datetime,
        expired_only: bool = False,
    ) -> Tuple[Optional[LedgerResult], Optional[StockReservation]]:
        """
        Shared release path for release, cancel and expiry. Returns the ledger
        change when this call won the transition, None otherwise.
        """
        change = None
        with smart_transaction(self.db):
            won = self.store.transition(
                reservation_id, to_status, now, expired_only=expired_only, reason=reason
            )
            if won is not None:
                variant_id, quantity = won
                change = self.ledger.release_reserved(variant_id, quantity)
                self.movements.record(
                    change,
                    MovementType.RESERVATION_RELEASE,
                    reason=reason,
                    reference_id=reservation_id,
                )
                self._refresh_alerts(variant_id)
            r = self.store.get(reservation_id)
        return change, r

    @staticmethod
    def _release_status(reason_code: str) -> ReservationStatus:
        if reason_code in CANCEL_REASONS:
            return ReservationStatus.CANCELLED
        return ReservationStatus.RELEASED

    def release(
        self,
        reservation_id: int,
        reason_code: str = "released",
        now: Optional[datetime] = None,
    ) -> ReservationResult:
        now = self._now(now)
        to_status = self._release_status(reason_code)
        change, r = self._terminate(reservation_id, to_status, reason_code, now)

        if change is not None:
            log.info(
                "%s reservation %s (%s)", to_status.value, reservation_id, reason_code
            )
            return ReservationResult(Outcome.OK, r, available=change.available)
        if r is None:
            return ReservationResult(Outcome.NOT_FOUND)
        if r.status in (ReservationStatus.RELEASED, ReservationStatus.CANCELLED):
            return ReservationResult(Outcome.OK, r)  # repeat call
        log.info("release of reservation %s: already %s", reservation_id, r.status.value)
        return ReservationResult(Outcome.ALREADY_TERMINAL, r)

    def cancel(self, reservation_id: int, now: Optional[datetime] = None) -> ReservationResult:
        return self.release(reservation_id, "user_cancelled", now=now)

    def release_cart(
        self,
        cart_ref: str,
        reason_code: str = "checkout_abandoned",
        now: Optional[datetime] = None,
    ) -> int:
        now = self._now(now)
        with smart_transaction(self.db):
            ids = self.store.active_ids_for_cart(cart_ref)
        to_status = self._release_status(reason_code)
        released = 0
        for rid in ids:
            change, _ = self._terminate(rid, to_status, reason_code, now)
            if change is not None:
                released += 1
        log.info("released %s reservations of cart %s (%s)", released, cart_ref, reason_code)
        return released

    def sweep_expired(
        self, now: Optional[datetime] = None, batch_size: Optional[int] = None
    ) -> SweepReport:
        """
        Expire active reservations whose expiry has passed. Each reservation is
        its own transaction; one failure never stops the rest of the batch.
        """
        now = self._now(now)
        report = SweepReport(started_at=now)
        with smart_transaction(self.db):
            ids = self.store.expired_ids(now, batch_size or settings.SWEEP_BATCH_SIZE)
        report.examined = len(ids)

        attempts = 1 + max(0, settings.SWEEP_RETRY_ATTEMPTS)
        for rid in ids:
            for attempt in range(1, attempts + 1):
                try:
                    change, _ = self._terminate(
                        rid, ReservationStatus.EXPIRED, "expired", now, expired_only=True
                    )
                except InvariantViolation:
                    log.exception("sweep: reservation %s broke a stock invariant", rid)
                    report.failed_ids.append(rid)
                    break
                except Exception:
                    if attempt < attempts:
                        log.warning("sweep: reservation %s failed (attempt %s), retrying", rid, attempt)
                        continue
                    log.exception("sweep: giving up on reservation %s", rid)
                    report.failed_ids.append(rid)
                    break
                if change is not None:
                    report.released += 1
                else:
                    report.skipped += 1  # confirmed or released concurrently
                break
        return report

    # --- queries ---------------------------------------------------------

    def get_reservation(self, reservation_id: int) -> Optional[StockReservation]:
        with smart_transaction(self.db):
            return self.store.get(reservation_id)

    def list_for_cart(self, cart_ref: str) -> List[StockReservation]:
        with smart_transaction(self.db):
            return self.store.list_for_cart(cart_ref)

    def get_available(self, variant_id: int) -> Optional[int]:
        with smart_transaction(self.db):
            return self.ledger.get_available(variant_id)

    def stock_level(self, variant_id: int) -> Optional[Tuple[VariantStock, StockLevel]]:
        with smart_transaction(self.db):
            variant = self.ledger.get(variant_id)
            if variant is None:
                return None
            return variant, self.alerts.level_for(variant)

    def validate(self, reservation_id: int, now: Optional[datetime] = None) -> ReservationValidity:
        now = self._now(now)
        r = self.get_reservation(reservation_id)
        if r is None:
            return ReservationValidity(False, "Reservation not found")
        if r.status is not ReservationStatus.ACTIVE:
            return ReservationValidity(False, f"Reservation is {r.status.value}")
        remaining = (ensure_utc(r.expires_at) - now).total_seconds()
        if remaining <= 0:
            return ReservationValidity(False, "Reservation has expired")
        return ReservationValidity(True, seconds_remaining=int(remaining))

    def stats(self, now: Optional[datetime] = None) -> ReservationStats:
        now = self._now(now)
        soon = now + timedelta(minutes=settings.EXPIRING_SOON_MINUTES)
        with smart_transaction(self.db):
            active = self.store.count(ReservationStatus.ACTIVE)
            expired = self.store.count(ReservationStatus.EXPIRED)
            needs_cleanup = self.store.count(ReservationStatus.ACTIVE, expires_before=now)
            expiring_soon = self.store.count(ReservationStatus.ACTIVE, expires_before=soon)
        return ReservationStats(
            active_count=active,
            expired_count=expired,
            needs_cleanup_count=needs_cleanup,
            expiring_soon_count=expiring_soon - needs_cleanup,
            last_checked=now,
        )
