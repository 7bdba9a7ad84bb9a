"""
Typed results for ledger and reservation operations.

Expected business conditions (not enough stock, a reservation that already
left `active`, ...) are reported as an `Outcome`, never raised. Callers switch
on the outcome instead of guessing from exception text or HTTP codes.
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from stockhold.models.stock_movement import StockCounter
from stockhold.models.stock_reservation import StockReservation


class Outcome(str, enum.Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    INSUFFICIENT_STOCK = "insufficient_stock"
    NOT_ACTIVE = "not_active"
    ALREADY_TERMINAL = "already_terminal"
    EXPIRED = "expired"
    INVARIANT_VIOLATION = "invariant_violation"
    CONFLICT = "conflict"


USER_MESSAGES = {
    Outcome.OK: "ok",
    Outcome.NOT_FOUND: "Not found",
    Outcome.INACTIVE: "This item is currently unavailable",
    Outcome.INSUFFICIENT_STOCK: "Not enough available, reduce quantity",
    Outcome.NOT_ACTIVE: "Reservation is no longer active",
    Outcome.ALREADY_TERMINAL: "Reservation was already completed or released",
    Outcome.EXPIRED: "Your hold expired, please re-add to cart",
    Outcome.INVARIANT_VIOLATION: "Stock levels are inconsistent",
    Outcome.CONFLICT: "Stock changed since it was read, reload and retry",
}


@dataclass(frozen=True)
class LedgerResult:
    outcome: Outcome
    variant_id: int
    counter: Optional[StockCounter] = None
    before: Optional[int] = None
    after: Optional[int] = None
    on_hand: Optional[int] = None
    reserved: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    @property
    def available(self) -> Optional[int]:
        if self.on_hand is None or self.reserved is None:
            return None
        return max(0, self.on_hand - self.reserved)


@dataclass
class ReservationResult:
    outcome: Outcome
    reservation: Optional[StockReservation] = None
    available: Optional[int] = None
    message: Optional[str] = None

    def __post_init__(self):
        if self.message is None:
            self.message = USER_MESSAGES[self.outcome]

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK


@dataclass
class CartLine:
    variant_id: int
    quantity: int


@dataclass
class StockUpdate:
    variant_id: int
    new_on_hand: int
    expected_on_hand: Optional[int] = None


@dataclass
class BatchStockResult:
    product_sku: str
    results: List[LedgerResult] = field(default_factory=list)

    @property
    def updated(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return len(self.results) - self.updated


@dataclass
class CartReservationResult:
    outcome: Outcome
    reservations: List[StockReservation] = field(default_factory=list)
    failed_line: Optional[CartLine] = None
    available: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK


@dataclass
class ReservationValidity:
    valid: bool
    reason: Optional[str] = None
    seconds_remaining: int = 0


@dataclass
class ReservationStats:
    active_count: int
    expired_count: int
    needs_cleanup_count: int
    expiring_soon_count: int
    last_checked: datetime

    @property
    def next_cleanup_recommended(self) -> bool:
        return self.needs_cleanup_count > 0


@dataclass
class SweepReport:
    started_at: datetime
    examined: int = 0
    released: int = 0
    skipped: int = 0
    failed_ids: List[int] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failed_ids)
