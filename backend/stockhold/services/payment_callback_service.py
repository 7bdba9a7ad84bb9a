from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockhold.exceptions import InvariantViolation
from stockhold.models.reconciliation_issue import ReconciliationIssue
from stockhold.outcomes import Outcome
from stockhold.services.reservation_engine import ReservationEngine
from stockhold.utils.log import get_logger
from stockhold.utils.transactions import smart_transaction

log = get_logger("payments")


class PaymentCallbackService:
    """
    Applies the payment processor's verdict to an order's reservations.

    Success confirms every reservation. A confirm that fails after money has
    moved is never dropped: it becomes an open ReconciliationIssue.
    Failure releases every reservation with reason `payment_failed`.
    """

    def __init__(self, db: Session):
        self.db = db
        self.engine = ReservationEngine(db)

    def handle(
        self,
        order_ref: str,
        reservation_ids: List[int],
        succeeded: bool,
        reason: Optional[str] = None,
    ) -> Dict:
        results = []
        escalated = []
        for rid in reservation_ids:
            if succeeded:
                try:
                    res = self.engine.confirm(rid, order_ref)
                    outcome, detail = res.outcome, res.message
                except InvariantViolation as exc:
                    outcome, detail = Outcome.INVARIANT_VIOLATION, str(exc)
                if outcome is not Outcome.OK:
                    issue = self._escalate(rid, order_ref, outcome, detail)
                    escalated.append(issue.id)
            else:
                res = self.engine.release(rid, reason or "payment_failed")
                outcome = res.outcome
            results.append({"reservation_id": rid, "outcome": outcome.value})

        log.info(
            "payment %s for order %s: %s reservations, %s escalated",
            "succeeded" if succeeded else "failed",
            order_ref,
            len(reservation_ids),
            len(escalated),
        )
        return {
            "order_ref": order_ref,
            "succeeded": succeeded,
            "results": results,
            "reconciliation_issue_ids": escalated,
        }

    def _escalate(
        self, reservation_id: int, order_ref: str, outcome: Outcome, detail: Optional[str]
    ) -> ReconciliationIssue:
        log.critical(
            "order %s paid but reservation %s not confirmed (%s); manual reconciliation needed",
            order_ref,
            reservation_id,
            outcome.value,
        )
        with smart_transaction(self.db):
            issue = self._open_issue(reservation_id, order_ref)
            if issue is not None:
                return issue
            issue = ReconciliationIssue(
                reservation_id=reservation_id,
                order_ref=order_ref,
                outcome=outcome.value,
                detail=detail,
            )
            try:
                with self.db.begin_nested():
                    self.db.add(issue)
                    self.db.flush()
            except IntegrityError:
                # a retried callback opened the same issue concurrently
                issue = self._open_issue(reservation_id, order_ref)
        return issue

    def _open_issue(self, reservation_id: int, order_ref: str) -> Optional[ReconciliationIssue]:
        return self.db.execute(
            select(ReconciliationIssue)
            .where(
                ReconciliationIssue.reservation_id == reservation_id,
                ReconciliationIssue.order_ref == order_ref,
                ReconciliationIssue.status == "open",
            )
            .order_by(ReconciliationIssue.id)
        ).scalars().first()

    def list_issues(self, status: Optional[str] = "open", limit: int = 100) -> List[ReconciliationIssue]:
        with smart_transaction(self.db):
            stmt = select(ReconciliationIssue)
            if status:
                stmt = stmt.where(ReconciliationIssue.status == status)
            stmt = stmt.order_by(ReconciliationIssue.created_at.desc()).limit(limit)
            return list(self.db.execute(stmt).scalars())

    def resolve_issue(self, issue_id: int, note: Optional[str] = None) -> Optional[ReconciliationIssue]:
        with smart_transaction(self.db):
            issue = self.db.get(ReconciliationIssue, issue_id)
            if issue is None:
                return None
            if issue.status != "resolved":
                issue.status = "resolved"
                issue.resolution_note = note
                issue.resolved_at = datetime.now(timezone.utc)
                self.db.flush()
        log.info("reconciliation issue %s resolved", issue_id)
        return issue
