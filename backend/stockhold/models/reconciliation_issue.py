from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, Text, text

from stockhold.db import Base


class ReconciliationIssue(Base):
    """A confirm that failed after payment was captured; needs a human."""

    __tablename__ = "reconciliation_issues"
    id = Column(Integer, primary_key=True, autoincrement=True)
    reservation_id = Column(Integer, nullable=False, index=True)
    order_ref = Column(String(128), nullable=False, index=True)
    outcome = Column(String(32), nullable=False)
    detail = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default="open")  # open, resolved
    resolution_note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    # at most one open issue per reservation and order; resolved ones pile up freely
    __table_args__ = (
        Index(
            "uq_reconciliation_open_issue",
            "reservation_id",
            "order_ref",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
    )
