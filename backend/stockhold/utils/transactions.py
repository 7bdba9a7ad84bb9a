from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session, SessionTransaction


@contextmanager
def smart_transaction(session: Session) -> Iterator[SessionTransaction]:
    """
    Unit of work for ledger and reservation changes.

    Outermost call: BEGIN, commit on clean exit, roll back on error.
    Inside an open transaction: SAVEPOINT instead, so a failed step (one line
    of a cart, one reservation of a sweep batch) unwinds only its own writes
    and the caller decides what happens to the rest.
    """
    nested = session.in_transaction()
    with (session.begin_nested() if nested else session.begin()) as tx:
        yield tx
