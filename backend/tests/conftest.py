import os
import tempfile

# must be set before stockhold.config is imported
_tmpdir = tempfile.mkdtemp(prefix="stockhold-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ.pop("CRON_SECRET", None)

import pytest  # noqa: E402

from stockhold.db import SessionLocal, init_db  # noqa: E402
from stockhold.services.stock_admin_service import StockAdminService  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    init_db(reset=True)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_variant():
    """Register a variant in its own session and return its id."""

    def _make(sku="SNK-42", on_hand=10, **kwargs):
        session = SessionLocal()
        try:
            v = StockAdminService(session).register_variant(sku, initial_on_hand=on_hand, **kwargs)
            return v.id
        finally:
            session.close()

    return _make


@pytest.fixture
def counters():
    """(on_hand, reserved) read through a fresh session."""

    def _read(variant_id):
        session = SessionLocal()
        try:
            v = StockAdminService(session).get_variant(variant_id)
            return v.quantity_on_hand, v.quantity_reserved
        finally:
            session.close()

    return _read
