import importlib
import os

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base

from stockhold.config import settings
from stockhold.utils.log import get_logger

log = get_logger("db")

DATABASE_URL = settings.DATABASE_URL
_is_sqlite = DATABASE_URL.startswith("sqlite")

engine = create_engine(
    DATABASE_URL,
    future=True,
    echo=False,
    connect_args={"check_same_thread": False, "timeout": 30} if _is_sqlite else {},
)

if _is_sqlite:
    # pysqlite's implicit transaction handling breaks SAVEPOINT and lets two
    # writers deadlock on lock upgrade; take the write lock at BEGIN instead.
    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


SessionLocal = sessionmaker(
    autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
)
Base = declarative_base()

# add new model modules here so metadata is populated before create_all
MODEL_MODULES = [
    "stockhold.models.product",
    "stockhold.models.variant_stock",
    "stockhold.models.stock_reservation",
    "stockhold.models.stock_movement",
    "stockhold.models.stock_alert",
    "stockhold.models.reconciliation_issue",
]


def init_db(reset: bool = False):
    """
    Initialize DB schema.

    Drops and recreates every table when `reset` is true or the RESET_DB env
    var is set to 1/true/yes; otherwise existing tables are left in place.
    """
    env_reset = os.environ.get("RESET_DB", "false").lower() in ("1", "true", "yes")

    for mod in MODEL_MODULES:
        importlib.import_module(mod)

    if reset or env_reset:
        log.info("Resetting database (reset requested)...")
        Base.metadata.drop_all(bind=engine)

    Base.metadata.create_all(bind=engine)
    log.debug("Database initialized: %s", sorted(Base.metadata.tables))


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
