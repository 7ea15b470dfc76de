from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from slotkeeper.core.config import settings


class Base(DeclarativeBase):
    pass


def _install_sqlite_locking(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write, so two readers can both pass a
    # capacity check. Taking the write lock at BEGIN serialises transactions the way
    # SELECT ... FOR UPDATE does on Postgres.
    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": settings.LOCK_TIMEOUT_MS / 1000},
        )
        _install_sqlite_locking(engine)
        return engine
    return create_engine(url, pool_pre_ping=True)


engine = make_engine(settings.DATABASE_URL)
# Capacity checks always re-read rows under lock, so committed objects can stay loaded.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def atomic(db: Session):
    """Commit on success, roll back on any exception. Row locks are released either way."""
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
