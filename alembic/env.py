import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool, create_engine

from slotkeeper.core.config import settings
from slotkeeper.db.session import Base

# Import all models so Alembic sees them in metadata
from slotkeeper.models.service import Service  # noqa: F401
from slotkeeper.models.shift import Shift  # noqa: F401
from slotkeeper.models.slot import Slot  # noqa: F401
from slotkeeper.models.booking import Booking  # noqa: F401
from slotkeeper.models.booking_hold import BookingHold  # noqa: F401
from slotkeeper.models.audit_log import AuditLog  # noqa: F401

config = context.config

# Runtime DATABASE_URL wins over whatever alembic.ini says
db_url = getattr(settings, "DATABASE_URL", None) or os.getenv("DATABASE_URL")
if not db_url:
    raise RuntimeError("DATABASE_URL is not set (check .env / slotkeeper.core.config.settings)")

config.set_main_option("sqlalchemy.url", db_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    # Plain engine: the app engine's SQLite BEGIN IMMEDIATE hook is not wanted for DDL.
    connectable = create_engine(config.get_main_option("sqlalchemy.url"), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
