from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from alembic.config import Config

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import Session, create_engine

from booking.core.config import Settings, settings

ALEMBIC_INSTALL_HINT = "Alembic is required to run database migrations. Install it with `pip install -e .`."

SessionFactory = Callable[[], Session]


def _require_alembic() -> tuple[Any, Any]:
    try:
        from alembic import command as alembic_command
        from alembic.config import Config as AlembicConfig
    except ImportError as exc:  # pragma: no cover - exercised via unit test
        raise RuntimeError(ALEMBIC_INSTALL_HINT) from exc

    return alembic_command, AlembicConfig


def _install_sqlite_locking(sqlite_engine: Engine) -> None:
    """Make every SQLite transaction take the write lock up front.

    SQLite ignores ``FOR UPDATE``; ``BEGIN IMMEDIATE`` serialises writers for
    the whole database, which covers the per-practitioner lock.
    """

    @event.listens_for(sqlite_engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # noqa: ANN001
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(sqlite_engine, "begin")
    def _on_begin(connection) -> None:  # noqa: ANN001
        connection.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(config: Settings) -> Engine:
    is_sqlite = config.database_url.startswith("sqlite")
    connect_args = (
        {"check_same_thread": False, "timeout": config.sqlite_busy_timeout_seconds} if is_sqlite else {}
    )
    new_engine = create_engine(
        config.database_url,
        echo=False,
        pool_pre_ping=not is_sqlite,
        connect_args=connect_args,
    )
    if is_sqlite:
        _install_sqlite_locking(new_engine)
    return new_engine


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, class_=Session, expire_on_commit=False, autoflush=False)


engine = build_engine(settings)
session_factory = build_session_factory(engine)


def get_alembic_config(database_url: Optional[str] = None) -> "Config":
    _, AlembicConfig = _require_alembic()
    migrations_path = Path(__file__).resolve().parent / "migrations"
    config = AlembicConfig()
    config.set_main_option("script_location", str(migrations_path))
    config.set_main_option("sqlalchemy.url", database_url or settings.database_url)
    return config


def init_db(database_url: Optional[str] = None) -> None:
    alembic_command, _ = _require_alembic()
    alembic_command.upgrade(get_alembic_config(database_url), "head")
