# eventteams/database.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from sqlalchemy import event
from sqlalchemy.engine import URL
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

load_dotenv()


def _default_db_url() -> str:
    """File-based SQLite at the project root when no database URL is configured."""
    root = Path(__file__).resolve().parents[1]
    return f"sqlite+aiosqlite:///{(root / 'eventteams.db').as_posix()}"


def _translate_sslmode(value: str) -> Optional[str]:
    """Map libpq sslmode values onto asyncpg's ``ssl`` flag."""

    normalized = value.strip().lower()
    if normalized in {"require", "verify-ca", "verify-full"}:
        return "true"
    if normalized == "disable":
        return "false"
    # "prefer"/"allow" have no asyncpg counterpart; leave the driver default.
    return None


def normalize_database_url(raw_url: Optional[str]) -> Optional[str]:
    """Force async drivers (asyncpg/aiosqlite) whatever the URL spells."""

    if not raw_url:
        return raw_url

    try:
        url = make_url(raw_url)
    except ArgumentError:
        return raw_url

    driver = url.drivername.lower()
    if driver in {"postgres", "postgresql"} or (
        driver.startswith("postgresql+") and driver != "postgresql+asyncpg"
    ):
        url = url.set(drivername="postgresql+asyncpg")
    elif driver == "sqlite":
        url = url.set(drivername="sqlite+aiosqlite")

    if url.drivername == "postgresql+asyncpg":
        query = dict(url.query)
        sslmode = query.pop("sslmode", None)
        if sslmode is not None:
            translated = _translate_sslmode(sslmode)
            if translated is not None:
                query["ssl"] = translated
        if query != dict(url.query):
            url = url.set(query=query)

    return url.render_as_string(hide_password=False)


def _pg_env_database_url(env: Mapping[str, str]) -> Optional[str]:
    """Build a Postgres URL from PG* variables (Railway and friends)."""

    host = env.get("PGHOST")
    database = env.get("PGDATABASE")
    user = env.get("PGUSER")
    if not (host and database and user):
        return None

    try:
        port = int(env["PGPORT"]) if env.get("PGPORT") else None
    except ValueError:
        port = None

    query: dict[str, str] = {}
    sslmode = env.get("PGSSLMODE")
    if sslmode and _translate_sslmode(sslmode) is not None:
        query["ssl"] = _translate_sslmode(sslmode)

    return URL.create(
        drivername="postgresql+asyncpg",
        username=user,
        password=env.get("PGPASSWORD") or None,
        host=host,
        port=port,
        database=database,
        query=query,
    ).render_as_string(hide_password=False)


def _apply_pgsslmode(database_url: str, sslmode: Optional[str]) -> str:
    """Honour PGSSLMODE when the URL itself does not say how to use TLS."""

    if not sslmode:
        return database_url
    try:
        url = make_url(database_url)
    except ArgumentError:
        return database_url
    if url.drivername != "postgresql+asyncpg" or "ssl" in url.query:
        return database_url
    translated = _translate_sslmode(sslmode)
    if translated is None:
        return database_url
    return url.update_query_dict({"ssl": translated}).render_as_string(hide_password=False)


def database_url_from_env(env: Mapping[str, str]) -> Optional[str]:
    for raw in (env.get("DATABASE_URL"), env.get("POSTGRES_URL")):
        normalized = normalize_database_url(raw)
        if normalized:
            return _apply_pgsslmode(normalized, env.get("PGSSLMODE"))
    return _pg_env_database_url(env)


DEFAULT_SQLITE_URL: str = _default_db_url()
DATABASE_URL: str = database_url_from_env(os.environ) or DEFAULT_SQLITE_URL

ECHO = os.getenv("SQLALCHEMY_ECHO", "0").lower() in {"1", "true", "yes"}


def _serialize_sqlite_writers(bind_engine: AsyncEngine) -> None:
    """Open every SQLite transaction with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, so a read-check-write unit of
    work would otherwise run its reads outside the transaction.
    """

    @event.listens_for(bind_engine.sync_engine, "connect")
    def _disable_implicit_begin(dbapi_connection, connection_record):  # noqa: ARG001
        dbapi_connection.isolation_level = None

    @event.listens_for(bind_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str) -> AsyncEngine:
    is_sqlite = database_url.startswith("sqlite")
    bind_engine = create_async_engine(
        database_url,
        echo=ECHO,
        pool_pre_ping=not is_sqlite,
        connect_args={"timeout": 30} if is_sqlite else {},
    )
    if is_sqlite:
        _serialize_sqlite_writers(bind_engine)
    return bind_engine


def build_session_factory(bind_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind_engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


Base = declarative_base()

# Reconfigurable at runtime (startup falls back to SQLite when Postgres is down).
engine: AsyncEngine
SessionLocal: async_sessionmaker[AsyncSession]
CURRENT_DATABASE_URL: str


def configure_engine(database_url: str) -> None:
    global engine, SessionLocal, CURRENT_DATABASE_URL

    engine = build_engine(database_url)
    SessionLocal = build_session_factory(engine)
    CURRENT_DATABASE_URL = database_url


configure_engine(DATABASE_URL)


async def get_db():
    """FastAPI dependency that yields an AsyncSession."""

    async with SessionLocal() as session:
        yield session


async def init_models(bind_engine: Optional[AsyncEngine] = None) -> None:
    """Register every mapped class with ``Base`` and create missing tables."""

    import eventteams.models  # noqa: F401

    async with (bind_engine or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
