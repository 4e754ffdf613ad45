"""
Database engine creation with SQLAlchemy async
"""

import logging
import ssl
from typing import Any, Dict

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from core.config import Settings

logger = logging.getLogger(__name__)


def _tls_connect_args(backend: str) -> Dict[str, Any]:
    """Driver arguments that make TLS mandatory for the given backend"""
    if backend == "postgresql":
        return {"ssl": "require"}
    if backend == "mysql":
        return {"ssl": ssl.create_default_context()}
    logger.warning(f"TLS requested but not supported for backend {backend}; ignoring")
    return {}


def _enable_sqlite_transactional_ddl(engine: AsyncEngine) -> None:
    """
    Make pysqlite emit BEGIN itself so CREATE/ALTER/DROP join the transaction.

    Without this the driver only opens transactions before DML statements.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Create the async engine used by the snapshot publisher"""
    url = settings.database_url()
    backend = url.get_backend_name()

    connect_args: Dict[str, Any] = {}
    if settings.DB_REQUIRE_TLS:
        connect_args.update(_tls_connect_args(backend))

    engine = create_async_engine(
        url,
        echo=False,
        poolclass=NullPool,  # One short-lived run, no reuse across runs
        connect_args=connect_args,
    )

    if backend == "sqlite":
        _enable_sqlite_transactional_ddl(engine)

    logger.info(
        f"Database engine created for {backend} "
        f"(host={url.host or '-'}, database={url.database}, tls={settings.DB_REQUIRE_TLS})"
    )
    return engine
