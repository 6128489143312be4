from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager

from psycopg2.pool import ThreadedConnectionPool

from src.models.config_models import DatabaseConfig

"""Connection pool construction.

Connection parameter precedence:
    1. variables loaded from `.env` (the CLI loads it with override=True)
    2. DATABASE_URL / PGDSN for a full DSN, else PGHOST / PGPORT / PGUSER /
       PGPASSWORD / PGDATABASE
    3. the `database` section of config/import.yml for anything still missing
"""


def resolve_dsn(db_cfg: DatabaseConfig) -> str:
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def connection_pool(db_cfg: DatabaseConfig, max_connections: int = 8) -> Iterator[ThreadedConnectionPool]:  # pragma: no cover (needs a server)
    """Yield a ThreadedConnectionPool, closing every connection on exit.

    ``max_connections`` should be at least the attachment worker count so that
    concurrent link calls never wait on each other for a connection.
    """
    pool = ThreadedConnectionPool(1, max(1, max_connections), resolve_dsn(db_cfg))
    try:
        yield pool
    finally:
        pool.closeall()
