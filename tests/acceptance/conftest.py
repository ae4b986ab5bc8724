"""
Acceptance test fixtures — PostgreSQL testcontainer for end-to-end tests.

Reuses the same DDL and seed data as the integration tests.
"""

from __future__ import annotations

import psycopg
import pytest
from psycopg_pool import ConnectionPool
from testcontainers.postgres import PostgresContainer

from pubstore.adapters.repository import create_pool
from pubstore.domain.license_request import hash_passphrase
from tests.integration.conftest import DDL, SEED_PUBLICATIONS, SEED_USERS, TRUNCATE_ALL


@pytest.fixture(scope="session")
def acceptance_pg() -> PostgresContainer:
    """Start a PostgreSQL container for the acceptance test session."""
    with PostgresContainer("postgres:16-alpine") as pg:
        dsn = pg.get_connection_url().replace("postgresql+psycopg2", "postgresql")
        with psycopg.connect(dsn) as conn:
            conn.execute(DDL)
            conn.commit()
        yield pg


@pytest.fixture()
def acceptance_pool(acceptance_pg: PostgresContainer) -> ConnectionPool:
    """Clean, seeded database behind a fresh connection pool."""
    connection_url = acceptance_pg.get_connection_url().replace("postgresql+psycopg2", "postgresql")
    with psycopg.connect(connection_url) as conn:
        conn.execute(TRUNCATE_ALL)
        with conn.cursor() as cur:
            cur.execute(SEED_USERS, {"hash": hash_passphrase("secret")})
            cur.execute(SEED_PUBLICATIONS)
        conn.commit()
    pool = create_pool(connection_url, max_size=4)
    yield pool
    pool.close()
