"""
Integration test fixtures — PostgreSQL testcontainer and schema setup.

Provides a real PostgreSQL instance for each test session via testcontainers.
The catalog tables (users, publications) are created here; the transactions
table is created by the store itself via ensure_schema(). Each test gets a
clean database via truncation and a seeded catalog.
"""

from __future__ import annotations

import psycopg
import pytest
from psycopg_pool import ConnectionPool
from testcontainers.postgres import PostgresContainer

from pubstore.adapters.repository import TRANSACTIONS_DDL, create_pool
from pubstore.domain.license_request import hash_passphrase

DDL = (
    """
CREATE TABLE users (
    id                 BIGSERIAL PRIMARY KEY,
    uuid               TEXT NOT NULL UNIQUE,
    name               TEXT,
    email              TEXT,
    text_hint          TEXT,
    hashed_passphrase  TEXT
);

CREATE TABLE publications (
    id     BIGSERIAL PRIMARY KEY,
    uuid   TEXT NOT NULL UNIQUE,
    title  TEXT
);
"""
    + TRANSACTIONS_DDL
)

TRUNCATE_ALL = """
TRUNCATE transactions, publications, users RESTART IDENTITY CASCADE;
"""

SEED_USERS = """
INSERT INTO users (id, uuid, name, email, text_hint, hashed_passphrase) VALUES
    (1, 'u-1', 'Reader', 'reader@example.com', 'the usual one', %(hash)s),
    (2, 'u-2', 'Other', 'other@example.com', 'pet name', %(hash)s)
"""

SEED_PUBLICATIONS = """
INSERT INTO publications (id, uuid, title) VALUES
    (10, 'p-1', 'Moby Dick'),
    (11, 'p-2', 'Walden')
"""


def _psycopg_url(container: PostgresContainer) -> str:
    return container.get_connection_url().replace("postgresql+psycopg2", "postgresql")


@pytest.fixture(scope="session")
def postgres_container() -> PostgresContainer:
    """Start a PostgreSQL container for the entire test session."""
    with PostgresContainer("postgres:16-alpine") as pg:
        with psycopg.connect(_psycopg_url(pg)) as conn:
            conn.execute(DDL)
            conn.commit()
        yield pg


@pytest.fixture()
def dsn(postgres_container: PostgresContainer) -> str:
    """Return a psycopg-compatible DSN with clean tables and a seeded catalog."""
    connection_url = _psycopg_url(postgres_container)
    with psycopg.connect(connection_url) as conn:
        conn.execute(TRUNCATE_ALL)
        with conn.cursor() as cur:
            cur.execute(SEED_USERS, {"hash": hash_passphrase("secret")})
            cur.execute(SEED_PUBLICATIONS)
        conn.commit()
    return connection_url


@pytest.fixture()
def pool(dsn: str) -> ConnectionPool:
    connection_pool = create_pool(dsn, max_size=4)
    yield connection_pool
    connection_pool.close()
