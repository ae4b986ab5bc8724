"""
PostgreSQL repository adapters — entitlement transactions and catalog lookups.

Adapter layer — implements the EntitlementStore and CatalogReader ports using
psycopg (v3) with a shared psycopg_pool.ConnectionPool and parameterized SQL.

Every mutation is a single-row INSERT/UPDATE/DELETE committed on its own,
so no multi-statement transaction is needed: the remote license was already
issued before the row is written.

Table mapping:
  Transaction → transactions (user_id → users.id, publication_id → publications.id)
  User        → users        (read-only)
  Publication → publications (read-only)

Lookups join users and publications so returned transactions carry both.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

import structlog
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from pubstore.domain.models import Publication, Transaction, User
from pubstore.railway import ErrorCode, Result

log = structlog.get_logger()

TRANSACTIONS_DDL = """
CREATE TABLE IF NOT EXISTS transactions (
    id              BIGSERIAL PRIMARY KEY,
    created_at      TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
    user_id         BIGINT NOT NULL REFERENCES users(id),
    publication_id  BIGINT NOT NULL REFERENCES publications(id),
    licence_id      TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_transactions_licence_id ON transactions(licence_id);
CREATE INDEX IF NOT EXISTS idx_transactions_user_pub
    ON transactions(user_id, publication_id, created_at DESC);
"""

_SELECT_TRANSACTION = """
SELECT t.id, t.created_at, t.updated_at, t.user_id, t.publication_id, t.licence_id,
       u.uuid AS user_uuid, u.name AS user_name, u.email AS user_email,
       u.text_hint AS user_text_hint, u.hashed_passphrase AS user_hashed_passphrase,
       p.uuid AS publication_uuid, p.title AS publication_title
FROM transactions t
JOIN users u ON u.id = t.user_id
JOIN publications p ON p.id = t.publication_id
"""

_NEWEST_FIRST = " ORDER BY t.created_at DESC, t.id DESC"

_INSERT_TRANSACTION = """
INSERT INTO transactions (user_id, publication_id, licence_id)
VALUES (%s, %s, %s)
RETURNING id, created_at, updated_at
"""

_UPDATE_TRANSACTION = """
UPDATE transactions SET licence_id = %s, updated_at = clock_timestamp()
WHERE id = %s
RETURNING updated_at
"""


def create_pool(dsn: str, max_size: int = 5, timeout: float = 5.0) -> ConnectionPool:
    """Open the connection pool shared by every repository adapter."""
    return ConnectionPool(dsn, min_size=1, max_size=max_size, timeout=timeout, open=True)


def _to_transaction(row: dict[str, Any]) -> Transaction:
    return Transaction(
        id=row["id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        user_id=row["user_id"],
        publication_id=row["publication_id"],
        licence_id=row["licence_id"],
        user=User(
            id=row["user_id"],
            uuid=row["user_uuid"],
            name=row["user_name"] or "",
            email=row["user_email"] or "",
            text_hint=row["user_text_hint"] or "",
            hashed_passphrase=row["user_hashed_passphrase"] or "",
        ),
        publication=Publication(
            id=row["publication_id"],
            uuid=row["publication_uuid"],
            title=row["publication_title"] or "",
        ),
    )


class PsycopgEntitlementStore:
    """
    Persist entitlement transactions to PostgreSQL.

    Implements the EntitlementStore port.
    All exceptions are caught at this adapter boundary via Result.from_computation().
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def ensure_schema(self) -> Result[int]:
        """Create the transactions table when missing (users/publications must exist)."""
        return Result.from_computation(
            lambda: self._execute(TRANSACTIONS_DDL),
            ErrorCode.DATABASE_ERROR,
            "Failed to create the transactions schema",
        )

    def create(self, transaction: Transaction) -> Result[Transaction]:
        """
        Insert a new transaction row.

        Fails with DATABASE_ERROR when the user or publication does not exist.
        """
        return Result.from_computation(
            lambda: self._insert(transaction),
            ErrorCode.DATABASE_ERROR,
            "Failed to persist the transaction",
        ).map_failure(
            lambda err: err.with_details(
                user_id=transaction.user_id, publication_id=transaction.publication_id
            )
        )

    def update(self, transaction: Transaction) -> Result[Transaction]:
        """Store a new licence id, used when the License Server reissued under another id."""
        if transaction.id is None:
            return Result.failure(ErrorCode.NOT_FOUND, "Cannot update an unsaved transaction")
        return Result.from_computation(
            lambda: self._update(transaction),
            ErrorCode.DATABASE_ERROR,
            "Failed to update the transaction",
        ).flat_map(
            lambda rows: Result.from_optional(
                rows[0] if rows else None, f"Transaction not found with id: {transaction.id}"
            )
        )

    def get_by_licence_id(self, licence_id: str) -> Result[Transaction]:
        return self._first(
            _SELECT_TRANSACTION + " WHERE t.licence_id = %s" + _NEWEST_FIRST + " LIMIT 1",
            (licence_id,),
            f"Transaction not found with licence id: {licence_id}",
        )

    def get_by_user_and_publication(self, user_id: int, publication_id: int) -> Result[Transaction]:
        """Most recently created transaction for the pair."""
        return self._first(
            _SELECT_TRANSACTION
            + " WHERE t.user_id = %s AND t.publication_id = %s"
            + _NEWEST_FIRST
            + " LIMIT 1",
            (user_id, publication_id),
            f"No transaction for user {user_id} and publication {publication_id}",
        )

    def list_by_user(self, user_id: int) -> Result[list[Transaction]]:
        """All transactions of a user, newest first."""
        return Result.from_computation(
            lambda: self._select(
                _SELECT_TRANSACTION + " WHERE t.user_id = %s" + _NEWEST_FIRST, (user_id,)
            ),
            ErrorCode.DATABASE_ERROR,
            "Failed to list transactions",
        )

    def delete(self, transaction: Transaction) -> Result[int]:
        """Hard delete. The remote license is left untouched."""
        if transaction.id is None:
            return Result.failure(ErrorCode.NOT_FOUND, "Cannot delete an unsaved transaction")
        return Result.from_computation(
            lambda: self._delete(transaction.id),
            ErrorCode.DATABASE_ERROR,
            "Failed to delete the transaction",
        ).ensure(
            lambda rows: rows > 0,
            ErrorCode.NOT_FOUND,
            f"Transaction not found with id: {transaction.id}",
        )

    def _first(self, query: str, params: tuple[Any, ...], not_found: str) -> Result[Transaction]:
        return Result.from_computation(
            lambda: self._select(query, params),
            ErrorCode.DATABASE_ERROR,
            "Failed to read transactions",
        ).flat_map(lambda rows: Result.from_optional(rows[0] if rows else None, not_found))

    def _select(self, query: str, params: tuple[Any, ...]) -> list[Transaction]:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, params)
            return [_to_transaction(row) for row in cur.fetchall()]

    def _insert(self, transaction: Transaction) -> Transaction:
        with self._pool.connection() as conn, conn.cursor() as cur:
            cur.execute(
                _INSERT_TRANSACTION,
                (transaction.user_id, transaction.publication_id, transaction.licence_id),
            )
            row = cur.fetchone()
        assert row is not None  # RETURNING always yields the inserted row
        created = replace(transaction, id=row[0], created_at=row[1], updated_at=row[2])
        log.info(
            "repository.transaction_created",
            transaction_id=created.id,
            user_id=created.user_id,
            publication_id=created.publication_id,
            licence_id=created.licence_id,
        )
        return created

    def _update(self, transaction: Transaction) -> list[Transaction]:
        with self._pool.connection() as conn, conn.cursor() as cur:
            cur.execute(_UPDATE_TRANSACTION, (transaction.licence_id, transaction.id))
            row = cur.fetchone()
        if row is None:
            return []
        log.info(
            "repository.transaction_updated",
            transaction_id=transaction.id,
            licence_id=transaction.licence_id,
        )
        return [replace(transaction, updated_at=row[0])]

    def _delete(self, transaction_id: int | None) -> int:
        with self._pool.connection() as conn, conn.cursor() as cur:
            cur.execute("DELETE FROM transactions WHERE id = %s", (transaction_id,))
            deleted = cur.rowcount
        log.info("repository.transaction_deleted", transaction_id=transaction_id, rows=deleted)
        return deleted

    def _execute(self, statement: str) -> int:
        with self._pool.connection() as conn:
            conn.execute(statement)
        return 0


class PsycopgCatalogReader:
    """
    Read catalog users and publications.

    Implements the CatalogReader port; catalog writes belong elsewhere.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    def get_user(self, user_uuid: str) -> Result[User]:
        return Result.from_computation(
            lambda: self._rows(
                "SELECT id, uuid, name, email, text_hint, hashed_passphrase "
                "FROM users WHERE uuid = %s",
                (user_uuid,),
            ),
            ErrorCode.DATABASE_ERROR,
            "Failed to read user",
        ).flat_map(
            lambda rows: Result.from_optional(
                User(
                    id=rows[0]["id"],
                    uuid=rows[0]["uuid"],
                    name=rows[0]["name"] or "",
                    email=rows[0]["email"] or "",
                    text_hint=rows[0]["text_hint"] or "",
                    hashed_passphrase=rows[0]["hashed_passphrase"] or "",
                )
                if rows
                else None,
                f"User not found with identifier: {user_uuid}",
            )
        )

    def get_publication(self, publication_uuid: str) -> Result[Publication]:
        return Result.from_computation(
            lambda: self._rows(
                "SELECT id, uuid, title FROM publications WHERE uuid = %s",
                (publication_uuid,),
            ),
            ErrorCode.DATABASE_ERROR,
            "Failed to read publication",
        ).flat_map(
            lambda rows: Result.from_optional(
                Publication(id=rows[0]["id"], uuid=rows[0]["uuid"], title=rows[0]["title"] or "")
                if rows
                else None,
                f"Publication not found with identifier: {publication_uuid}",
            )
        )

    def _rows(self, query: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, params)
            return cur.fetchall()
