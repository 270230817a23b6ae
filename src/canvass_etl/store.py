"""canvass_etl.store

Narrow read/write interfaces onto the source-of-record and the target store,
plus their PostgreSQL implementations.

Every statement the target store issues runs inside its own SAVEPOINT so a
refused statement never poisons the surrounding transaction; only commit()
and rollback() end it.  psycopg errors are translated at this boundary:
  - OperationalError or a broken connection → StoreConnectionError
  - any other psycopg.Error                 → WriteError (writes) / StoreError (reads)
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Protocol

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from canvass_etl.records import (
    ADDRESS_FIELDS,
    ADDRESS_TABLE,
    DONATION_TABLE,
    VOLUNTEER_TABLE,
    AddressRecord,
    Donation,
)
from canvass_etl.shared import StoreConnectionError, StoreError, WriteError

log = logging.getLogger(__name__)

# Source extraction query: aliases give the source-shaped column names.
SOURCE_ADDRESS_QUERY = """
    SELECT
      street_num  AS "StreetNumber",
      unit        AS "UnitNumber",
      street_name AS "StreetName",
      street_type AS "StreetType",
      street_dir  AS "StreetDirection",
      postal_code AS "PostalCode",
      city        AS "City",
      province    AS "Province"
    FROM src_address
"""

# table → surrogate id column, for exists() and fetch_max()
ID_COLUMNS = {
    ADDRESS_TABLE: "address_id",
    VOLUNTEER_TABLE: "volunteer_id",
    DONATION_TABLE: "donation_id",
}

_SAVEPOINT = "canvass_stmt"


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------

class SourceReader(Protocol):
    def fetch_all(self) -> list[dict[str, Any]]:
        """Return the complete source dataset as source-shaped rows."""
        ...


class TargetStore(Protocol):
    def fetch_all_existing(self) -> list[AddressRecord]: ...

    def fetch_max(self, field: str, table: str = ADDRESS_TABLE) -> int | None: ...

    def exists(self, table: str, record_id: int) -> bool: ...

    def resolve_owner_chain(self, volunteer_id: int) -> int: ...

    def insert(self, record: AddressRecord) -> None: ...

    def update(self, record_id: int, fields: dict[str, Any]) -> None: ...

    def insert_donation(self, donation: Donation) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


# ---------------------------------------------------------------------------
# Source: PostgreSQL
# ---------------------------------------------------------------------------

class PgSourceReader:
    """Pull the whole source dataset in one query, closing the connection after."""

    def __init__(self, dsn: str, query: str = SOURCE_ADDRESS_QUERY) -> None:
        self._dsn = dsn
        self._query = query

    def fetch_all(self) -> list[dict[str, Any]]:
        try:
            with psycopg.connect(self._dsn, row_factory=dict_row) as conn:
                rows = conn.execute(self._query).fetchall()
        except psycopg.OperationalError as exc:
            raise StoreConnectionError(f"source store unavailable: {exc}") from exc
        except psycopg.Error as exc:
            raise StoreError(f"source extraction failed: {exc}") from exc
        log.info("Extracted %d rows from source", len(rows))
        return rows


# ---------------------------------------------------------------------------
# Target: PostgreSQL
# ---------------------------------------------------------------------------

def _id_column(table: str) -> str:
    try:
        return ID_COLUMNS[table]
    except KeyError:
        raise StoreError(f"unknown table {table!r}") from None


class PgTargetStore:
    """Target store over a single non-autocommit psycopg connection."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    # -- statement plumbing -------------------------------------------------

    def _is_fatal(self, exc: psycopg.Error) -> bool:
        return self._conn.broken or isinstance(exc, psycopg.OperationalError)

    def _run(
        self,
        query: Any,
        params: tuple[Any, ...] | dict[str, Any] = (),
        error_cls: type[StoreError] = StoreError,
    ) -> list[tuple[Any, ...]]:
        conn = self._conn
        try:
            conn.execute(f"SAVEPOINT {_SAVEPOINT}")
        except psycopg.Error as exc:
            raise StoreConnectionError(f"target store unavailable: {exc}") from exc
        try:
            cur = conn.execute(query, params or None)
            rows = cur.fetchall() if cur.description else []
            conn.execute(f"RELEASE SAVEPOINT {_SAVEPOINT}")
            return rows
        except psycopg.Error as exc:
            if self._is_fatal(exc):
                raise StoreConnectionError(f"target store unavailable: {exc}") from exc
            try:
                conn.execute(f"ROLLBACK TO SAVEPOINT {_SAVEPOINT}")
                conn.execute(f"RELEASE SAVEPOINT {_SAVEPOINT}")
            except psycopg.Error as sp_exc:
                raise StoreConnectionError(
                    f"target store unavailable: {sp_exc}"
                ) from sp_exc
            raise error_cls(f"{type(exc).__name__}: {exc}") from exc

    # -- reads ----------------------------------------------------------------

    def fetch_all_existing(self) -> list[AddressRecord]:
        columns = ("address_id",) + ADDRESS_FIELDS
        rows = self._run(
            sql.SQL("SELECT {} FROM {} ORDER BY address_id").format(
                sql.SQL(", ").join(sql.Identifier(c) for c in columns),
                sql.Identifier(ADDRESS_TABLE),
            )
        )
        return [AddressRecord.from_row(dict(zip(columns, row))) for row in rows]

    def fetch_max(self, field: str, table: str = ADDRESS_TABLE) -> int | None:
        _id_column(table)
        rows = self._run(
            sql.SQL("SELECT MAX({}) FROM {}").format(
                sql.Identifier(field), sql.Identifier(table)
            )
        )
        value = rows[0][0] if rows else None
        return int(value) if value is not None else None

    def exists(self, table: str, record_id: int) -> bool:
        id_col = _id_column(table)
        rows = self._run(
            sql.SQL("SELECT COUNT(*) FROM {} WHERE {} = %s").format(
                sql.Identifier(table), sql.Identifier(id_col)
            ),
            (record_id,),
        )
        return bool(rows and rows[0][0] > 0)

    def resolve_owner_chain(self, volunteer_id: int) -> int:
        """Return the volunteer's group leader, or the volunteer itself."""
        rows = self._run(
            """
            SELECT COALESCE(group_leader, volunteer_id)
            FROM volunteer
            WHERE volunteer_id = %s
            """,
            (volunteer_id,),
        )
        if rows:
            return int(rows[0][0])
        return volunteer_id

    # -- writes ---------------------------------------------------------------

    def insert(self, record: AddressRecord) -> None:
        if record.address_id is None:
            raise WriteError("address insert without an allocated address_id")
        columns = ("address_id",) + ADDRESS_FIELDS
        self._run(
            sql.SQL("INSERT INTO {} ({}) VALUES ({})").format(
                sql.Identifier(ADDRESS_TABLE),
                sql.SQL(", ").join(sql.Identifier(c) for c in columns),
                sql.SQL(", ").join(sql.Placeholder(c) for c in columns),
            ),
            {"address_id": record.address_id, **record.field_values()},
            error_cls=WriteError,
        )

    def update(self, record_id: int, fields: dict[str, Any]) -> None:
        unknown = set(fields) - set(ADDRESS_FIELDS)
        if unknown:
            raise WriteError(f"unknown address columns: {sorted(unknown)}")
        self._run(
            sql.SQL("UPDATE {} SET {} WHERE address_id = {}").format(
                sql.Identifier(ADDRESS_TABLE),
                sql.SQL(", ").join(
                    sql.SQL("{} = {}").format(sql.Identifier(c), sql.Placeholder(c))
                    for c in fields
                ),
                sql.Placeholder("address_id"),
            ),
            {**fields, "address_id": record_id},
            error_cls=WriteError,
        )

    def insert_donation(self, donation: Donation) -> None:
        self._run(
            """
            INSERT INTO donation
              (donation_id, donor_first_name, donor_last_name,
               address_id, donation_date, donation_amount, volunteer_id)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                donation.donation_id,
                donation.donor_first_name,
                donation.donor_last_name,
                donation.address_id,
                donation.donation_date,
                donation.donation_amount,
                donation.volunteer_id,
            ),
            error_cls=WriteError,
        )

    def commit(self) -> None:
        try:
            self._conn.commit()
        except psycopg.Error as exc:
            if self._is_fatal(exc):
                raise StoreConnectionError(f"commit failed: {exc}") from exc
            raise WriteError(f"commit failed: {exc}") from exc

    def rollback(self) -> None:
        try:
            self._conn.rollback()
        except psycopg.Error as exc:
            raise StoreConnectionError(f"rollback failed: {exc}") from exc


@contextmanager
def open_target_store(dsn: str) -> Iterator[PgTargetStore]:
    """Connect to the target store; the connection is closed on every exit path."""
    try:
        conn = psycopg.connect(dsn, autocommit=False)
    except psycopg.Error as exc:
        raise StoreConnectionError(f"cannot connect to target store: {exc}") from exc
    log.info("Connected to target store")
    try:
        yield PgTargetStore(conn)
    finally:
        conn.close()
        log.info("Target store connection closed")
