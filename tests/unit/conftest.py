"""Unit test fixtures.

FakeTargetStore stands in for PgTargetStore: an in-memory address/volunteer/
donation store with commit/rollback snapshots, a call log, and switches for
refusing individual writes, losing the connection, or failing a commit.
"""

from __future__ import annotations

import dataclasses
from typing import Any

import pytest

from canvass_etl.config import EtlSettings
from canvass_etl.context import RunContext
from canvass_etl.records import ADDRESS_TABLE, VOLUNTEER_TABLE, AddressRecord, Donation
from canvass_etl.shared import RunCounters, StoreConnectionError, StoreError, WriteError


class FakeTargetStore:
    def __init__(
        self,
        addresses: list[AddressRecord] | None = None,
        volunteers: dict[int, int | None] | None = None,
    ) -> None:
        self.addresses: dict[int, AddressRecord] = {
            a.address_id: a for a in (addresses or [])
        }
        # volunteer_id -> group leader (None when unassigned)
        self.volunteers: dict[int, int | None] = dict(volunteers or {})
        self.donations: list[Donation] = []
        self.calls: list[tuple[Any, ...]] = []
        self.commits = 0
        self.rollbacks = 0
        self.writes = 0

        # failure switches
        self.refuse_keys: set[str] = set()
        self.refuse_update_ids: set[int] = set()
        self.refuse_donation_ids: set[int] = set()
        self.failing_leader_lookups: set[int] = set()
        self.lose_connection_at_write: int | None = None
        self.fail_commit_number: int | None = None
        self.fail_max = False

        self._snapshot()

    # -- transaction bookkeeping --------------------------------------------

    def _snapshot(self) -> None:
        self.committed_addresses = dict(self.addresses)
        self.committed_donations = list(self.donations)

    def _tick(self) -> None:
        self.writes += 1
        if (
            self.lose_connection_at_write is not None
            and self.writes >= self.lose_connection_at_write
        ):
            raise StoreConnectionError("server closed the connection unexpectedly")

    # -- reads --------------------------------------------------------------

    def fetch_all_existing(self) -> list[AddressRecord]:
        self.calls.append(("fetch_all_existing",))
        return list(self.addresses.values())

    def fetch_max(self, field: str, table: str = ADDRESS_TABLE) -> int | None:
        self.calls.append(("fetch_max", field, table))
        if self.fail_max:
            raise StoreError("relation does not exist")
        return max(self.addresses, default=None)

    def exists(self, table: str, record_id: int) -> bool:
        self.calls.append(("exists", table, record_id))
        if table == ADDRESS_TABLE:
            return record_id in self.addresses
        if table == VOLUNTEER_TABLE:
            return record_id in self.volunteers
        raise StoreError(f"unknown table {table!r}")

    def resolve_owner_chain(self, volunteer_id: int) -> int:
        self.calls.append(("resolve_owner_chain", volunteer_id))
        if volunteer_id in self.failing_leader_lookups:
            raise StoreError("lookup failed")
        leader = self.volunteers.get(volunteer_id)
        return leader if leader is not None else volunteer_id

    # -- writes -------------------------------------------------------------

    def insert(self, record: AddressRecord) -> None:
        self.calls.append(("insert", record.address_id))
        self._tick()
        if record.key in self.refuse_keys:
            raise WriteError(f"insert refused for {record.key}")
        self.addresses[record.address_id] = record

    def update(self, record_id: int, fields: dict[str, Any]) -> None:
        self.calls.append(("update", record_id))
        self._tick()
        if record_id in self.refuse_update_ids:
            raise WriteError(f"update refused for {record_id}")
        self.addresses[record_id] = dataclasses.replace(self.addresses[record_id], **fields)

    def insert_donation(self, donation: Donation) -> None:
        self.calls.append(("insert_donation", donation.donation_id))
        self._tick()
        if donation.donation_id in self.refuse_donation_ids:
            raise WriteError(f"duplicate key value: donation_id={donation.donation_id}")
        self.donations.append(donation)

    def commit(self) -> None:
        self.calls.append(("commit",))
        if self.fail_commit_number is not None and self.commits + 1 == self.fail_commit_number:
            raise WriteError("commit failed: deferred constraint violated")
        self.commits += 1
        self._snapshot()

    def rollback(self) -> None:
        self.calls.append(("rollback",))
        self.rollbacks += 1
        self.addresses = dict(self.committed_addresses)
        self.donations = list(self.committed_donations)

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def make_store():
    def _make(**kwargs: Any) -> FakeTargetStore:
        return FakeTargetStore(**kwargs)
    return _make


@pytest.fixture
def make_ctx(tmp_path):
    def _make(store: FakeTargetStore, dry_run: bool = False, **settings: Any) -> RunContext:
        return RunContext(
            settings=EtlSettings(
                target_dsn="postgresql://fake/target",
                rejects_dir=tmp_path / "rejects",
                reports_dir=tmp_path / "reports",
                **settings,
            ),
            target=store,
            run_id="test-run",
            dry_run=dry_run,
            counters=RunCounters(),
        )
    return _make
