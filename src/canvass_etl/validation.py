"""canvass_etl.validation

Ordered, fail-fast validation of donation rows before they are persisted.

Default check order (each an independent predicate):
  1. address_present   — address_id parsed            else EmptyReference
  2. address_exists    — address row exists            else DanglingReference
  3. volunteer_present — volunteer_id parsed           else EmptyOwner
  4. volunteer_exists  — volunteer row exists          else InvalidOwner
  5. complete          — no field is None              else IncompleteRecord
  6. positive_amount   — donation_amount > 0           else NonPositiveAmount

The first failing check ends validation; later checks are never evaluated.
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from canvass_etl.records import ADDRESS_TABLE, VOLUNTEER_TABLE, Donation
from canvass_etl.store import TargetStore


class FailureReason(str, enum.Enum):
    EMPTY_REFERENCE = "EmptyReference"
    DANGLING_REFERENCE = "DanglingReference"
    EMPTY_OWNER = "EmptyOwner"
    INVALID_OWNER = "InvalidOwner"
    INCOMPLETE_RECORD = "IncompleteRecord"
    NON_POSITIVE_AMOUNT = "NonPositiveAmount"


@dataclass(frozen=True)
class ValidationFailure:
    reason: FailureReason
    check: str
    detail: str = ""

    def __str__(self) -> str:
        return f"{self.reason.value}: {self.detail}" if self.detail else self.reason.value


@dataclass(frozen=True)
class ValidationOutcome:
    record: Donation
    failure: ValidationFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass(frozen=True)
class Check:
    name: str
    reason: FailureReason
    predicate: Callable[[Donation], bool]
    detail: Callable[[Donation], str] | None = None


class ValidationPipeline:
    def __init__(self, checks: Sequence[Check]) -> None:
        names = [c.name for c in checks]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate check names: {names}")
        self._checks = tuple(checks)

    @property
    def checks(self) -> tuple[Check, ...]:
        return self._checks

    def with_check(self, check: Check, before: str | None = None) -> ValidationPipeline:
        """Return a new pipeline with ``check`` inserted ahead of ``before``.

        Without ``before`` the check is appended.  Existing checks keep
        their relative order.
        """
        checks = list(self._checks)
        if before is None:
            checks.append(check)
        else:
            names = [c.name for c in checks]
            if before not in names:
                raise KeyError(before)
            checks.insert(names.index(before), check)
        return ValidationPipeline(checks)

    def validate(self, record: Donation) -> ValidationOutcome:
        for check in self._checks:
            if not check.predicate(record):
                detail = check.detail(record) if check.detail else ""
                return ValidationOutcome(
                    record=record,
                    failure=ValidationFailure(check.reason, check.name, detail),
                )
        return ValidationOutcome(record=record)


# ---------------------------------------------------------------------------
# Donation checks
# ---------------------------------------------------------------------------

def _null_fields(d: Donation) -> list[str]:
    return [k for k, v in d.as_dict().items() if v is None]


def donation_checks(store: TargetStore) -> list[Check]:
    return [
        Check(
            "address_present",
            FailureReason.EMPTY_REFERENCE,
            lambda d: d.address_id is not None,
            lambda d: "Empty address_id",
        ),
        Check(
            "address_exists",
            FailureReason.DANGLING_REFERENCE,
            lambda d: store.exists(ADDRESS_TABLE, d.address_id),
            lambda d: f"Invalid address_id: {d.address_id}",
        ),
        Check(
            "volunteer_present",
            FailureReason.EMPTY_OWNER,
            lambda d: d.volunteer_id is not None,
            lambda d: "Empty volunteer_id",
        ),
        Check(
            "volunteer_exists",
            FailureReason.INVALID_OWNER,
            lambda d: store.exists(VOLUNTEER_TABLE, d.volunteer_id),
            lambda d: f"Invalid volunteer_id: {d.volunteer_id}",
        ),
        Check(
            "complete",
            FailureReason.INCOMPLETE_RECORD,
            lambda d: not _null_fields(d),
            lambda d: f"Contains null values: {', '.join(_null_fields(d))}",
        ),
        Check(
            "positive_amount",
            FailureReason.NON_POSITIVE_AMOUNT,
            lambda d: d.donation_amount > 0,
            lambda d: f"Invalid donation amount: {d.donation_amount}",
        ),
    ]


def donation_pipeline(store: TargetStore) -> ValidationPipeline:
    return ValidationPipeline(donation_checks(store))
