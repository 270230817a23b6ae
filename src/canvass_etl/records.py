"""canvass_etl.records

Target-shaped record types shared by the stores, the reconciliation engine
and the donation validators.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from datetime import date
from decimal import Decimal
from typing import Any

from canvass_etl.normalize import address_key

ADDRESS_TABLE = "address"
VOLUNTEER_TABLE = "volunteer"
DONATION_TABLE = "donation"

# Column order of the address table, surrogate id excluded.
ADDRESS_FIELDS = (
    "unit_num",
    "street_number",
    "street_name",
    "street_type",
    "street_direction",
    "postal_code",
    "city",
    "province",
)


@dataclass(frozen=True)
class AddressRecord:
    """Canonical stored form of an address.  ``address_id`` is None until allocated."""

    unit_num: str | None = None
    street_number: int | None = None
    street_name: str | None = None
    street_type: str | None = None
    street_direction: str | None = None
    postal_code: str | None = None
    city: str | None = None
    province: str | None = None
    address_id: int | None = None

    @property
    def key(self) -> str:
        return address_key(self)

    def field_values(self) -> dict[str, Any]:
        """Every stored column except the surrogate id, in table order."""
        return {name: getattr(self, name) for name in ADDRESS_FIELDS}

    def with_id(self, address_id: int) -> AddressRecord:
        return replace(self, address_id=address_id)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> AddressRecord:
        """Build from a target-store row keyed by lower-case column names."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in names})


@dataclass(frozen=True)
class Donation:
    """A parsed donation row.  Any field may be None when parsing failed."""

    donation_id: int | None
    donor_first_name: str | None
    donor_last_name: str | None
    address_id: int | None
    donation_date: date | None
    donation_amount: Decimal | None
    volunteer_id: int | None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
