from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any


class PublicationStatus(str, Enum):
    NOT_POSTED = "not_posted"
    QUEUED = "queued"
    POSTING = "posting"
    POSTED = "posted"
    FAILED = "failed"


@dataclass(frozen=True)
class TextToken:
    x: float
    y: float
    text: str


@dataclass
class ParsedVehicle:
    """One vehicle block as read from an inventory report, before persistence."""

    year: str = ""
    make: str = ""
    model: str = ""
    trim: str = ""
    vin: str = ""
    stock_number: str = ""
    price: str = ""
    mileage: str = ""
    body: str = ""
    color: str = ""
    vehicle_class: str = ""
    recall_status: str = ""
    disposition: str = ""

    @property
    def vin_key(self) -> str:
        return self.vin.strip().upper()

    def price_value(self) -> int:
        try:
            return int(self.price)
        except (TypeError, ValueError):
            return 0

    def catalog_fields(self) -> dict[str, Any]:
        row = asdict(self)
        row["trim"] = self.trim or None
        row["vin"] = self.vin or None
        row["mileage"] = self.mileage or None
        return row


@dataclass
class VehicleRecord:
    id: str
    year: str
    make: str
    model: str
    trim: str | None = None
    vin: str | None = None
    stock_number: str = ""
    price: str = ""
    mileage: str | None = None
    body: str = ""
    color: str = ""
    vehicle_class: str = ""
    recall_status: str = ""
    disposition: str = ""
    photos: list[str] = field(default_factory=list)
    description: str | None = None
    status: PublicationStatus = PublicationStatus.NOT_POSTED
    queued_at: datetime | None = None
    posting_started_at: datetime | None = None
    posted_at: datetime | None = None
    listing_url: str | None = None

    @property
    def vin_key(self) -> str | None:
        return self.vin.strip().upper() if self.vin else None

    @property
    def title(self) -> str:
        return " ".join(p for p in (self.year, self.make, self.model, self.trim or "") if p).strip()

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> VehicleRecord:
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in row.items() if k in known}
        values["status"] = PublicationStatus(values.get("status") or PublicationStatus.NOT_POSTED)
        values["photos"] = list(values.get("photos") or [])
        return cls(**values)


@dataclass(frozen=True)
class DailyPostCount:
    day: date
    count: int = 0
    last_post_at: datetime | None = None


@dataclass(frozen=True)
class AuditLogEntry:
    id: str
    vehicle_id: str
    action: str
    details: str | None
    created_at: datetime


@dataclass(frozen=True)
class PublishResult:
    success: bool
    listing_url: str | None = None
    error: str | None = None


@dataclass
class SyncSummary:
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    removed: int = 0
    skipped: int = 0
    total: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class PosterRunSummary:
    stopped: bool = False
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    daily_count_after: int = 0
    remaining_queued: int = 0
    reason: str = "completed"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
