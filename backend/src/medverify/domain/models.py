"""
Domain models for pharmaceutical batch tracking.

These records mirror the persisted state document one-to-one. Field names
follow Python conventions; ``to_dict`` produces the camelCase keys of the
stored JSON so documents stay readable by earlier versions.

Design Decisions:
- Frozen dataclasses; every change produces a new record
- Required fields are enforced at construction time (InvalidInputError)
- StateDocument mutators return the next snapshot and never touch the receiver
- Timestamps are UTC with millisecond precision to match their serialization
"""

import re
import secrets
import string
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from .errors import InvalidInputError, NotFoundError


ID_ALPHABET = string.ascii_lowercase + string.digits

# Incident reasons raised by the verification procedure
REASON_OTP_BRUTEFORCE = "otp-bruteforce"
REASON_PROOF_MISMATCH = "proof-mismatch"

_OTP_PATTERN = re.compile(r"\d{6}")


class KycStatus(Enum):
    """Manufacturer know-your-customer review status."""
    APPROVED = "approved"
    PENDING = "pending"


class ScanType(Enum):
    """Which flow produced a scan event."""
    VERIFY = "verify"
    RECEIPT = "receipt"


class ScanResult(Enum):
    """Authenticity verdict recorded on a scan event."""
    AUTHENTIC = "AUTHENTIC"
    SUSPECT = "SUSPECT"


def new_id(prefix: str, length: int = 7) -> str:
    """Generate an identifier like ``BID_k3j9x0a``."""
    suffix = "".join(secrets.choice(ID_ALPHABET) for _ in range(length))
    return f"{prefix}_{suffix}"


def new_otp() -> str:
    """Draw a 6-digit one-time code (100000-999999)."""
    return str(100000 + secrets.randbelow(900000))


def utc_now() -> datetime:
    """Current UTC time truncated to milliseconds."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def format_timestamp(value: datetime) -> str:
    """Serialize as ISO-8601 with milliseconds and a ``Z`` suffix."""
    text = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def years_later(day: date, years: int) -> date:
    """Same calendar day ``years`` later; Feb 29 rolls over to Mar 1."""
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        return date(day.year + years, 3, 1)


def _require(value: str | None, field_name: str) -> None:
    if value is None or not str(value).strip():
        raise InvalidInputError(f"{field_name} is required")


@dataclass(frozen=True)
class Manufacturer:
    """A registered manufacturer and its KYC status."""
    id: str
    name: str
    kyc: KycStatus
    created: datetime

    def __post_init__(self) -> None:
        _require(self.id, "manufacturer id")
        _require(self.name, "manufacturer name")
        if not isinstance(self.kyc, KycStatus):
            raise InvalidInputError(f"Unknown KYC status: {self.kyc}")

    @classmethod
    def create(
        cls,
        name: str,
        kyc: KycStatus | str,
        now: datetime,
    ) -> "Manufacturer":
        """Create a manufacturer with a fresh identifier."""
        try:
            status = KycStatus(kyc)
        except ValueError:
            raise InvalidInputError(f"Unknown KYC status: {kyc}")
        return cls(id=new_id("MAN"), name=name, kyc=status, created=now)

    def toggled(self) -> "Manufacturer":
        """Flip approved <-> pending."""
        flipped = KycStatus.PENDING if self.kyc is KycStatus.APPROVED else KycStatus.APPROVED
        return replace(self, kyc=flipped)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kyc": self.kyc.value,
            "created": format_timestamp(self.created),
        }


@dataclass(frozen=True)
class BatchMeta:
    """
    Descriptive batch metadata.

    Hashed together with the manufacturer record to form the batch proof,
    so it is never edited after registration.
    """
    product: str
    batch_no: str
    mfg: date
    expiry: date
    coa: str = ""

    def __post_init__(self) -> None:
        _require(self.product, "product")
        _require(self.batch_no, "batch number")

    def to_dict(self) -> dict[str, Any]:
        return {
            "product": self.product,
            "batchNo": self.batch_no,
            "mfg": self.mfg.isoformat(),
            "expiry": self.expiry.isoformat(),
            "coa": self.coa,
        }


@dataclass(frozen=True)
class Anchor:
    """Simulated ledger reference. Lab-report anchors from older documents carry no time."""
    chain: str
    tx: str
    time: datetime | None = None

    def __post_init__(self) -> None:
        _require(self.chain, "anchor chain")
        _require(self.tx, "anchor transaction id")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"chain": self.chain, "tx": self.tx}
        if self.time is not None:
            data["time"] = format_timestamp(self.time)
        return data


@dataclass(frozen=True)
class Transfer:
    """A distributor shipment of a batch, with the batch metadata at that time."""
    id: str
    distributor: str
    origin: str
    destination: str
    batch_id: str
    bol: str
    time: datetime
    batch_meta: BatchMeta

    def __post_init__(self) -> None:
        _require(self.distributor, "distributor")
        _require(self.destination, "destination")
        _require(self.batch_id, "batch id")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "distributor": self.distributor,
            "from": self.origin,
            "to": self.destination,
            "batchId": self.batch_id,
            "bol": self.bol,
            "time": format_timestamp(self.time),
            "batchMeta": self.batch_meta.to_dict(),
        }


@dataclass(frozen=True)
class LabReport:
    """Lab test summary attached to a batch."""
    id: str
    lab: str
    summary: str
    time: datetime
    hash: str
    anchor: Anchor

    def __post_init__(self) -> None:
        _require(self.lab, "lab name")
        _require(self.summary, "summary")
        _require(self.hash, "lab report hash")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "lab": self.lab,
            "summary": self.summary,
            "time": format_timestamp(self.time),
            "hash": self.hash,
            "anchor": self.anchor.to_dict(),
        }


@dataclass(frozen=True)
class Incident:
    """An event flagged for admin attention."""
    id: str
    batch_id: str
    reason: str
    notes: str
    time: datetime

    def __post_init__(self) -> None:
        _require(self.batch_id, "batch id")
        _require(self.reason, "reason")

    @classmethod
    def create(cls, batch_id: str, reason: str, now: datetime, notes: str = "") -> "Incident":
        return cls(id=new_id("INC"), batch_id=batch_id, reason=reason, notes=notes, time=now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "batchId": self.batch_id,
            "reason": self.reason,
            "notes": self.notes,
            "time": format_timestamp(self.time),
        }


@dataclass(frozen=True)
class ScanEvent:
    """One verification or receipt attempt that reached a verdict."""
    type: ScanType
    batch_id: str
    time: datetime
    result: ScanResult
    actor: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type.value,
            "batchId": self.batch_id,
            "time": format_timestamp(self.time),
            "result": self.result.value,
        }
        if self.actor is not None:
            data["actor"] = self.actor
        return data


@dataclass(frozen=True)
class Batch:
    """
    A registered production batch.

    ``otp`` and ``hash`` are fixed at registration. ``attempts`` counts
    wrong one-time codes and is never reset; ``lock_until`` is set when the
    counter reaches the lockout threshold.
    """
    id: str
    manufacturer_id: str
    meta: BatchMeta
    otp: str
    hash: str
    anchors: tuple[Anchor, ...] = ()
    transfers: tuple[Transfer, ...] = ()
    lab_reports: tuple[LabReport, ...] = ()
    attempts: int = 0
    lock_until: datetime | None = None

    def __post_init__(self) -> None:
        _require(self.id, "batch id")
        _require(self.manufacturer_id, "manufacturer id")
        _require(self.hash, "batch hash")
        if not _OTP_PATTERN.fullmatch(self.otp or ""):
            raise InvalidInputError("One-time code must be exactly 6 digits")
        if self.attempts < 0:
            raise InvalidInputError("attempts cannot be negative")

    def is_locked(self, now: datetime) -> bool:
        """True while ``now`` is inside the lockout window."""
        return self.lock_until is not None and now < self.lock_until

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "manufacturerId": self.manufacturer_id,
            "meta": self.meta.to_dict(),
            "otp": self.otp,
            "hash": self.hash,
            "anchors": [a.to_dict() for a in self.anchors],
            "transfers": [t.to_dict() for t in self.transfers],
            "labReports": [r.to_dict() for r in self.lab_reports],
            "attempts": self.attempts,
            "lockUntil": format_timestamp(self.lock_until) if self.lock_until else None,
        }


@dataclass(frozen=True)
class StateDocument:
    """
    The complete persisted state.

    Mutators return a new document; the receiver is left untouched so a
    caller can compute the next snapshot before deciding to persist it.
    """
    manufacturers: dict[str, Manufacturer] = field(default_factory=dict)
    batches: dict[str, Batch] = field(default_factory=dict)
    transfers: tuple[Transfer, ...] = ()
    incidents: tuple[Incident, ...] = ()
    scans: tuple[ScanEvent, ...] = ()

    def require_batch(self, batch_id: str) -> Batch:
        batch = self.batches.get(batch_id)
        if batch is None:
            raise NotFoundError(f"Batch not found: {batch_id}")
        return batch

    def require_manufacturer(self, manufacturer_id: str) -> Manufacturer:
        manufacturer = self.manufacturers.get(manufacturer_id)
        if manufacturer is None:
            raise NotFoundError(f"Manufacturer not found: {manufacturer_id}")
        return manufacturer

    def find_manufacturer_by_name(self, name: str) -> Manufacturer | None:
        return next((m for m in self.manufacturers.values() if m.name == name), None)

    def with_manufacturer(self, manufacturer: Manufacturer) -> "StateDocument":
        return replace(self, manufacturers={**self.manufacturers, manufacturer.id: manufacturer})

    def with_batch(self, batch: Batch) -> "StateDocument":
        if batch.manufacturer_id not in self.manufacturers:
            raise NotFoundError(f"Manufacturer not found: {batch.manufacturer_id}")
        return replace(self, batches={**self.batches, batch.id: batch})

    def with_transfer(self, transfer: Transfer) -> "StateDocument":
        """Append a transfer globally and on its batch."""
        batch = self.require_batch(transfer.batch_id)
        updated = replace(batch, transfers=batch.transfers + (transfer,))
        return replace(
            self,
            transfers=self.transfers + (transfer,),
            batches={**self.batches, batch.id: updated},
        )

    def with_lab_report(self, batch_id: str, report: LabReport) -> "StateDocument":
        batch = self.require_batch(batch_id)
        updated = replace(batch, lab_reports=batch.lab_reports + (report,))
        return replace(self, batches={**self.batches, batch.id: updated})

    def with_incident(self, incident: Incident) -> "StateDocument":
        return replace(self, incidents=self.incidents + (incident,))

    def with_scan(self, scan: ScanEvent) -> "StateDocument":
        return replace(self, scans=self.scans + (scan,))

    def with_kyc_toggled(self, manufacturer_id: str) -> "StateDocument":
        manufacturer = self.require_manufacturer(manufacturer_id)
        return self.with_manufacturer(manufacturer.toggled())

    def to_dict(self) -> dict[str, Any]:
        return {
            "manufacturers": {k: m.to_dict() for k, m in self.manufacturers.items()},
            "batches": {k: b.to_dict() for k, b in self.batches.items()},
            "transfers": [t.to_dict() for t in self.transfers],
            "incidents": [i.to_dict() for i in self.incidents],
            "scans": [s.to_dict() for s in self.scans],
        }
