"""
Pydantic schemas for API request/response validation.

These schemas define the contract between frontend and backend.
Required-field checks are left to the service so that missing input is
reported the same way (400) no matter which client sent it.
"""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field

from medverify.domain.models import (
    Anchor,
    Batch,
    BatchMeta,
    Incident,
    LabReport,
    Manufacturer,
    ScanEvent,
    Transfer,
)
from medverify.domain.verification import VerificationOutcome


class KycStatusEnum(str, Enum):
    """Manufacturer KYC status."""
    APPROVED = "approved"
    PENDING = "pending"


class VerdictEnum(str, Enum):
    """Verification verdict."""
    AUTHENTIC = "AUTHENTIC"
    SUSPECT = "SUSPECT"


class AssuranceEnum(str, Enum):
    """Whether the one-time code was checked."""
    FULL = "full"
    REDUCED = "reduced"


# =============================================================================
# Request Schemas
# =============================================================================

class RegisterBatchRequest(BaseModel):
    """Manufacturer batch registration form."""
    manufacturer_name: str = Field(..., description="Manufacturer name (reused if it already exists)")
    kyc: KycStatusEnum = Field(default=KycStatusEnum.APPROVED, description="KYC status for a new manufacturer")
    product: str = Field(..., description="Product name / description")
    batch_no: str | None = Field(default=None, description="Batch number (defaults to the batch id)")
    mfg: date | None = Field(default=None, description="Manufacture date (defaults to today)")
    expiry: date | None = Field(default=None, description="Expiry date (defaults to today + 2 years)")
    coa: str = Field(default="", description="Certificate of analysis / notes")


class TransferRequest(BaseModel):
    """Distributor shipment log."""
    distributor: str
    origin: str = Field(default="", description="From (location / warehouse)")
    destination: str = Field(..., description="To (pharmacy / retailer)")
    batch_id: str
    bol: str = Field(default="", description="Bill of lading / invoice text")


class CodeCheckRequest(BaseModel):
    """Batch id plus the scratch one-time code."""
    batch_id: str
    code: str


class UssdRequest(BaseModel):
    """Feature-phone short code, e.g. *345*BID_abc1234#."""
    command: str


class SmsRequest(BaseModel):
    """SMS lookup: batch id sent from a phone number."""
    batch_id: str
    phone: str


class LabReportRequest(BaseModel):
    """Lab test report upload."""
    lab: str
    summary: str


class IncidentRequest(BaseModel):
    """Manually reported incident."""
    batch_id: str
    reason: str
    notes: str = ""


# =============================================================================
# Response Schemas
# =============================================================================

class ManufacturerResponse(BaseModel):
    id: str
    name: str
    kyc: KycStatusEnum
    created: datetime

    @classmethod
    def from_domain(cls, manufacturer: Manufacturer) -> "ManufacturerResponse":
        return cls(
            id=manufacturer.id,
            name=manufacturer.name,
            kyc=KycStatusEnum(manufacturer.kyc.value),
            created=manufacturer.created,
        )


class BatchMetaResponse(BaseModel):
    product: str
    batch_no: str
    mfg: date
    expiry: date
    coa: str

    @classmethod
    def from_domain(cls, meta: BatchMeta) -> "BatchMetaResponse":
        return cls(
            product=meta.product,
            batch_no=meta.batch_no,
            mfg=meta.mfg,
            expiry=meta.expiry,
            coa=meta.coa,
        )


class AnchorResponse(BaseModel):
    chain: str
    tx: str
    time: datetime | None = None

    @classmethod
    def from_domain(cls, anchor: Anchor) -> "AnchorResponse":
        return cls(chain=anchor.chain, tx=anchor.tx, time=anchor.time)


class TransferResponse(BaseModel):
    id: str
    distributor: str
    origin: str
    destination: str
    batch_id: str
    bol: str
    time: datetime
    batch_meta: BatchMetaResponse

    @classmethod
    def from_domain(cls, transfer: Transfer) -> "TransferResponse":
        return cls(
            id=transfer.id,
            distributor=transfer.distributor,
            origin=transfer.origin,
            destination=transfer.destination,
            batch_id=transfer.batch_id,
            bol=transfer.bol,
            time=transfer.time,
            batch_meta=BatchMetaResponse.from_domain(transfer.batch_meta),
        )


class LabReportResponse(BaseModel):
    id: str
    lab: str
    summary: str
    time: datetime
    hash: str
    anchor: AnchorResponse

    @classmethod
    def from_domain(cls, report: LabReport) -> "LabReportResponse":
        return cls(
            id=report.id,
            lab=report.lab,
            summary=report.summary,
            time=report.time,
            hash=report.hash,
            anchor=AnchorResponse.from_domain(report.anchor),
        )


class BatchResponse(BaseModel):
    """Public batch view. The one-time code is never included."""
    id: str
    manufacturer_id: str
    meta: BatchMetaResponse
    hash: str
    anchors: list[AnchorResponse]
    transfers: list[TransferResponse]
    lab_reports: list[LabReportResponse]
    attempts: int
    lock_until: datetime | None = None

    @classmethod
    def from_domain(cls, batch: Batch) -> "BatchResponse":
        return cls(
            id=batch.id,
            manufacturer_id=batch.manufacturer_id,
            meta=BatchMetaResponse.from_domain(batch.meta),
            hash=batch.hash,
            anchors=[AnchorResponse.from_domain(a) for a in batch.anchors],
            transfers=[TransferResponse.from_domain(t) for t in batch.transfers],
            lab_reports=[LabReportResponse.from_domain(r) for r in batch.lab_reports],
            attempts=batch.attempts,
            lock_until=batch.lock_until,
        )


class RegisterBatchResponse(BaseModel):
    """Registration result; ``otp`` is the scratch code for the sticker."""
    message: str
    batch: BatchResponse
    otp: str
    verification_url: str


class VerificationLinkResponse(BaseModel):
    batch_id: str
    url: str


class VerificationResponse(BaseModel):
    """Verdict of a verify, receipt, USSD or SMS request."""
    status: VerdictEnum
    reason: str | None = None
    message: str
    assurance: AssuranceEnum
    batch_id: str | None = None

    @classmethod
    def from_outcome(cls, outcome: VerificationOutcome) -> "VerificationResponse":
        return cls(
            status=VerdictEnum(outcome.status.value),
            reason=outcome.reason,
            message=outcome.message,
            assurance=AssuranceEnum(outcome.assurance.value),
            batch_id=outcome.batch_id,
        )


class VerificationLandingResponse(BaseModel):
    """What a scanned QR link shows before the code is entered."""
    batch_id: str
    found: bool
    product: str | None = None
    batch_no: str | None = None
    message: str


class IncidentResponse(BaseModel):
    id: str
    batch_id: str
    reason: str
    notes: str
    time: datetime

    @classmethod
    def from_domain(cls, incident: Incident) -> "IncidentResponse":
        return cls(
            id=incident.id,
            batch_id=incident.batch_id,
            reason=incident.reason,
            notes=incident.notes,
            time=incident.time,
        )


class ScanResponse(BaseModel):
    type: str
    batch_id: str
    time: datetime
    result: VerdictEnum
    actor: str | None = None

    @classmethod
    def from_domain(cls, scan: ScanEvent) -> "ScanResponse":
        return cls(
            type=scan.type.value,
            batch_id=scan.batch_id,
            time=scan.time,
            result=VerdictEnum(scan.result.value),
            actor=scan.actor,
        )


class KpiResponse(BaseModel):
    scans: int
    suspect_scans: int
    incidents: int
    batches: int
    manufacturers: int


class MessageResponse(BaseModel):
    """Plain acknowledgement."""
    message: str


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str
    storage_backend: str
    batches: int
