"""
State document serialization, schema-validated import and CSV reports.

The persisted JSON uses the camelCase keys of the browser-exported
backups so existing exports stay importable. Every import is validated
against the schemas below; anything that does not fit is rejected with
ImportParseError instead of being loaded into the store.
"""

import csv
import io
import json
import logging
from datetime import date

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, ValidationError, model_validator

from medverify.domain.errors import ImportParseError, MedVerifyError
from medverify.domain.models import (
    Anchor,
    Batch,
    BatchMeta,
    Incident,
    KycStatus,
    LabReport,
    Manufacturer,
    ScanEvent,
    ScanResult,
    ScanType,
    StateDocument,
    Transfer,
    format_timestamp,
)

logger = logging.getLogger(__name__)

INCIDENT_CSV_HEADER = ["id", "batchId", "reason", "time", "notes"]
ANCHOR_CSV_HEADER = ["batchId", "batchNo", "hash", "chain", "tx", "time"]


# =============================================================================
# Document schemas
# =============================================================================

class _Record(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ManufacturerSchema(_Record):
    id: str
    name: str
    kyc: KycStatus
    created: AwareDatetime

    def to_domain(self) -> Manufacturer:
        return Manufacturer(id=self.id, name=self.name, kyc=self.kyc, created=self.created)


class BatchMetaSchema(_Record):
    product: str
    batch_no: str = Field(alias="batchNo")
    mfg: date
    expiry: date
    coa: str = ""

    def to_domain(self) -> BatchMeta:
        return BatchMeta(
            product=self.product,
            batch_no=self.batch_no,
            mfg=self.mfg,
            expiry=self.expiry,
            coa=self.coa,
        )


class AnchorSchema(_Record):
    chain: str
    tx: str
    time: AwareDatetime | None = None

    def to_domain(self) -> Anchor:
        return Anchor(chain=self.chain, tx=self.tx, time=self.time)


class TransferSchema(_Record):
    id: str
    distributor: str
    origin: str = Field(default="", alias="from")
    destination: str = Field(alias="to")
    batch_id: str = Field(alias="batchId")
    bol: str = ""
    time: AwareDatetime
    batch_meta: BatchMetaSchema = Field(alias="batchMeta")

    def to_domain(self) -> Transfer:
        return Transfer(
            id=self.id,
            distributor=self.distributor,
            origin=self.origin,
            destination=self.destination,
            batch_id=self.batch_id,
            bol=self.bol,
            time=self.time,
            batch_meta=self.batch_meta.to_domain(),
        )


class LabReportSchema(_Record):
    id: str
    lab: str
    summary: str
    time: AwareDatetime
    hash: str
    anchor: AnchorSchema

    def to_domain(self) -> LabReport:
        return LabReport(
            id=self.id,
            lab=self.lab,
            summary=self.summary,
            time=self.time,
            hash=self.hash,
            anchor=self.anchor.to_domain(),
        )


class IncidentSchema(_Record):
    id: str
    batch_id: str = Field(alias="batchId")
    reason: str
    notes: str = ""
    time: AwareDatetime

    def to_domain(self) -> Incident:
        return Incident(
            id=self.id,
            batch_id=self.batch_id,
            reason=self.reason,
            notes=self.notes,
            time=self.time,
        )


class ScanEventSchema(_Record):
    type: ScanType
    batch_id: str = Field(alias="batchId")
    time: AwareDatetime
    result: ScanResult
    actor: str | None = None

    def to_domain(self) -> ScanEvent:
        return ScanEvent(
            type=self.type,
            batch_id=self.batch_id,
            time=self.time,
            result=self.result,
            actor=self.actor,
        )


class BatchSchema(_Record):
    id: str
    manufacturer_id: str = Field(alias="manufacturerId")
    meta: BatchMetaSchema
    otp: str
    hash: str
    anchors: list[AnchorSchema] = []
    transfers: list[TransferSchema] = []
    lab_reports: list[LabReportSchema] = Field(default=[], alias="labReports")
    attempts: int = Field(default=0, ge=0)
    lock_until: AwareDatetime | None = Field(default=None, alias="lockUntil")

    def to_domain(self) -> Batch:
        return Batch(
            id=self.id,
            manufacturer_id=self.manufacturer_id,
            meta=self.meta.to_domain(),
            otp=self.otp,
            hash=self.hash,
            anchors=tuple(a.to_domain() for a in self.anchors),
            transfers=tuple(t.to_domain() for t in self.transfers),
            lab_reports=tuple(r.to_domain() for r in self.lab_reports),
            attempts=self.attempts,
            lock_until=self.lock_until,
        )


class StateDocumentSchema(_Record):
    manufacturers: dict[str, ManufacturerSchema]
    batches: dict[str, BatchSchema]
    transfers: list[TransferSchema] = []
    incidents: list[IncidentSchema] = []
    scans: list[ScanEventSchema] = []

    @model_validator(mode="after")
    def check_references(self) -> "StateDocumentSchema":
        """
        Map keys must equal record ids, and every cross reference must resolve.

        Batches point at known manufacturers; a batch's own transfers point
        back at it; global transfers, incidents and scans point at known batches.
        """
        for key, manufacturer in self.manufacturers.items():
            if key != manufacturer.id:
                raise ValueError(f"manufacturer key {key!r} does not match id {manufacturer.id!r}")
        for key, batch in self.batches.items():
            if key != batch.id:
                raise ValueError(f"batch key {key!r} does not match id {batch.id!r}")
            if batch.manufacturer_id not in self.manufacturers:
                raise ValueError(f"batch {key!r} references unknown manufacturer {batch.manufacturer_id!r}")
            for transfer in batch.transfers:
                if transfer.batch_id != key:
                    raise ValueError(f"transfer {transfer.id!r} under batch {key!r} references batch {transfer.batch_id!r}")

        records = [("transfer", t.batch_id) for t in self.transfers]
        records += [("incident", i.batch_id) for i in self.incidents]
        records += [("scan", s.batch_id) for s in self.scans]
        for kind, batch_id in records:
            if batch_id not in self.batches:
                raise ValueError(f"{kind} references unknown batch {batch_id!r}")
        return self

    def to_domain(self) -> StateDocument:
        return StateDocument(
            manufacturers={k: m.to_domain() for k, m in self.manufacturers.items()},
            batches={k: b.to_domain() for k, b in self.batches.items()},
            transfers=tuple(t.to_domain() for t in self.transfers),
            incidents=tuple(i.to_domain() for i in self.incidents),
            scans=tuple(s.to_domain() for s in self.scans),
        )


# =============================================================================
# JSON
# =============================================================================

def dump_document(document: StateDocument, indent: int | None = 2) -> str:
    """Serialize the whole state document to JSON."""
    return json.dumps(document.to_dict(), indent=indent, ensure_ascii=False)


def load_document(raw: str | bytes) -> StateDocument:
    """
    Parse and validate a serialized state document.

    Args:
        raw: JSON text as produced by ``dump_document``

    Returns:
        The validated StateDocument

    Raises:
        ImportParseError: On malformed JSON or any schema mismatch
    """
    try:
        schema = StateDocumentSchema.model_validate_json(raw)
        return schema.to_domain()
    except ValidationError as e:
        logger.error(f"State document rejected: {e.error_count()} validation error(s)")
        raise ImportParseError(f"Invalid state document: {e}") from e
    except MedVerifyError as e:
        logger.error(f"State document rejected: {e.message}")
        raise ImportParseError(f"Invalid state document: {e.message}") from e


# =============================================================================
# CSV reports
# =============================================================================

def _to_csv(rows: list[list[str]]) -> str:
    """Every field quoted, quotes doubled, rows joined by newlines."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue().removesuffix("\n")


def incidents_csv(document: StateDocument) -> str:
    """Incident report: id,batchId,reason,time,notes."""
    rows = [INCIDENT_CSV_HEADER]
    for incident in document.incidents:
        rows.append([
            incident.id,
            incident.batch_id,
            incident.reason,
            format_timestamp(incident.time),
            incident.notes.replace("\n", " "),
        ])
    return _to_csv(rows)


def anchors_csv(document: StateDocument) -> str:
    """Anchor report: one row per batch anchor."""
    rows = [ANCHOR_CSV_HEADER]
    for batch in document.batches.values():
        for anchor in batch.anchors:
            rows.append([
                batch.id,
                batch.meta.batch_no,
                batch.hash,
                anchor.chain,
                anchor.tx,
                format_timestamp(anchor.time) if anchor.time else "",
            ])
    return _to_csv(rows)
