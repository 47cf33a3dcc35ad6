"""
Batch verification service.

Coordinates the whole supply-chain workflow:
1. Batch registration (proof + simulated anchor)
2. Distributor transfers and pharmacy receipts
3. End-user verification (QR + one-time code, USSD, SMS)
4. Lab report attestation
5. Admin: KYC, incidents, KPIs, exports, backup/restore/reset

This is the primary interface used by the API layer. Public operations
never raise domain errors; they return an OperationResult or a
VerificationOutcome describing what happened.
"""

import io
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable
from urllib.parse import urlencode

import qrcode

from medverify.config import Settings, get_settings
from medverify.domain import verification as rules
from medverify.domain.errors import InvalidInputError, MedVerifyError, NotFoundError
from medverify.domain.hashing import compute_lab_report_hash, compute_proof
from medverify.domain.models import (
    Batch,
    BatchMeta,
    Incident,
    LabReport,
    Manufacturer,
    ScanEvent,
    ScanResult,
    StateDocument,
    Transfer,
    new_id,
    new_otp,
    utc_now,
    years_later,
)
from medverify.domain.verification import Assurance, LockoutPolicy, VerificationOutcome
from medverify.infrastructure.codec import anchors_csv, dump_document, incidents_csv, load_document
from medverify.infrastructure.storage import create_backend
from medverify.infrastructure.store import RecordStore, demo_bootstrap

from .anchoring import SimulatedLedger

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Result of a state-changing or lookup operation."""
    success: bool
    message: str
    value: Any = None
    error: MedVerifyError | None = None

    @property
    def error_code(self) -> str | None:
        return self.error.code if self.error else None


@dataclass(frozen=True)
class Kpis:
    """Headline counters for the admin dashboard."""
    scans: int
    suspect_scans: int
    incidents: int
    batches: int
    manufacturers: int


@dataclass(frozen=True)
class VerificationLink:
    """QR payload for a batch sticker."""
    batch_id: str
    url: str


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


class VerificationService:
    """
    Owns the record store and applies the verification rules to it.

    Example:
        service = VerificationService(RecordStore(MemoryBackend(), "state"))
        await service.start()

        result = await service.register_batch("NovaMed Pharma", "Amoxicillin 500mg")
        outcome = await service.verify(result.value.id, result.value.otp)
        assert outcome.is_authentic
    """

    def __init__(
        self,
        store: RecordStore,
        ledger: SimulatedLedger | None = None,
        policy: LockoutPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
        public_base_url: str = "http://localhost:8000/api/v1/verify",
    ) -> None:
        """
        Initialize verification service.

        Args:
            store: Record store (loaded by ``start``)
            ledger: Anchor issuer (simulated-testnet if None)
            policy: Wrong-code lockout policy (5 attempts / 15 minutes if None)
            clock: Source of the current UTC time
            public_base_url: Base of the URL encoded in batch QR codes
        """
        self.store = store
        self.ledger = ledger or SimulatedLedger()
        self.policy = policy or LockoutPolicy()
        self.clock = clock
        self.public_base_url = public_base_url

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "VerificationService":
        """Build the service and its store from application settings."""
        settings = settings or get_settings()
        bootstrap = demo_bootstrap(settings.anchor_chain) if settings.bootstrap_demo else None
        store = RecordStore(create_backend(settings), settings.state_key, bootstrap=bootstrap)
        return cls(
            store=store,
            ledger=SimulatedLedger(chain=settings.anchor_chain),
            policy=LockoutPolicy(
                max_attempts=settings.otp_max_attempts,
                lock_duration=settings.lock_duration,
            ),
            public_base_url=settings.public_base_url,
        )

    async def start(self) -> None:
        """Load (or bootstrap) persisted state."""
        document = await self.store.load()
        logger.info(
            f"State loaded: {len(document.manufacturers)} manufacturers, "
            f"{len(document.batches)} batches"
        )

    async def close(self) -> None:
        await self.store.close()

    @property
    def document(self) -> StateDocument:
        return self.store.snapshot

    async def _mutate(
        self,
        action: str,
        fn: Callable[[StateDocument], tuple[StateDocument, Any]],
        message: str,
    ) -> OperationResult:
        try:
            value = await self.store.apply(fn)
        except MedVerifyError as e:
            logger.warning(f"{action} failed: {e.message}")
            return OperationResult(success=False, message=e.message, error=e)
        logger.info(f"{action}: {message}")
        return OperationResult(success=True, message=message, value=value)

    # -------------------------------------------------------------------------
    # Manufacturer
    # -------------------------------------------------------------------------

    async def register_batch(
        self,
        manufacturer_name: str,
        product: str,
        kyc: str = "approved",
        batch_no: str | None = None,
        mfg: date | None = None,
        expiry: date | None = None,
        coa: str = "",
    ) -> OperationResult:
        """
        Register a batch and anchor its proof (simulated).

        The manufacturer is reused by exact name or created with ``kyc``.
        Missing optional metadata defaults to: batch number = batch id,
        manufacture date = today, expiry = today + 2 years.

        Returns:
            OperationResult whose value is the new Batch (its ``otp`` is the
            scratch code to print on the sticker)
        """
        now = self.clock()

        def step(document: StateDocument) -> tuple[StateDocument, Batch]:
            if _blank(manufacturer_name) or _blank(product):
                raise InvalidInputError("Please provide manufacturer & product name")
            manufacturer = document.find_manufacturer_by_name(manufacturer_name)
            if manufacturer is None:
                manufacturer = Manufacturer.create(manufacturer_name, kyc, now)
                document = document.with_manufacturer(manufacturer)

            batch_id = new_id("BID")
            today = now.date()
            meta = BatchMeta(
                product=product,
                batch_no=batch_no or batch_id,
                mfg=mfg or today,
                expiry=expiry or years_later(today, 2),
                coa=coa or "",
            )
            batch = Batch(
                id=batch_id,
                manufacturer_id=manufacturer.id,
                meta=meta,
                otp=new_otp(),
                hash=compute_proof(manufacturer, meta),
                anchors=(self.ledger.anchor_batch(now),),
            )
            return document.with_batch(batch), batch

        return await self._mutate(
            "Register batch", step, "Batch created and proof anchored (simulated)",
        )

    # -------------------------------------------------------------------------
    # Distributor / pharmacy
    # -------------------------------------------------------------------------

    async def log_transfer(
        self,
        distributor: str,
        origin: str,
        destination: str,
        batch_id: str,
        bol: str = "",
    ) -> OperationResult:
        """Record a shipment, snapshotting the batch metadata."""
        now = self.clock()

        def step(document: StateDocument) -> tuple[StateDocument, Transfer]:
            if _blank(distributor) or _blank(destination) or _blank(batch_id):
                raise InvalidInputError("Please provide distributor, destination, and batch")
            batch = document.require_batch(batch_id)
            transfer = Transfer(
                id=new_id("T"),
                distributor=distributor,
                origin=origin or "",
                destination=destination,
                batch_id=batch_id,
                bol=bol or "",
                time=now,
                batch_meta=batch.meta,
            )
            return document.with_transfer(transfer), transfer

        return await self._mutate("Log transfer", step, "Transfer logged")

    async def _check_code(
        self,
        rule: Callable[..., rules.Transition],
        flow: str,
        batch_id: str,
        code: str,
    ) -> VerificationOutcome:
        if _blank(batch_id) or _blank(code):
            error = InvalidInputError("Provide batch id and one-time code")
            return VerificationOutcome(
                status=ScanResult.SUSPECT, message=error.message, batch_id=batch_id, error=error,
            )
        now = self.clock()

        def step(document: StateDocument) -> tuple[StateDocument, VerificationOutcome]:
            transition = rule(document, batch_id, code, now, self.policy)
            return transition.document, transition.outcome

        outcome = await self.store.apply(step)
        if outcome.is_authentic:
            logger.info(f"{flow} {batch_id}: AUTHENTIC")
        else:
            logger.warning(f"{flow} {batch_id}: SUSPECT ({outcome.reason})")
        return outcome

    async def pharmacy_receive(self, batch_id: str, code: str) -> VerificationOutcome:
        """Confirm receipt of a batch with its one-time code."""
        return await self._check_code(rules.receive, "Receipt", batch_id, code)

    # -------------------------------------------------------------------------
    # End-user verification
    # -------------------------------------------------------------------------

    async def verify(self, batch_id: str, code: str) -> VerificationOutcome:
        """Verify a batch with its one-time code and proof recomputation."""
        return await self._check_code(rules.verify, "Verify", batch_id, code)

    def ussd_lookup(self, command: str) -> VerificationOutcome:
        """Reduced-assurance existence check from a short code like ``*345*BID_x#``."""
        try:
            return rules.ussd_lookup(self.document, command)
        except InvalidInputError as e:
            return VerificationOutcome(
                status=ScanResult.SUSPECT,
                message=e.message,
                error=e,
                assurance=Assurance.REDUCED,
            )

    def sms_lookup(self, batch_id: str, phone: str) -> VerificationOutcome:
        """Reduced-assurance metadata lookup by batch id and sender number."""
        try:
            return rules.sms_lookup(self.document, batch_id, phone)
        except InvalidInputError as e:
            return VerificationOutcome(
                status=ScanResult.SUSPECT,
                message=e.message,
                batch_id=batch_id,
                error=e,
                assurance=Assurance.REDUCED,
            )

    def verification_link(self, batch_id: str) -> OperationResult:
        """URL a batch QR code points at."""
        if batch_id not in self.document.batches:
            return OperationResult(success=False, message="Batch not found", error=NotFoundError(f"Batch not found: {batch_id}"))
        url = f"{self.public_base_url}?{urlencode({'verify': batch_id})}"
        return OperationResult(success=True, message="Link generated", value=VerificationLink(batch_id, url))

    def qr_png(self, batch_id: str) -> OperationResult:
        """PNG QR code encoding the batch verification link."""
        link = self.verification_link(batch_id)
        if not link.success:
            return link
        qr = qrcode.QRCode(
            version=1,
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=10,
            border=4,
        )
        qr.add_data(link.value.url)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")
        buffer = io.BytesIO()
        img.save(buffer)
        return OperationResult(success=True, message="QR generated", value=buffer.getvalue())

    # -------------------------------------------------------------------------
    # Lab
    # -------------------------------------------------------------------------

    async def upload_lab_report(self, batch_id: str, lab: str, summary: str) -> OperationResult:
        """Attach a hashed, anchored (simulated) lab report to a batch."""
        now = self.clock()

        def step(document: StateDocument) -> tuple[StateDocument, LabReport]:
            if _blank(batch_id) or _blank(lab) or _blank(summary):
                raise InvalidInputError("Complete all fields: batch, lab name and summary")
            document.require_batch(batch_id)
            report = LabReport(
                id=new_id("LR"),
                lab=lab,
                summary=summary,
                time=now,
                hash=compute_lab_report_hash(lab, summary, now),
                anchor=self.ledger.anchor_lab_report(now),
            )
            return document.with_lab_report(batch_id, report), report

        return await self._mutate(
            "Upload lab report", step, "Lab report uploaded and anchored (simulated)",
        )

    # -------------------------------------------------------------------------
    # Admin
    # -------------------------------------------------------------------------

    async def report_incident(self, batch_id: str, reason: str, notes: str = "") -> OperationResult:
        """Create an incident by hand."""
        now = self.clock()

        def step(document: StateDocument) -> tuple[StateDocument, Incident]:
            if _blank(batch_id) or _blank(reason):
                raise InvalidInputError("Provide batch id and reason")
            document.require_batch(batch_id)
            incident = Incident.create(batch_id, reason, now, notes or "")
            return document.with_incident(incident), incident

        return await self._mutate("Report incident", step, "Incident created")

    async def toggle_kyc(self, manufacturer_id: str) -> OperationResult:
        """Flip a manufacturer between approved and pending."""

        def step(document: StateDocument) -> tuple[StateDocument, Manufacturer]:
            document = document.with_kyc_toggled(manufacturer_id)
            return document, document.manufacturers[manufacturer_id]

        return await self._mutate("Toggle KYC", step, "KYC status updated")

    def get_batch(self, batch_id: str) -> Batch | None:
        return self.document.batches.get(batch_id)

    def list_batches(self) -> list[Batch]:
        return list(self.document.batches.values())

    def list_manufacturers(self) -> list[Manufacturer]:
        return list(self.document.manufacturers.values())

    def list_transfers(self) -> list[Transfer]:
        """Newest first."""
        return list(reversed(self.document.transfers))

    def list_incidents(self) -> list[Incident]:
        """Newest first."""
        return list(reversed(self.document.incidents))

    def list_scans(self) -> list[ScanEvent]:
        """Newest first."""
        return list(reversed(self.document.scans))

    def kpis(self) -> Kpis:
        document = self.document
        return Kpis(
            scans=len(document.scans),
            suspect_scans=sum(1 for s in document.scans if s.result is ScanResult.SUSPECT),
            incidents=len(document.incidents),
            batches=len(document.batches),
            manufacturers=len(document.manufacturers),
        )

    def incidents_csv(self) -> str:
        return incidents_csv(self.document)

    def anchors_csv(self) -> str:
        return anchors_csv(self.document)

    # -------------------------------------------------------------------------
    # Backup / restore
    # -------------------------------------------------------------------------

    def export_document(self) -> str:
        """Full state as JSON."""
        return dump_document(self.document)

    async def import_document(self, raw: str | bytes) -> OperationResult:
        """
        Replace the whole state with an exported document.

        The document is validated first; on failure the current state is
        left untouched.
        """
        try:
            document = load_document(raw)
        except MedVerifyError as e:
            logger.error(f"Import failed: {e.message}")
            return OperationResult(success=False, message=f"Import failed: {e.message}", error=e)
        await self.store.replace(document)
        logger.info(f"Imported state: {len(document.batches)} batches")
        return OperationResult(success=True, message="Imported", value=document)

    async def reset_document(self) -> OperationResult:
        """Clear persisted state and bootstrap again."""
        document = await self.store.reset()
        return OperationResult(success=True, message="State reset", value=document)
