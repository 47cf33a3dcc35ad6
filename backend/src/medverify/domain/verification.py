"""
One-time-code verification and lockout rules.

This module contains pure functions that decide whether a batch is
authentic. No side effects, no I/O - each operation takes the current
state snapshot and returns a Transition holding the next snapshot plus
the outcome. Persisting the next snapshot is the caller's job.

Per-batch states:
- UNLOCKED: codes are checked normally
- LOCKED(until): every code is refused until the clock passes ``until``

Design Decisions:
- Lock expiry is evaluated lazily against the caller's clock, never by a timer
- The wrong-code counter is never reset, not on success nor after expiry
- Reduced-assurance lookups (USSD/SMS) never check the code and never change state
"""

import re
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum

from .errors import (
    InvalidCodeError,
    InvalidInputError,
    LockedError,
    MedVerifyError,
    NotFoundError,
    ProofMismatchError,
)
from .hashing import verify_proof
from .models import (
    REASON_OTP_BRUTEFORCE,
    REASON_PROOF_MISMATCH,
    Batch,
    Incident,
    ScanEvent,
    ScanResult,
    ScanType,
    StateDocument,
)


# *<service code>*<batch id>#, e.g. *345*BID_abc1234#
USSD_PATTERN = re.compile(r"\*\d+\*(BID_[a-z0-9]+)#", re.IGNORECASE)

RECEIPT_ACTOR = "pharmacy"


class Assurance(Enum):
    """How much a verdict can be trusted."""
    FULL = "full"  # one-time code checked
    REDUCED = "reduced"  # existence/metadata lookup only


@dataclass(frozen=True)
class LockoutPolicy:
    """Wrong-code threshold and lock window."""
    max_attempts: int = 5
    lock_duration: timedelta = timedelta(minutes=15)


@dataclass(frozen=True)
class VerificationOutcome:
    """
    Verdict returned to the caller.

    ``error`` carries the failure kind for SUSPECT verdicts; its ``code``
    doubles as the machine-readable reason.
    """
    status: ScanResult
    message: str
    batch_id: str | None = None
    error: MedVerifyError | None = None
    assurance: Assurance = Assurance.FULL

    @property
    def reason(self) -> str | None:
        return self.error.code if self.error else None

    @property
    def is_authentic(self) -> bool:
        return self.status is ScanResult.AUTHENTIC


@dataclass(frozen=True)
class Transition:
    """Next state snapshot plus the outcome that produced it."""
    document: StateDocument
    outcome: VerificationOutcome


def _suspect(
    error: MedVerifyError,
    batch_id: str | None,
    assurance: Assurance = Assurance.FULL,
) -> VerificationOutcome:
    return VerificationOutcome(
        status=ScanResult.SUSPECT,
        message=error.message,
        batch_id=batch_id,
        error=error,
        assurance=assurance,
    )


def _not_found(batch_id: str) -> VerificationOutcome:
    return _suspect(NotFoundError("Batch not found"), batch_id)


def _locked(batch_id: str) -> VerificationOutcome:
    return _suspect(
        LockedError("Batch temporarily locked due to failed one-time code attempts. Try later."),
        batch_id,
    )


def register_wrong_code(
    document: StateDocument,
    batch: Batch,
    now: datetime,
    policy: LockoutPolicy,
) -> tuple[StateDocument, bool]:
    """
    Count a wrong code against an unlocked batch.

    When the counter reaches the threshold the batch is locked until
    ``now + policy.lock_duration`` and one otp-bruteforce incident is added.

    Returns:
        (next document, whether this attempt locked the batch)
    """
    attempts = batch.attempts + 1
    locked = attempts >= policy.max_attempts
    updated = replace(
        batch,
        attempts=attempts,
        lock_until=now + policy.lock_duration if locked else batch.lock_until,
    )
    document = document.with_batch(updated)
    if locked:
        document = document.with_incident(
            Incident.create(batch.id, REASON_OTP_BRUTEFORCE, now)
        )
    return document, locked


def _invalid_code(batch_id: str, locked: bool) -> VerificationOutcome:
    message = "Invalid one-time code"
    if locked:
        message += ". Too many failed attempts; batch temporarily locked and incident created"
    return _suspect(InvalidCodeError(message), batch_id)


def verify(
    document: StateDocument,
    batch_id: str,
    code: str,
    now: datetime,
    policy: LockoutPolicy,
) -> Transition:
    """
    Verify a batch with its one-time code (QR + scratch code flow).

    Steps:
    1. Unknown batch -> SUSPECT, no change
    2. Locked -> SUSPECT, no change, no incident
    3. Correct code -> recompute proof; AUTHENTIC on match, otherwise
       SUSPECT with a proof-mismatch incident
    4. Wrong code -> count the attempt (may lock); SUSPECT

    Steps 3 and 4 always record a verify scan event.
    """
    batch = document.batches.get(batch_id)
    if batch is None:
        return Transition(document, _not_found(batch_id))
    if batch.is_locked(now):
        return Transition(document, _locked(batch_id))

    if code == batch.otp:
        manufacturer = document.manufacturers.get(batch.manufacturer_id)
        if manufacturer is not None and verify_proof(manufacturer, batch.meta, batch.hash):
            document = document.with_scan(
                ScanEvent(ScanType.VERIFY, batch_id, now, ScanResult.AUTHENTIC)
            )
            return Transition(document, VerificationOutcome(
                status=ScanResult.AUTHENTIC,
                message=(
                    f"Manufacturer: {manufacturer.name}, "
                    f"expiry: {batch.meta.expiry.isoformat()}"
                ),
                batch_id=batch_id,
            ))

        document = document.with_scan(
            ScanEvent(ScanType.VERIFY, batch_id, now, ScanResult.SUSPECT)
        )
        document = document.with_incident(
            Incident.create(batch_id, REASON_PROOF_MISMATCH, now)
        )
        return Transition(document, _suspect(
            ProofMismatchError("Proof mismatch (possible tampering)"),
            batch_id,
        ))

    document, locked = register_wrong_code(document, batch, now, policy)
    document = document.with_scan(
        ScanEvent(ScanType.VERIFY, batch_id, now, ScanResult.SUSPECT)
    )
    return Transition(document, _invalid_code(batch_id, locked))


def receive(
    document: StateDocument,
    batch_id: str,
    code: str,
    now: datetime,
    policy: LockoutPolicy,
) -> Transition:
    """
    Pharmacy receipt confirmation.

    Same not-found, lock and attempt rules as ``verify`` but without the
    proof check. Only a correct code records a (receipt) scan event.
    """
    batch = document.batches.get(batch_id)
    if batch is None:
        return Transition(document, _not_found(batch_id))
    if batch.is_locked(now):
        return Transition(document, _locked(batch_id))

    if code == batch.otp:
        document = document.with_scan(ScanEvent(
            ScanType.RECEIPT, batch_id, now, ScanResult.AUTHENTIC, actor=RECEIPT_ACTOR,
        ))
        return Transition(document, VerificationOutcome(
            status=ScanResult.AUTHENTIC,
            message="Receipt confirmed",
            batch_id=batch_id,
        ))

    document, locked = register_wrong_code(document, batch, now, policy)
    return Transition(document, _invalid_code(batch_id, locked))


def ussd_lookup(document: StateDocument, command: str) -> VerificationOutcome:
    """
    Feature-phone short-code lookup, e.g. ``*345*BID_abc1234#``.

    Reports existence only; the one-time code is not checked.

    Raises:
        InvalidInputError: If the command does not match the short-code format
    """
    match = USSD_PATTERN.search(command or "")
    if match is None:
        raise InvalidInputError("Bad format, use *345*BID_xxx#")
    batch_id = match.group(1)
    if batch_id not in document.batches:
        return _suspect(NotFoundError("Batch not found (USSD)"), batch_id, Assurance.REDUCED)
    return VerificationOutcome(
        status=ScanResult.AUTHENTIC,
        message="Batch found (limited info via USSD)",
        batch_id=batch_id,
        assurance=Assurance.REDUCED,
    )


def sms_lookup(document: StateDocument, batch_id: str, phone: str) -> VerificationOutcome:
    """
    SMS lookup by batch id from a sender number.

    Returns batch metadata without checking the one-time code.

    Raises:
        InvalidInputError: If batch id or phone number is missing
    """
    if not (batch_id or "").strip():
        raise InvalidInputError("batch id is required")
    if not (phone or "").strip():
        raise InvalidInputError("phone number is required")
    batch = document.batches.get(batch_id)
    if batch is None:
        return _suspect(NotFoundError("Batch not found (SMS)"), batch_id, Assurance.REDUCED)
    meta = batch.meta
    return VerificationOutcome(
        status=ScanResult.AUTHENTIC,
        message=f"SMS: Batch {meta.batch_no}, {meta.product}, exp {meta.expiry.isoformat()}",
        batch_id=batch_id,
        assurance=Assurance.REDUCED,
    )
