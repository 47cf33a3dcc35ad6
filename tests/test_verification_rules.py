"""
Tests for the one-time-code verification and lockout rules.

These exercise the pure state transitions directly, without a store.
"""

from dataclasses import replace
from datetime import date, timedelta

import pytest

from medverify.domain import verification as rules
from medverify.domain.errors import InvalidInputError
from medverify.domain.models import (
    REASON_OTP_BRUTEFORCE,
    REASON_PROOF_MISMATCH,
    ScanResult,
    ScanType,
)
from medverify.domain.verification import Assurance, LockoutPolicy
from medverify.infrastructure.store import DEMO_BATCH_ID


POLICY = LockoutPolicy()


def _wrong(otp: str) -> str:
    return "000000" if otp != "000000" else "111111"


def _fail_times(document, clock, count):
    batch = document.batches[DEMO_BATCH_ID]
    for _ in range(count):
        document = rules.verify(document, DEMO_BATCH_ID, _wrong(batch.otp), clock(), POLICY).document
    return document


# =============================================================================
# verify
# =============================================================================

def test_verify_correct_code_is_authentic(demo_document, demo_batch, clock):
    transition = rules.verify(demo_document, DEMO_BATCH_ID, demo_batch.otp, clock(), POLICY)

    outcome = transition.outcome
    assert outcome.is_authentic
    assert outcome.reason is None
    assert outcome.assurance is Assurance.FULL
    assert outcome.message == f"Manufacturer: NovaMed Pharma, expiry: {demo_batch.meta.expiry.isoformat()}"

    scans = transition.document.scans
    assert len(scans) == 1
    assert scans[0].type is ScanType.VERIFY
    assert scans[0].result is ScanResult.AUTHENTIC
    assert transition.document.incidents == ()


def test_verify_unknown_batch(demo_document, clock):
    transition = rules.verify(demo_document, "BID_missing", "123456", clock(), POLICY)

    assert transition.outcome.status is ScanResult.SUSPECT
    assert transition.outcome.reason == "not-found"
    assert transition.document is demo_document


@pytest.mark.parametrize("field, value", [
    ("product", "Counterfeit Amoxicillin"),
    ("expiry", date(2030, 1, 1)),
    ("coa", "forged"),
])
def test_verify_detects_tampered_metadata(demo_document, demo_batch, clock, field, value):
    """Changing stored metadata after registration breaks the proof."""
    tampered = replace(demo_batch, meta=replace(demo_batch.meta, **{field: value}))
    document = demo_document.with_batch(tampered)

    transition = rules.verify(document, DEMO_BATCH_ID, demo_batch.otp, clock(), POLICY)

    assert transition.outcome.status is ScanResult.SUSPECT
    assert transition.outcome.reason == "proof-mismatch"
    assert [i.reason for i in transition.document.incidents] == [REASON_PROOF_MISMATCH]
    assert transition.document.scans[-1].result is ScanResult.SUSPECT


def test_verify_detects_tampered_hash(demo_document, demo_batch, clock):
    document = demo_document.with_batch(replace(demo_batch, hash="f" * 64))

    transition = rules.verify(document, DEMO_BATCH_ID, demo_batch.otp, clock(), POLICY)

    assert transition.outcome.reason == "proof-mismatch"
    assert len(transition.document.incidents) == 1


def test_proof_mismatch_does_not_count_as_wrong_code(demo_document, demo_batch, clock):
    document = demo_document.with_batch(replace(demo_batch, hash="f" * 64))

    transition = rules.verify(document, DEMO_BATCH_ID, demo_batch.otp, clock(), POLICY)

    assert transition.document.batches[DEMO_BATCH_ID].attempts == 0


@pytest.mark.parametrize("count", [1, 2, 3, 4])
def test_wrong_codes_below_threshold(demo_document, clock, count):
    document = _fail_times(demo_document, clock, count)

    batch = document.batches[DEMO_BATCH_ID]
    assert batch.attempts == count
    assert batch.lock_until is None
    assert document.incidents == ()
    assert len(document.scans) == count
    assert all(s.result is ScanResult.SUSPECT for s in document.scans)


def test_fifth_wrong_code_locks_batch(demo_document, demo_batch, clock):
    document = _fail_times(demo_document, clock, 4)

    transition = rules.verify(document, DEMO_BATCH_ID, _wrong(demo_batch.otp), clock(), POLICY)

    batch = transition.document.batches[DEMO_BATCH_ID]
    assert transition.outcome.reason == "invalid-code"
    assert "locked" in transition.outcome.message
    assert batch.attempts == 5
    assert batch.lock_until == clock() + timedelta(minutes=15)
    assert [i.reason for i in transition.document.incidents] == [REASON_OTP_BRUTEFORCE]


def test_locked_batch_refuses_even_correct_code(demo_document, demo_batch, clock):
    document = _fail_times(demo_document, clock, 5)
    clock.advance(minutes=5)

    transition = rules.verify(document, DEMO_BATCH_ID, demo_batch.otp, clock(), POLICY)

    assert transition.outcome.reason == "locked"
    assert transition.document is document


def test_locked_batch_ignores_further_wrong_codes(demo_document, demo_batch, clock):
    document = _fail_times(demo_document, clock, 5)

    transition = rules.verify(document, DEMO_BATCH_ID, _wrong(demo_batch.otp), clock(), POLICY)

    assert transition.outcome.reason == "locked"
    assert transition.document.batches[DEMO_BATCH_ID].attempts == 5
    assert len(transition.document.incidents) == 1


def test_lock_ends_exactly_at_lock_until(demo_document, demo_batch, clock):
    document = _fail_times(demo_document, clock, 5)

    clock.advance(minutes=15)
    transition = rules.verify(document, DEMO_BATCH_ID, demo_batch.otp, clock(), POLICY)

    assert transition.outcome.is_authentic


def test_lock_still_active_just_before_expiry(demo_document, demo_batch, clock):
    document = _fail_times(demo_document, clock, 5)

    clock.advance(minutes=15, milliseconds=-1)
    transition = rules.verify(document, DEMO_BATCH_ID, demo_batch.otp, clock(), POLICY)

    assert transition.outcome.reason == "locked"


@pytest.mark.pending_clarification
def test_attempts_not_reset_after_lock_expiry(demo_document, demo_batch, clock):
    document = _fail_times(demo_document, clock, 5)
    clock.advance(minutes=16)

    transition = rules.verify(document, DEMO_BATCH_ID, demo_batch.otp, clock(), POLICY)

    assert transition.outcome.is_authentic
    assert transition.document.batches[DEMO_BATCH_ID].attempts == 5


@pytest.mark.pending_clarification
def test_one_wrong_code_after_expiry_relocks(demo_document, demo_batch, clock):
    document = _fail_times(demo_document, clock, 5)
    clock.advance(minutes=16)

    transition = rules.verify(document, DEMO_BATCH_ID, _wrong(demo_batch.otp), clock(), POLICY)

    batch = transition.document.batches[DEMO_BATCH_ID]
    assert batch.attempts == 6
    assert batch.is_locked(clock())
    assert [i.reason for i in transition.document.incidents] == [REASON_OTP_BRUTEFORCE] * 2


def test_custom_policy(demo_document, demo_batch, clock):
    policy = LockoutPolicy(max_attempts=2, lock_duration=timedelta(minutes=1))
    document = demo_document
    for _ in range(2):
        document = rules.verify(document, DEMO_BATCH_ID, _wrong(demo_batch.otp), clock(), policy).document

    assert document.batches[DEMO_BATCH_ID].lock_until == clock() + timedelta(minutes=1)


# =============================================================================
# receive
# =============================================================================

def test_receive_correct_code(demo_document, demo_batch, clock):
    transition = rules.receive(demo_document, DEMO_BATCH_ID, demo_batch.otp, clock(), POLICY)

    assert transition.outcome.is_authentic
    scan = transition.document.scans[-1]
    assert scan.type is ScanType.RECEIPT
    assert scan.actor == "pharmacy"
    assert scan.result is ScanResult.AUTHENTIC


def test_receive_skips_proof_check(demo_document, demo_batch, clock):
    document = demo_document.with_batch(replace(demo_batch, hash="f" * 64))

    transition = rules.receive(document, DEMO_BATCH_ID, demo_batch.otp, clock(), POLICY)

    assert transition.outcome.is_authentic
    assert transition.document.incidents == ()


def test_receive_wrong_code_counts_without_scan(demo_document, demo_batch, clock):
    transition = rules.receive(demo_document, DEMO_BATCH_ID, _wrong(demo_batch.otp), clock(), POLICY)

    assert transition.outcome.reason == "invalid-code"
    assert transition.document.batches[DEMO_BATCH_ID].attempts == 1
    assert transition.document.scans == ()


def test_receive_and_verify_share_the_counter(demo_document, demo_batch, clock):
    document = demo_document
    for _ in range(3):
        document = rules.receive(document, DEMO_BATCH_ID, _wrong(demo_batch.otp), clock(), POLICY).document
    document = _fail_times(document, clock, 2)

    assert document.batches[DEMO_BATCH_ID].is_locked(clock())
    assert rules.receive(document, DEMO_BATCH_ID, demo_batch.otp, clock(), POLICY).outcome.reason == "locked"


def test_receive_unknown_batch(demo_document, clock):
    transition = rules.receive(demo_document, "BID_missing", "123456", clock(), POLICY)

    assert transition.outcome.reason == "not-found"
    assert transition.document is demo_document


# =============================================================================
# Reduced-assurance lookups
# =============================================================================

@pytest.mark.parametrize("command", ["*345*BID_demo#", "dial *123*BID_demo# now"])
def test_ussd_lookup_found(demo_document, command):
    outcome = rules.ussd_lookup(demo_document, command)

    assert outcome.is_authentic
    assert outcome.assurance is Assurance.REDUCED


def test_ussd_lookup_not_found(demo_document):
    outcome = rules.ussd_lookup(demo_document, "*345*BID_nothere#")

    assert outcome.reason == "not-found"
    assert outcome.batch_id == "BID_nothere"
    assert outcome.assurance is Assurance.REDUCED


@pytest.mark.parametrize("command", ["", "BID_demo", "*345*XYZ_demo#", "*abc*BID_demo#"])
def test_ussd_lookup_bad_format(demo_document, command):
    with pytest.raises(InvalidInputError):
        rules.ussd_lookup(demo_document, command)


def test_sms_lookup_found(demo_document, demo_batch):
    outcome = rules.sms_lookup(demo_document, DEMO_BATCH_ID, "+254700000000")

    assert outcome.is_authentic
    assert outcome.assurance is Assurance.REDUCED
    assert outcome.message == (
        f"SMS: Batch NM-2025-001, Demo Amoxicillin 500mg, exp {demo_batch.meta.expiry.isoformat()}"
    )


def test_sms_lookup_not_found(demo_document):
    outcome = rules.sms_lookup(demo_document, "BID_missing", "+254700000000")

    assert outcome.reason == "not-found"


@pytest.mark.parametrize("batch_id, phone", [("", "+254700000000"), (DEMO_BATCH_ID, " ")])
def test_sms_lookup_requires_fields(demo_document, batch_id, phone):
    with pytest.raises(InvalidInputError):
        rules.sms_lookup(demo_document, batch_id, phone)


def test_lookups_never_change_state(demo_document):
    rules.ussd_lookup(demo_document, "*345*BID_demo#")
    rules.sms_lookup(demo_document, DEMO_BATCH_ID, "+254700000000")

    assert demo_document.scans == ()
    assert demo_document.batches[DEMO_BATCH_ID].attempts == 0
