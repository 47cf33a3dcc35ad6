"""
Tests for state document serialization, import validation and CSV reports.
"""

import hashlib
import json
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from medverify.domain import verification as rules
from medverify.domain.errors import ImportParseError
from medverify.domain.models import Anchor, Incident, LabReport, ScanEvent, ScanResult, ScanType, Transfer
from medverify.domain.verification import LockoutPolicy
from medverify.infrastructure.codec import anchors_csv, dump_document, incidents_csv, load_document
from medverify.infrastructure.store import DEMO_BATCH_ID, DEMO_MANUFACTURER_ID


NOW = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def busy_document(demo_document):
    """Demo document with one of every record kind."""
    report = LabReport(
        id="LR_abc1234",
        lab="Lab X",
        summary="Assay OK",
        time=NOW,
        hash="a" * 64,
        anchor=Anchor(chain="simulated-testnet", tx="LAB-abc123", time=NOW),
    )
    return (
        demo_document
        .with_lab_report(DEMO_BATCH_ID, report)
        .with_incident(Incident.create(DEMO_BATCH_ID, "otp-bruteforce", NOW))
        .with_scan(ScanEvent(ScanType.RECEIPT, DEMO_BATCH_ID, NOW, ScanResult.AUTHENTIC, actor="pharmacy"))
    )


@pytest.fixture
def transferred_document(demo_document, demo_batch):
    transfer = Transfer(
        id="T_abc1234",
        distributor="ACME Distribution",
        origin="Warehouse A",
        destination="Pharmacy X",
        batch_id=DEMO_BATCH_ID,
        bol="",
        time=NOW,
        batch_meta=demo_batch.meta,
    )
    return demo_document.with_transfer(transfer)


def _raw(document) -> dict:
    return json.loads(dump_document(document))


def test_round_trip(busy_document):
    restored = load_document(dump_document(busy_document))

    assert restored == busy_document
    assert dump_document(restored) == dump_document(busy_document)


def test_load_accepts_bytes(demo_document):
    assert load_document(dump_document(demo_document).encode("utf-8")) == demo_document


def test_timestamps_use_z_suffix(busy_document):
    data = _raw(busy_document)

    assert data["manufacturers"][DEMO_MANUFACTURER_ID]["created"] == "2025-03-01T09:00:00.000Z"
    assert data["scans"][0]["time"] == "2025-03-01T09:00:00.000Z"


def test_loads_legacy_document(busy_document):
    """Exports without counters, anchor times or scan actors still load."""
    data = _raw(busy_document)
    batch = data["batches"][DEMO_BATCH_ID]
    del batch["attempts"]
    del batch["lockUntil"]
    del batch["labReports"][0]["anchor"]["time"]
    del data["scans"][0]["actor"]

    document = load_document(json.dumps(data))

    loaded = document.batches[DEMO_BATCH_ID]
    assert loaded.attempts == 0
    assert loaded.lock_until is None
    assert loaded.lab_reports[0].anchor.time is None
    assert document.scans[0].actor is None
    assert rules.verify(document, DEMO_BATCH_ID, loaded.otp, NOW, LockoutPolicy()).outcome.is_authentic


def test_browser_export_verifies_after_import():
    """A hash stamped by the browser prototype still matches after import."""
    manufacturer = '{"id":"MAN_demo","name":"NovaMed Pharma","kyc":"approved","created":"2025-03-01T09:00:00.000Z"}'
    meta = (
        '{"product":"Demo Amoxicillin 500mg","batchNo":"NM-2025-001","mfg":"2025-03-01",'
        '"expiry":"2027-03-01","coa":"Demo COA"}'
    )
    stamped = hashlib.sha256(f'{{"manufacturer":{manufacturer},"meta":{meta}}}'.encode("utf-8")).hexdigest()
    exported = {
        "manufacturers": {"MAN_demo": json.loads(manufacturer)},
        "batches": {
            "BID_demo": {
                "id": "BID_demo",
                "manufacturerId": "MAN_demo",
                "meta": json.loads(meta),
                "otp": "123456",
                "hash": stamped,
                "anchors": [{"chain": "simulated-testnet", "tx": "SIMDEMO1", "time": "2025-03-01T09:00:00.000Z"}],
                "transfers": [],
                "labReports": [],
            },
        },
        "transfers": [],
        "incidents": [],
        "scans": [],
    }

    document = load_document(json.dumps(exported))
    transition = rules.verify(document, "BID_demo", "123456", NOW, LockoutPolicy())

    assert transition.outcome.is_authentic
    assert transition.document.incidents == ()
    assert document.batches["BID_demo"].hash == stamped


@pytest.mark.parametrize("raw", ["", "not json", "[]", '{"manufacturers": {}}'])
def test_rejects_malformed(raw):
    with pytest.raises(ImportParseError):
        load_document(raw)


def test_rejects_unknown_fields(demo_document):
    data = _raw(demo_document)
    data["batches"][DEMO_BATCH_ID]["surprise"] = True

    with pytest.raises(ImportParseError):
        load_document(json.dumps(data))


def test_rejects_naive_timestamps(demo_document):
    data = _raw(demo_document)
    data["manufacturers"][DEMO_MANUFACTURER_ID]["created"] = "2025-03-01T09:00:00"

    with pytest.raises(ImportParseError):
        load_document(json.dumps(data))


def test_rejects_key_id_mismatch(demo_document):
    data = _raw(demo_document)
    data["batches"]["BID_other"] = data["batches"].pop(DEMO_BATCH_ID)

    with pytest.raises(ImportParseError, match="does not match"):
        load_document(json.dumps(data))


def test_rejects_unknown_manufacturer(demo_document):
    data = _raw(demo_document)
    data["batches"][DEMO_BATCH_ID]["manufacturerId"] = "MAN_ghost"

    with pytest.raises(ImportParseError, match="unknown manufacturer"):
        load_document(json.dumps(data))


@pytest.mark.parametrize("section", ["incidents", "scans"])
def test_rejects_records_for_unknown_batch(busy_document, section):
    data = _raw(busy_document)
    data[section][0]["batchId"] = "BID_ghost"

    with pytest.raises(ImportParseError, match="unknown batch"):
        load_document(json.dumps(data))


def test_rejects_transfers_for_unknown_batch(transferred_document):
    data = _raw(transferred_document)
    data["transfers"][0]["batchId"] = "BID_ghost"

    with pytest.raises(ImportParseError, match="unknown batch"):
        load_document(json.dumps(data))


def test_rejects_batch_transfer_for_other_batch(transferred_document):
    data = _raw(transferred_document)
    data["batches"][DEMO_BATCH_ID]["transfers"][0]["batchId"] = "BID_other"

    with pytest.raises(ImportParseError, match="references batch"):
        load_document(json.dumps(data))


@pytest.mark.parametrize("otp", ["12345", "abcdef"])
def test_rejects_bad_otp(demo_document, otp):
    data = _raw(demo_document)
    data["batches"][DEMO_BATCH_ID]["otp"] = otp

    with pytest.raises(ImportParseError, match="6 digits"):
        load_document(json.dumps(data))


def test_rejects_negative_attempts(demo_document):
    data = _raw(demo_document)
    data["batches"][DEMO_BATCH_ID]["attempts"] = -1

    with pytest.raises(ImportParseError):
        load_document(json.dumps(data))


def test_rejects_unknown_kyc(demo_document):
    data = _raw(demo_document)
    data["manufacturers"][DEMO_MANUFACTURER_ID]["kyc"] = "rejected"

    with pytest.raises(ImportParseError):
        load_document(json.dumps(data))


# =============================================================================
# CSV
# =============================================================================

def test_incidents_csv_empty(demo_document):
    assert incidents_csv(demo_document) == '"id","batchId","reason","time","notes"'


def test_incidents_csv_quoting(demo_document):
    incident = Incident(
        id="INC_abc1234",
        batch_id=DEMO_BATCH_ID,
        reason="manual",
        notes='seal "broken"\nbox wet',
        time=NOW,
    )

    lines = incidents_csv(demo_document.with_incident(incident)).split("\n")

    assert len(lines) == 2
    assert lines[1] == (
        '"INC_abc1234","BID_demo","manual","2025-03-01T09:00:00.000Z","seal ""broken"" box wet"'
    )


def test_anchors_csv(demo_document, demo_batch):
    lines = anchors_csv(demo_document).split("\n")

    assert lines[0] == '"batchId","batchNo","hash","chain","tx","time"'
    assert lines[1] == (
        f'"BID_demo","NM-2025-001","{demo_batch.hash}","simulated-testnet","SIMDEMO1",'
        '"2025-03-01T09:00:00.000Z"'
    )


def test_anchors_csv_without_time(demo_document, demo_batch):
    untimed = replace(demo_batch, anchors=(Anchor(chain="simulated-testnet", tx="SIMOLD"),))

    lines = anchors_csv(demo_document.with_batch(untimed)).split("\n")

    assert lines[1].endswith('"SIMOLD",""')
