"""
Content hashing for batch tamper evidence.

A batch is stamped at registration with a SHA-256 digest over the
manufacturer record and the batch metadata. Verification recomputes the
digest from the current records and compares:
1. Same logical content always yields the same digest
2. Any edited field yields a different digest
3. No keys or signatures are involved; this is a fingerprint, not a proof of origin

Design Decisions:
- Compact JSON in the fixed field order of the persisted records
  (manufacturer: id, name, kyc, created; meta: product, batchNo, mfg,
  expiry, coa), byte-identical to the browser exports that created the
  hashes already present in stored documents
- Keys are never sorted; record order is part of the digest input
- Plain lowercase hex
"""

import hashlib
import json
from datetime import datetime
from typing import Any

from .models import BatchMeta, Manufacturer, format_timestamp


def canonical_json(payload: Any) -> bytes:
    """
    Serialize a JSON-compatible value deterministically.

    Args:
        payload: dicts/lists/strings/numbers

    Returns:
        UTF-8 bytes, keys in insertion order, no insignificant whitespace
    """
    return json.dumps(
        payload,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


def sha256_hex(payload: Any) -> str:
    """SHA-256 of the canonical JSON form of ``payload``."""
    return hashlib.sha256(canonical_json(payload)).hexdigest()


def compute_proof(manufacturer: Manufacturer, meta: BatchMeta) -> str:
    """
    Compute the batch proof over manufacturer and metadata.

    Args:
        manufacturer: The owning manufacturer record, KYC status included
        meta: Batch metadata as registered

    Returns:
        Hex-encoded SHA-256 digest

    Example:
        >>> compute_proof(manufacturer, meta)
        '3f1a9c...'
    """
    return sha256_hex({
        "manufacturer": manufacturer.to_dict(),
        "meta": meta.to_dict(),
    })


def verify_proof(manufacturer: Manufacturer, meta: BatchMeta, expected_hash: str) -> bool:
    """
    Check that the current records still hash to ``expected_hash``.

    Returns:
        True if the recomputed digest matches, False otherwise
    """
    actual = compute_proof(manufacturer, meta)
    return actual == expected_hash


def compute_lab_report_hash(lab: str, summary: str, time: datetime) -> str:
    """Digest over a lab report's name, summary and upload time, in that order."""
    return sha256_hex({
        "lab": lab,
        "summary": summary,
        "time": format_timestamp(time),
    })
