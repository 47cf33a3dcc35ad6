"""
Record store: the single owner of the current state snapshot.

Every mutation follows one cycle under a lock:
    next, result = fn(current)  ->  persist(next)  ->  current = next
so readers only ever observe complete documents, and a failed write
leaves the previous snapshot in place.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, TypeVar

from medverify.domain.errors import ImportParseError
from medverify.domain.hashing import compute_proof
from medverify.domain.models import (
    Anchor,
    Batch,
    BatchMeta,
    KycStatus,
    Manufacturer,
    StateDocument,
    new_otp,
    utc_now,
    years_later,
)
from medverify.infrastructure.codec import dump_document, load_document
from medverify.infrastructure.storage import DocumentBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEMO_MANUFACTURER_ID = "MAN_demo"
DEMO_BATCH_ID = "BID_demo"


def build_demo_document(now: datetime, chain: str = "simulated-testnet") -> StateDocument:
    """
    Seed document with one approved manufacturer and one anchored batch.

    Args:
        now: Creation time for every seeded record
        chain: Chain label for the seeded anchor
    """
    manufacturer = Manufacturer(
        id=DEMO_MANUFACTURER_ID,
        name="NovaMed Pharma",
        kyc=KycStatus.APPROVED,
        created=now,
    )
    today = now.date()
    meta = BatchMeta(
        product="Demo Amoxicillin 500mg",
        batch_no="NM-2025-001",
        mfg=today,
        expiry=years_later(today, 2),
        coa="Demo COA",
    )
    batch = Batch(
        id=DEMO_BATCH_ID,
        manufacturer_id=manufacturer.id,
        meta=meta,
        otp=new_otp(),
        hash=compute_proof(manufacturer, meta),
        anchors=(Anchor(chain=chain, tx="SIMDEMO1", time=now),),
    )
    return StateDocument().with_manufacturer(manufacturer).with_batch(batch)


class RecordStore:
    """
    Owns the state document and its persistence.

    Example:
        store = RecordStore(MemoryBackend(), "medverify_state_vr1")
        await store.load()
        result = await store.apply(lambda doc: (doc.with_scan(scan), scan))
    """

    def __init__(
        self,
        backend: DocumentBackend,
        key: str,
        bootstrap: Callable[[], StateDocument] | None = None,
    ) -> None:
        """
        Args:
            backend: Where the serialized document is kept
            key: Storage key of the document
            bootstrap: Builds the initial document when nothing is stored.
                An empty document is used if None.
        """
        self.backend = backend
        self.key = key
        self._bootstrap = bootstrap or StateDocument
        self._document: StateDocument | None = None
        self._lock = asyncio.Lock()

    @property
    def snapshot(self) -> StateDocument:
        """Current complete document."""
        if self._document is None:
            raise RuntimeError("RecordStore.load() has not been called")
        return self._document

    async def load(self) -> StateDocument:
        """
        Load the persisted document, bootstrapping when absent.

        A stored document that fails validation is logged and replaced by
        the bootstrap document.
        """
        async with self._lock:
            raw = await self.backend.read(self.key)
            document = None
            if raw is not None:
                try:
                    document = load_document(raw)
                except ImportParseError as e:
                    logger.error(f"Stored state under {self.key!r} is unreadable, re-bootstrapping: {e.message}")
            if document is None:
                document = self._bootstrap()
                await self.backend.write(self.key, dump_document(document))
                logger.info(f"Bootstrapped state under {self.key!r}")
            self._document = document
            return document

    async def apply(self, fn: Callable[[StateDocument], tuple[StateDocument, T]]) -> T:
        """
        Run one read-modify-persist cycle.

        Args:
            fn: Takes the current snapshot, returns (next snapshot, result).
                Exceptions from ``fn`` abort the cycle with nothing persisted.

        Returns:
            The result produced by ``fn``
        """
        async with self._lock:
            current = self.snapshot
            document, result = fn(current)
            if document is not current:
                await self.backend.write(self.key, dump_document(document))
                self._document = document
            return result

    async def replace(self, document: StateDocument) -> None:
        """Persist ``document`` as the whole new state."""
        async with self._lock:
            await self.backend.write(self.key, dump_document(document))
            self._document = document

    async def reset(self) -> StateDocument:
        """Delete persisted state and bootstrap again."""
        async with self._lock:
            await self.backend.delete(self.key)
            self._document = None
        logger.info(f"State under {self.key!r} cleared")
        return await self.load()

    async def close(self) -> None:
        await self.backend.close()


def demo_bootstrap(chain: str, clock: Callable[[], datetime] = utc_now) -> Callable[[], StateDocument]:
    """Bootstrap factory for RecordStore that seeds the demo records."""
    return lambda: build_demo_document(clock(), chain)
