"""
Simulated ledger anchoring.

Produces anchor records that look like ledger references without touching
any network. Batches and lab reports carry these so the rest of the system
can treat "anchored" as a plain append-only list.
"""

import logging
import secrets
from datetime import datetime

from medverify.domain.models import ID_ALPHABET, Anchor

logger = logging.getLogger(__name__)


class SimulatedLedger:
    """
    Issues simulated transaction ids.

    Example:
        ledger = SimulatedLedger(chain="simulated-testnet")
        anchor = ledger.anchor_batch(now)  # Anchor(chain=..., tx="SIM-k2x9a0b", ...)
    """

    BATCH_TX_PREFIX = "SIM-"
    LAB_TX_PREFIX = "LAB-"

    def __init__(self, chain: str = "simulated-testnet") -> None:
        self.chain = chain

    def _tx(self, prefix: str, length: int) -> str:
        return prefix + "".join(secrets.choice(ID_ALPHABET) for _ in range(length))

    def anchor_batch(self, now: datetime) -> Anchor:
        """Anchor record for a newly registered batch."""
        anchor = Anchor(chain=self.chain, tx=self._tx(self.BATCH_TX_PREFIX, 7), time=now)
        logger.debug(f"Batch anchored (simulated): {anchor.tx}")
        return anchor

    def anchor_lab_report(self, now: datetime) -> Anchor:
        """Anchor record for an uploaded lab report."""
        anchor = Anchor(chain=self.chain, tx=self._tx(self.LAB_TX_PREFIX, 6), time=now)
        logger.debug(f"Lab report anchored (simulated): {anchor.tx}")
        return anchor
