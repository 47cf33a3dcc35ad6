"""
Services package - Business logic coordinating the domain and the store.

Includes the verification service and the simulated ledger.
"""

from .anchoring import SimulatedLedger
from .verification import Kpis, OperationResult, VerificationLink, VerificationService

__all__ = ["Kpis", "OperationResult", "SimulatedLedger", "VerificationLink", "VerificationService"]
