from abc import ABC, abstractmethod
from typing import Any, Dict

from ..core.execution.models import (
    LedgerAccount,
    SimulationResult,
    SubmissionReceipt,
    TransactionOutcome,
)


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: int = 10

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass


class LedgerRpc(Provider):
    """Ledger RPC surface consumed by the transaction pipeline"""

    @abstractmethod
    async def get_account(self, address: str) -> LedgerAccount:
        """Resolve an account's current sequence number"""
        pass

    @abstractmethod
    async def simulate(self, envelope_xdr: str) -> SimulationResult:
        """Dry-run an envelope against current state"""
        pass

    @abstractmethod
    async def send(self, envelope_xdr: str) -> SubmissionReceipt:
        """Submit a signed envelope; returns before the outcome is known"""
        pass

    @abstractmethod
    async def get_transaction(self, tx_hash: str) -> TransactionOutcome:
        """Look up a submitted transaction by hash"""
        pass
