"""
Balance Resolver

Reads token balances and normalizes the "account cannot hold this asset
yet" cases to zero. Classification uses the structured error decoded from
diagnostic events, never the error text.
"""

import logging

from . import intents
from .execution.errors import FailureCategory, SimulationFailure, TrustlineMissing
from .execution.models import ContractRef


logger = logging.getLogger(__name__)

ZERO_BALANCE_CATEGORIES = {FailureCategory.TRUSTLINE_MISSING, FailureCategory.MISSING_VALUE}


class BalanceResolver:
    def __init__(self, manager, pool: ContractRef):
        self.manager = manager
        self.pool = pool

    async def _read_balance(self, asset: ContractRef, account: str) -> int:
        try:
            return int(await self.manager.read(intents.balance(asset, account)))
        except SimulationFailure as e:
            if e.category == FailureCategory.TRUSTLINE_MISSING:
                raise TrustlineMissing(f"{account} has no trustline for {asset.address}") from e
            raise

    async def get_balance(self, asset: ContractRef, account: str) -> int:
        """
        Balance of ``account`` in base units.

        A missing trustline or an unset balance entry reads as 0; any other
        failure propagates.
        """
        try:
            return await self._read_balance(asset, account)
        except TrustlineMissing:
            logger.debug(f"No trustline for {account} on {asset.kind.value}; balance is 0")
            return 0
        except SimulationFailure as e:
            if e.category in ZERO_BALANCE_CATEGORIES:
                return 0
            raise

    async def has_trustline(self, asset: ContractRef, account: str) -> bool:
        """False only when the asset reports a missing trustline."""
        try:
            await self._read_balance(asset, account)
        except TrustlineMissing:
            return False
        except SimulationFailure as e:
            # Unset balance entry: the account can hold the asset
            if e.category == FailureCategory.MISSING_VALUE:
                return True
            raise
        return True

    async def get_lp_shares(self, provider: str) -> int:
        try:
            return int(await self.manager.read(intents.lp_shares(self.pool, provider)))
        except SimulationFailure as e:
            if e.category == FailureCategory.MISSING_VALUE:
                return 0
            raise
