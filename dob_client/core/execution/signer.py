"""
Envelope signing.

The lifecycle manager hands an assembled envelope to a ``Signer`` and waits
for it without a timeout: an interactive wallet may take as long as the user
needs. ``KeypairSigner`` signs locally for headless use.
"""

from typing import Protocol

from stellar_sdk import Keypair, TransactionBuilder

from .errors import SignRejected


class Signer(Protocol):
    async def sign(self, envelope_xdr: str, network_passphrase: str, account_address: str) -> str:
        """Return the signed envelope XDR or raise ``SignRejected``."""
        ...


class KeypairSigner:
    """Signs with a local secret key."""

    def __init__(self, secret: str):
        try:
            self._keypair = Keypair.from_secret(secret)
        except Exception as e:  # noqa: BLE001
            raise SignRejected(f"Invalid signing secret: {e}")

    @property
    def public_key(self) -> str:
        return self._keypair.public_key

    async def sign(self, envelope_xdr: str, network_passphrase: str, account_address: str) -> str:
        if account_address != self._keypair.public_key:
            raise SignRejected(
                f"Signer holds {self._keypair.public_key}, cannot sign for {account_address}"
            )
        try:
            envelope = TransactionBuilder.from_xdr(envelope_xdr, network_passphrase)
            envelope.sign(self._keypair)
        except Exception as e:  # noqa: BLE001
            raise SignRejected(f"Signing failed: {e}")
        return envelope.to_xdr()
