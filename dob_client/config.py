from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Literal, Optional, Tuple

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from stellar_sdk import Network

from .core.execution.errors import ContractKind
from .core.execution.models import ConfirmationPolicy, ContractRef


BASE_DIR = Path(__file__).resolve().parents[1]


@dataclass(frozen=True)
class NetworkPreset:
    rpc_url: str
    network_passphrase: str


NETWORKS: Dict[str, NetworkPreset] = {
    "testnet": NetworkPreset(
        rpc_url="https://soroban-testnet.stellar.org",
        network_passphrase=Network.TESTNET_NETWORK_PASSPHRASE,
    ),
    "mainnet": NetworkPreset(
        rpc_url="https://soroban.stellar.org",
        network_passphrase=Network.PUBLIC_NETWORK_PASSPHRASE,
    ),
}


@dataclass(frozen=True)
class LedgerConfig:
    """
    Immutable runtime configuration handed to the RPC client, the lifecycle
    manager and the synchronizer at construction.
    """
    rpc_url: str
    network_passphrase: str
    oracle: ContractRef
    pool: ContractRef
    token: ContractRef
    usdc: ContractRef
    liquidity_nodes: Tuple[str, ...] = ()
    user_address: Optional[str] = None
    refresh_interval_seconds: float = 30.0
    placeholder_fee: int = 100_000
    inclusion_fee: int = 100
    tx_timeout_seconds: int = 30
    request_timeout_seconds: float = 30.0
    rpc_max_retries: int = 3
    confirmation: ConfirmationPolicy = field(default_factory=ConfirmationPolicy)

    @property
    def contracts(self) -> Tuple[ContractRef, ...]:
        return (self.oracle, self.pool, self.token, self.usdc)

    def registry(self) -> Dict[str, ContractKind]:
        """Contract address -> role, for failure classification."""
        return {ref.address: ref.kind for ref in self.contracts}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Network
    network: Literal["testnet", "mainnet"] = Field(default="testnet", description="Stellar network")
    soroban_rpc_url: str = Field(default="", description="Override the network's Soroban RPC URL")
    network_passphrase: str = Field(default="", description="Override the network passphrase")

    # Contracts
    oracle_contract: str = Field(default="", description="Oracle contract address (C...)")
    pool_contract: str = Field(default="", description="AMM pool contract address")
    token_contract: str = Field(default="", description="DOB token contract address")
    usdc_contract: str = Field(default="", description="USDC Stellar asset contract address")
    liquidity_nodes: str = Field(
        default="",
        description="Comma-separated liquidity node addresses; empty discovers them from the pool",
    )
    user_address: str = Field(default="", description="Account whose balances are tracked")

    # Synchronizer
    refresh_interval_seconds: float = Field(default=30.0, description="Snapshot refresh interval")

    # Transactions
    placeholder_fee: int = Field(default=100_000, description="Pre-simulation fee in stroops")
    inclusion_fee: int = Field(default=100, description="Inclusion fee added to the resource fee")
    tx_timeout_seconds: int = Field(default=30, description="Envelope validity window")
    confirm_initial_interval_seconds: float = Field(default=1.0, description="First poll delay")
    confirm_backoff_factor: float = Field(default=1.5, description="Poll delay multiplier")
    confirm_max_interval_seconds: float = Field(default=5.0, description="Poll delay cap")
    confirm_timeout_seconds: float = Field(default=60.0, description="Confirmation ceiling")

    # RPC transport
    request_timeout_seconds: float = Field(default=30.0, description="Request timeout")
    rpc_max_retries: int = Field(default=3, description="Attempts per idempotent RPC call")

    # Headless signing (CLI only)
    signer_secret: str = Field(default="", description="Secret seed (S...) used by the CLI to sign")

    @field_validator("placeholder_fee", "inclusion_fee", "tx_timeout_seconds", "rpc_max_retries")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @property
    def liquidity_node_list(self) -> Tuple[str, ...]:
        return tuple(node.strip() for node in self.liquidity_nodes.split(",") if node.strip())

    @property
    def has_signer(self) -> bool:
        return bool(self.signer_secret)

    def to_ledger_config(self) -> LedgerConfig:
        """
        Resolve network presets and contract addresses.

        Raises:
            ValueError: if a contract address is missing
        """
        missing = [
            name for name in ("oracle_contract", "pool_contract", "token_contract", "usdc_contract")
            if not getattr(self, name)
        ]
        if missing:
            raise ValueError(f"Missing contract configuration: {', '.join(m.upper() for m in missing)}")

        preset = NETWORKS[self.network]
        return LedgerConfig(
            rpc_url=self.soroban_rpc_url or preset.rpc_url,
            network_passphrase=self.network_passphrase or preset.network_passphrase,
            oracle=ContractRef(self.oracle_contract, ContractKind.ORACLE),
            pool=ContractRef(self.pool_contract, ContractKind.POOL),
            token=ContractRef(self.token_contract, ContractKind.TOKEN),
            usdc=ContractRef(self.usdc_contract, ContractKind.ASSET),
            liquidity_nodes=self.liquidity_node_list,
            user_address=self.user_address or None,
            refresh_interval_seconds=self.refresh_interval_seconds,
            placeholder_fee=self.placeholder_fee,
            inclusion_fee=self.inclusion_fee,
            tx_timeout_seconds=self.tx_timeout_seconds,
            request_timeout_seconds=self.request_timeout_seconds,
            rpc_max_retries=self.rpc_max_retries,
            confirmation=ConfirmationPolicy(
                initial_interval_seconds=self.confirm_initial_interval_seconds,
                backoff_factor=self.confirm_backoff_factor,
                max_interval_seconds=self.confirm_max_interval_seconds,
                timeout_seconds=self.confirm_timeout_seconds,
            ),
        )


settings = Settings()
