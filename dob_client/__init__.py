"""Client for the DOB oracle, AMM pool and liquidity nodes on Soroban."""

__version__ = "0.1.0"
