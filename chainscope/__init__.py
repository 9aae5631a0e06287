"""chainscope: EVM chain registry aggregation, RPC health monitoring and wallet-safe RPC selection."""

__version__ = "0.1.0"
