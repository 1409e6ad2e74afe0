"""Oracle provider answering on-chain data requests with ODF query results, and a release helper."""

__version__ = "0.1.0"