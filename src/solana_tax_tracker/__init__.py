"""Solana wallet transaction ingestion and FIFO cost-basis accounting."""

__version__ = "0.1.0"
