"""CivicLens election data ingestion and reconciliation."""

__version__ = "1.0.0"
