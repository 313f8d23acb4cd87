"""Sub-IB client ingestion, commission eligibility and journal analytics."""

__version__ = "1.0.0"
