"""Pokemon card identification and valuation pipeline."""

__version__ = "0.1.0"
