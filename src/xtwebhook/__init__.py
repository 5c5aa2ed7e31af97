"""XTSystems webhook sender and receiver."""

__version__ = "1.0.0"
