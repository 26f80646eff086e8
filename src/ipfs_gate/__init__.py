"""Community-currency gated upload proxy."""

__version__ = "0.1.0"
