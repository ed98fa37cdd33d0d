"""rewind — reconstructs browser test runs and ships them to a collector."""

__version__ = "0.4.0"
