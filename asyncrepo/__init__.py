"""Non-blocking job engine for slow, synchronous version-control backends."""

__version__ = "0.3.0"
