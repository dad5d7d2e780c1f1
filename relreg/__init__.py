"""relreg: version registry and release promotion for binary distributions."""

__version__ = "0.3.0"
