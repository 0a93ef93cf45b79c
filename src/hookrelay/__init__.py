"""Rate-limit absorbing webhook relay."""

__version__ = "0.3.0"
