"""Danish tax engine for employer equity compensation."""

__version__ = "1.0.0"
