"""Payment-processing core of the marketplace."""

__version__ = "1.0.0"
