"""HTTP host service for the Tristogram engine."""

__version__ = "0.1.0"
