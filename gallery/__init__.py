"""User gallery service with picture archive export."""

__version__ = "0.1.0"
