"""ModSentry: automated trust-and-safety enforcement and data retention."""

__version__ = "0.1.0"
