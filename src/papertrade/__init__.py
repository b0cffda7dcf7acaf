"""In-memory paper-trading ledger and abnormal-volume detector."""

__version__ = "0.1.0"
