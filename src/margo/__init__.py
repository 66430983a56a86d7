"""margo: template manifest and reconciliation for margo script projects."""

__version__ = "0.3.0"
