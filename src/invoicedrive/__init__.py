"""Invoice Drive - archive generated invoices to Google Drive."""

__version__ = "0.1.0"
