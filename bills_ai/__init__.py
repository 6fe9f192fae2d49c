"""bills-ai: document analysis provider layer for the billing desktop app."""

__version__ = "0.3.0"
