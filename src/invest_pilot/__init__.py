"""invest-pilot: multi-source market price reconciliation with AI fallback."""

__version__ = "0.1.0"
