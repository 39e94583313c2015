"""HVAC service business dashboard: record store, metrics engine and table engine."""

__version__ = "0.1.0"
