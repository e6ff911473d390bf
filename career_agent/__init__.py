"""Career Agent - persona-routed career counseling chat service."""

__version__ = "0.1.0"
