"""syncctl - scheduled folder synchronization with versioned backups."""

__version__ = "1.0.0"
