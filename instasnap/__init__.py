"""Client library for InstaSnap event-photo discovery."""

__version__ = "1.0.0"
