"""File Relay Service."""
