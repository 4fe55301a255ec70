"""Shared infrastructure: logging, errors, configuration, validation and events."""
