"""Core data model and error types."""
