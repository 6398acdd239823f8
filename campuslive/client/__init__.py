"""Data-access helpers for the portal tables."""
