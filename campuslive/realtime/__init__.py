"""Realtime change-feed client."""
