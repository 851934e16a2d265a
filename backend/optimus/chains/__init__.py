"""Blockchain holdings sources."""
