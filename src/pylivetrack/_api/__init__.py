"""Upstream API endpoint modules (internal)."""
