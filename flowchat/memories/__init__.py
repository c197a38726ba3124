"""Scoped memory facts attached to rooms."""
