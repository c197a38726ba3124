"""Rooms and their persisted view state."""
