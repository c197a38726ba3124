"""Embedding pipeline for semantic message search."""
