"""Conversation templates (system prompts)."""
