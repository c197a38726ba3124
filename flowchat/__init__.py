"""flowchat: a local-first branching conversation engine."""

__version__ = "0.1.0"
