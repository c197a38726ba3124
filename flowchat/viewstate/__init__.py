"""Graph building, layout and view-state reconciliation for the conversation canvas."""
