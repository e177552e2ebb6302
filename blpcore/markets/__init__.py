"""Market-level computation."""
