"""Document history: snapshots, changelog, diff and review."""
