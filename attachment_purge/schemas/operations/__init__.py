"""Per-operation input/output schemas."""
