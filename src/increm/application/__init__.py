"""Application layer: scheduling, priority and queue services."""
