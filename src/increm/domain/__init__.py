"""Domain layer: pure types, ports and errors."""
