"""Exceptions raised by the increm core.

None of these is fatal to a queue session; callers decide how to degrade.
"""


class IncremError(Exception):
    """Base class for all increm errors."""


class MissingEntity(IncremError):
    """A referenced node no longer resolves in the host."""

    def __init__(self, item_id: str):
        super().__init__(f"Item {item_id!r} not found")
        self.item_id = item_id


class MalformedPersistedData(IncremError):
    """Stored history or priority failed validation."""

    def __init__(self, item_id: str, reason: str):
        super().__init__(f"Malformed data for item {item_id!r}: {reason}")
        self.item_id = item_id
        self.reason = reason


class CacheUnavailable(IncremError):
    """An expected precomputed cache is empty."""


class ConfigurationError(IncremError):
    """A priority or setting cannot be interpreted as a number.

    Out-of-range numbers are clamped, never rejected.
    """
