"""increm: incremental-reading scheduling engine."""

from increm.consts import VERSION

__version__ = VERSION
