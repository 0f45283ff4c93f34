"""Exception types raised by cortex_memory."""


class CortexError(Exception):
    """Base class for all cortex_memory errors."""


class ConfigError(CortexError):
    """Required startup configuration is missing or invalid."""


class StoreError(CortexError):
    """The knowledge store could not complete an operation."""
