"""
Registry error taxonomy.
NotFound is not here: a missing package is a normal result value (see schema.NotFound).
"""


class RegistryError(Exception):
    """Base class for registry failures."""


class DimensionMismatch(RegistryError):
    """Two feature vectors of different length were compared."""

    def __init__(self, left: int, right: int):
        self.left = left
        self.right = right
        super().__init__(f"Feature vector dimension mismatch: {left} != {right}")


class StoreUnavailable(RegistryError):
    """The backing record store could not serve the request. Retryable."""

    retryable = True


class ScanLimitExceeded(RegistryError):
    """A full-store scan would exceed the configured record cap."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Store holds more than {limit} records; refusing full scan")


class RecordConflict(RegistryError):
    """Registration would silently replace or re-pair an existing record."""

    def __init__(self, key: str, reason: str = "already exists with different features"):
        self.key = key
        super().__init__(f"Record '{key}' {reason}")
