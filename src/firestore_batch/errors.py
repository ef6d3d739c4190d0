from __future__ import annotations


class PathError(ValueError):
    """Raised when a path does not have the expected document/collection shape."""


class ConvertError(ValueError):
    """Raised when write data or write options cannot be converted to a write record."""


class BatchStateError(RuntimeError):
    """Base error for operations attempted in an invalid batch state."""


class BatchClosedError(BatchStateError):
    """Raised when a closed batch is mutated or committed again."""


class ServiceUnavailableError(BatchStateError):
    """Raised when no database connection is bound."""
