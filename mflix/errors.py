"""Errors raised by the mflix data-access services.

Callers only ever see these; pymongo errors are translated at the service
boundary.
"""


class IncorrectOperation(Exception):
    """Base class for every failure surfaced by the services."""


class ValidationError(IncorrectOperation, ValueError):
    """The caller passed structurally invalid input. No query was sent."""


class ConflictError(IncorrectOperation):
    """A uniqueness constraint was violated on insert."""


class OperationFailed(IncorrectOperation):
    """A write failed in the storage layer (timeout, network, write concern)."""

    def __init__(self, operation, key, detail=""):
        self.operation = operation
        self.key = key
        message = f"{operation} failed for `{key}`"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
