"""Domain exceptions for the SPIRE operator"""
from typing import Optional


class OperatorError(Exception):
    """Base exception for operator failures."""
    pass


class ValidationRejection(OperatorError):
    """Raised when a desired-state spec violates a domain rule.

    Never retried: the reconciler deletes the rejected object.
    """

    def __init__(self, reason: str, field: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.field = field


class ObjectNotFound(OperatorError):
    """Raised when a desired-state object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class ApplyFailure(OperatorError):
    """Raised when creating a planned resource failed.

    Carries the name of the first resource that failed and its cause.
    """

    def __init__(self, resource_name: str, cause: Exception):
        super().__init__(f"Failed to create resource '{resource_name}': {cause}")
        self.resource_name = resource_name
        self.cause = cause


class ObservationFailure(OperatorError):
    """Raised when a health poll could not list pods or write status."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause
