"""
Error taxonomy for cloud preparation.
"""
from contextlib import contextmanager
from typing import List, Optional, Type


class CloudPrepError(Exception):
    """Base class for all cloud preparation errors."""


class ResourceNotFoundError(CloudPrepError):
    """A named resource does not exist."""

    def __init__(self, kind: str, name: str):
        super().__init__(f"{kind} {name!r} not found")
        self.kind = kind
        self.name = name


class PermissionDeniedError(CloudPrepError):
    """The caller lacks permission for an operation (usually found by a dry run)."""

    def __init__(self, operation: str):
        super().__init__(f"no permission to {operation}")
        self.operation = operation


class InsufficientCapacityError(CloudPrepError):
    """Not enough eligible zones, subnets or nodes to satisfy the request."""

    def __init__(self, requested: int, created: int, detail: str = ""):
        message = f"requested {requested} gateway(s) but only {created} could be placed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.requested = requested
        self.created = created


class TransientProviderError(CloudPrepError):
    """A known-racy provider condition that is worth retrying."""


class UnsupportedOperationError(CloudPrepError):
    """The requested operation is not supported by this provider or in this state."""


class ProviderError(CloudPrepError):
    """An unexpected provider failure, annotated with the operation and resource."""

    def __init__(self, operation: str, resource: str, cause: Optional[BaseException] = None):
        message = f"error {operation} {resource!r}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.operation = operation
        self.resource = resource
        self.cause = cause


class CleanupError(CloudPrepError):
    """One or more cleanup steps failed. Every step was still attempted."""

    def __init__(self, errors: List[BaseException]):
        summary = "; ".join(str(e) for e in errors)
        super().__init__(f"{len(errors)} cleanup step(s) failed: {summary}")
        self.errors = list(errors)


@contextmanager
def provider_errors(operation: str, resource: str, *error_types: Type[BaseException]):
    """Re-raise SDK failures of ``error_types`` as ProviderError.

    Errors that are already CloudPrepErrors pass through unchanged.

    Args:
        operation: What was being done, e.g. ``"opening internal ports"``.
        resource: Name of the resource the operation acted on.
        error_types: SDK exception classes to translate.
    """
    try:
        yield
    except CloudPrepError:
        raise
    except error_types as e:
        raise ProviderError(operation, resource, e) from e
