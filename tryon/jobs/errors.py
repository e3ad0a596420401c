"""Domain errors raised by the try-on services.

Routers translate these into HTTP responses; the background task records them
on the job instead of raising.
"""

from typing import Optional


class TryOnValidationError(ValueError):
    """Request rejected before any job was created."""


class JobNotFoundError(LookupError):
    """Job (or history record) is missing or owned by someone else."""

    def __init__(self, resource_id: str, kind: str = "Job"):
        self.resource_id = resource_id
        self.kind = kind
        super().__init__(f"{kind} {resource_id} not found")


class JobConflictError(RuntimeError):
    """Operation not allowed in the job's current state."""


class TryOnApiError(RuntimeError):
    """The try-on API rejected a request or returned an unusable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
