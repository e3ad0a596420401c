"""Translate service errors into HTTP responses."""

from fastapi import HTTPException

from tryon.jobs.errors import JobConflictError, JobNotFoundError, TryOnValidationError


def to_http_exception(exc: Exception) -> HTTPException:
    if isinstance(exc, JobNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, JobConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, TryOnValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    raise exc
