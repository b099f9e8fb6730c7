"""
Error taxonomy for store operations.

Stores raise these; the HTTP layer renders them as
{"error": <code>, "detail": <message>} with the matching status code.
The resolver and tenant guard never raise them.
"""
from fastapi import FastAPI, status
from starlette.requests import Request
from starlette.responses import JSONResponse


class AccessError(Exception):
    """Base class for recoverable store errors."""
    code = "access_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(AccessError):
    """A referenced role, group, user or tenant does not exist (or is not visible)."""
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class DuplicateSlug(AccessError):
    """Uniqueness violation on (tenant, slug)."""
    code = "duplicate_slug"
    status_code = status.HTTP_409_CONFLICT


class DuplicateName(AccessError):
    """Uniqueness violation on (tenant, name) for roles."""
    code = "duplicate_name"
    status_code = status.HTTP_409_CONFLICT


class DuplicateEmail(AccessError):
    code = "duplicate_email"
    status_code = status.HTTP_409_CONFLICT


class SystemRoleImmutable(AccessError):
    """Attempted mutation or deletion of a protected system role."""
    code = "system_role_immutable"
    status_code = status.HTTP_403_FORBIDDEN


class ReservedSlug(AccessError):
    """A slug (or the name bound to it) belongs to a default role."""
    code = "reserved_slug"
    status_code = status.HTTP_409_CONFLICT


class TenantRequired(AccessError):
    """An operator-initiated create omitted the target tenant."""
    code = "tenant_required"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidReference(AccessError):
    """A reference that exists but cannot be used here (e.g. a group as its own parent)."""
    code = "invalid_reference"
    status_code = status.HTTP_400_BAD_REQUEST


async def access_error_handler(_request: Request, exc: AccessError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.detail},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AccessError, access_error_handler)  # type: ignore[arg-type]
