"""Maps domain failures onto HTTP responses."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from congregate.app.errors import DomainError

logger = logging.getLogger(__name__)

# Unknown kinds fall back to 400
STATUS_BY_KIND: dict[str, int] = {
    "not_found": 404,
    "invalid_range": 422,
    "invalid_input": 422,
    "window_closed": 409,
    "group_mismatch": 422,
    "conflict": 409,
    "forbidden": 403,
    "timeout": 504,
}


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render a DomainError as ``{"error": kind, "detail": message}``."""
    if not isinstance(exc, DomainError):
        raise exc
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST)

    logger.info(
        "Request rejected: %s",
        exc.kind,
        extra={"structured": {"path": request.url.path, "kind": exc.kind, "status": status_code}},
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.kind, "detail": exc.message},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
