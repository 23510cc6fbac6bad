"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

router = APIRouter()


async def check_db(request: Request) -> tuple[bool, str]:
    """Check database connectivity through the application's engine.

    Returns:
        (is_ok, status_message)
    """
    try:
        async with request.app.state.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return (True, "ok")
    except Exception as e:
        return (False, f"error: {type(e).__name__}")


def check_audit(request: Request) -> tuple[bool, str]:
    """Report whether the activity notary is delivering events."""
    notary = request.app.state.notary
    if not notary.enabled:
        return (True, "disabled")
    return (True, "running") if notary.running else (False, "stopped")


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple liveness check.

    Returns:
        200 OK always (application is running)
    """
    return {"status": "ok"}


@router.get("/healthz", response_model=None)
async def healthz(request: Request) -> dict[str, Any] | JSONResponse:
    """Readiness check.

    Returns:
        200 with component status if the database is reachable
        503 otherwise
    """
    db_ok, db_status = await check_db(request)
    _, audit_status = check_audit(request)

    response_body = {
        "status": "ok" if db_ok else "degraded",
        "components": {"db": db_status, "audit": audit_status},
    }

    if not db_ok:
        return JSONResponse(content=response_body, status_code=503)

    return response_body
