"""
Route definition for the liveness probe.

``GET /health`` returns HTTP 200 whenever the service process is running.
Load balancers poll it frequently, so the metrics recorder ignores requests
to this path: they never appear in counts and never trigger a flush.

The response carries ``Cache-Control: no-store, no-cache`` and
``Pragma: no-cache`` so that intermediaries never serve a stale status.
"""

import fastapi
import fastapi.responses

health_router = fastapi.APIRouter(tags=["Health"])

_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS: dict[str, str] = {
    "Cache-Control": "no-store, no-cache",
    "Pragma": "no-cache",
}


@health_router.get(
    "/health",
    summary="Liveness check",
    description="Returns a simple healthy status when the service is running.",
    status_code=200,
    responses={
        200: {
            "description": "The service process is running and accepting requests.",
            "content": {
                "application/json": {
                    "example": {"status": "healthy"},
                },
            },
        },
    },
)
async def health_check() -> fastapi.responses.JSONResponse:
    return fastapi.responses.JSONResponse(
        content={"status": "healthy"},
        headers=_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS,
    )
