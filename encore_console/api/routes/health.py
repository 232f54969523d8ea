"""Health check API routes."""
from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from datetime import datetime, timezone

from encore_console.api.dependencies import get_gateway
from encore_console.core.exceptions import AuthTokenError
from encore_console.core.proxy import ProxyGateway
from encore_console.models.responses import HealthResponse


router = APIRouter(tags=["health"])


@router.get("/metrics")
async def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Report the backend URL and how outbound calls are authenticated"
)
async def health_check(gateway: ProxyGateway = Depends(get_gateway)):
    """Gateway health report."""
    provider = gateway.token_provider
    try:
        token = await provider.get_token()
    except AuthTokenError as e:
        return JSONResponse(
            status_code=500,
            content={
                "status": "ERROR",
                "timestamp": _now(),
                "error": "Token generation failed",
                "message": str(e),
            }
        )

    return HealthResponse(
        status="OK",
        timestamp=datetime.now(timezone.utc),
        encore_api_url=gateway.base_url,
        has_token=bool(token),
        auth_method=provider.auth_method,
    )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
