"""Routes forwarded to the Encore backend."""
from fastapi import APIRouter, Depends, Request

from encore_console.api.dependencies import get_gateway
from encore_console.core.proxy import API_PREFIX, LEGACY_PREFIXES, PROXY_METHODS, ProxyGateway


router = APIRouter(tags=["proxy"])


def raw_path(request: Request) -> str:
    """Path as the client sent it, with escapes such as %2F kept."""
    raw = request.scope.get("raw_path")
    if not raw:
        return request.url.path
    # Some servers include the query string
    return raw.decode("latin-1").split("?", 1)[0]


async def proxy_to_encore(request: Request, gateway: ProxyGateway = Depends(get_gateway)):
    """Forward the inbound request and relay whatever comes back."""
    body = await request.body()
    result = await gateway.forward(
        request.method,
        raw_path(request),
        body=body or None,
        query=request.query_params.multi_items(),
        content_type=request.headers.get("content-type"),
    )
    return result.to_response()


for route in (API_PREFIX, API_PREFIX + "/{path:path}"):
    router.add_api_route(
        route,
        proxy_to_encore,
        methods=PROXY_METHODS,
        summary="Proxy API calls to Encore",
        include_in_schema=False,
    )

# Root paths kept for clients that call Encore resources directly
for prefix in LEGACY_PREFIXES:
    router.add_api_route(
        prefix + "{rest:path}",
        proxy_to_encore,
        methods=PROXY_METHODS,
        include_in_schema=False,
    )
