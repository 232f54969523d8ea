"""FastAPI dependencies."""
from fastapi import Request

from encore_console.core.proxy import ProxyGateway


def get_gateway(request: Request) -> ProxyGateway:
    """Gateway built for this application instance."""
    return request.app.state.gateway
