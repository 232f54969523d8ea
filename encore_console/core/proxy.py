"""Authenticating proxy to the Encore backend."""
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

import httpx
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter

from encore_console.core.exceptions import AuthTokenError, LocalGatewayError
from encore_console.core.logging import logger
from encore_console.core.token_provider import TokenProvider
from encore_console.models.responses import ErrorResponse


API_PREFIX = "/api"
LEGACY_PREFIXES = ("/encoreJobs", "/queue", "/encore")
PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH"]

proxy_requests = Counter(
    "encore_proxy_requests_total",
    "Requests forwarded to the Encore backend",
    ["method", "outcome"],
)


def strip_prefix(path: str) -> str:
    """Map a UI-facing path to the backend-relative path."""
    if path == API_PREFIX:
        return "/"
    if path.startswith(API_PREFIX + "/"):
        return path[len(API_PREFIX):]
    return path


class OutcomeKind(str, Enum):
    """How a backend call ended."""
    RESPONDED = "responded"
    NO_RESPONSE = "no_response"
    SETUP_FAILED = "setup_failed"


@dataclass(frozen=True)
class BackendOutcome:
    kind: OutcomeKind
    response: Optional[httpx.Response] = None
    detail: str = ""


@dataclass(frozen=True)
class ProxyResponse:
    """Status code and payload relayed to the browser."""
    status_code: int
    payload: Any = None

    def to_response(self) -> Response:
        if self.payload is None:
            return Response(status_code=self.status_code)
        return JSONResponse(status_code=self.status_code, content=self.payload)


def error_payload(error: str, details: Any = None) -> dict:
    """Gateway error body; `details` is relayed as-is when present."""
    exclude = {"message"} if details is not None else {"message", "details"}
    return ErrorResponse(error=error, details=details).model_dump(exclude=exclude)


def decode_payload(response: httpx.Response) -> Any:
    """JSON body when there is one, text otherwise, None when empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class ProxyGateway:
    """
    Forwards requests to Encore with a fresh credential.

    Each call is attempted exactly once; nothing is retained between calls.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def forward(
        self,
        method: str,
        path: str,
        body: Optional[bytes] = None,
        query: Optional[Sequence[Tuple[str, str]]] = None,
        content_type: Optional[str] = None,
    ) -> ProxyResponse:
        """
        Forward one request to the backend.

        Args:
            method: HTTP method
            path: Inbound path as received, with or without the /api prefix;
                percent-encoding is passed through untouched
            body: Raw request body
            query: Query items, repeated keys allowed
            content_type: Inbound content type

        Returns:
            ProxyResponse with the backend status or a normalized error
        """
        backend_path = strip_prefix(path)
        logger.info(f"Proxying {method} {backend_path} to Encore API")

        try:
            token = await self.token_provider.get_token()
        except AuthTokenError:
            proxy_requests.labels(method=method, outcome="auth_failed").inc()
            return ProxyResponse(401, error_payload(
                "Authentication failed",
                "Unable to generate or retrieve authentication token",
            ))
        except Exception as e:
            proxy_requests.labels(method=method, outcome="setup_failed").inc()
            raise LocalGatewayError(f"Token provider failed: {e}") from e

        headers = {"Content-Type": content_type or "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        outcome = await self._send(method, backend_path, body, list(query or []), headers)
        proxy_requests.labels(method=method, outcome=outcome.kind.value).inc()
        return self._to_proxy_response(outcome)

    async def _send(
        self,
        method: str,
        path: str,
        body: Optional[bytes],
        query: List[Tuple[str, str]],
        headers: dict,
    ) -> BackendOutcome:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method,
                    path,
                    content=body,
                    params=query,
                    headers=headers,
                )
            return BackendOutcome(OutcomeKind.RESPONDED, response=response)
        except (httpx.UnsupportedProtocol, httpx.LocalProtocolError) as e:
            # Failed before anything reached the wire
            logger.error(f"Proxy setup error: {e}")
            return BackendOutcome(OutcomeKind.SETUP_FAILED, detail=str(e))
        except httpx.TransportError as e:
            logger.error(f"Proxy error: {e}")
            return BackendOutcome(OutcomeKind.NO_RESPONSE, detail=str(e))
        except Exception as e:
            logger.error(f"Proxy setup error: {e}", exc_info=True)
            return BackendOutcome(OutcomeKind.SETUP_FAILED, detail=str(e))

    @staticmethod
    def _to_proxy_response(outcome: BackendOutcome) -> ProxyResponse:
        if outcome.kind == OutcomeKind.NO_RESPONSE:
            return ProxyResponse(503, error_payload(
                "Service unavailable - Could not reach Encore API", outcome.detail
            ))

        if outcome.kind == OutcomeKind.SETUP_FAILED:
            return ProxyResponse(500, error_payload("Internal server error", outcome.detail))

        response = outcome.response
        payload = decode_payload(response)
        if response.is_success:
            return ProxyResponse(response.status_code, payload)

        message = None
        if isinstance(payload, dict):
            message = payload.get("message")
        logger.warning(f"Encore API responded {response.status_code}")
        return ProxyResponse(
            response.status_code,
            error_payload(message or response.reason_phrase, payload),
        )
