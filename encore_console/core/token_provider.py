"""Bearer credentials for outbound Encore calls."""
from typing import Optional

import httpx

from encore_console.config import Settings
from encore_console.core.exceptions import AuthTokenError
from encore_console.core.logging import logger


OSC_TOKEN_URL_TEMPLATE = "https://token.svc.{environment}.osaas.io/servicetoken"


class TokenProvider:
    """Produces the credential attached to each backend request."""

    auth_method = "none"

    async def get_token(self) -> Optional[str]:
        raise NotImplementedError


class StaticTokenProvider(TokenProvider):
    """Always hands out the configured token."""

    auth_method = "static"

    def __init__(self, token: str):
        self._token = token

    async def get_token(self) -> Optional[str]:
        return self._token


class OscTokenProvider(TokenProvider):
    """
    Mints a short-lived Open Source Cloud service access token.

    A new token is requested on every call; token lifetime is controlled by
    OSC, so nothing is cached here.
    """

    auth_method = "osc-dynamic"

    def __init__(
        self,
        access_token: str,
        service_id: str = "encore",
        environment: str = "prod",
        token_url: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._access_token = access_token
        self.service_id = service_id
        self.token_url = token_url or OSC_TOKEN_URL_TEMPLATE.format(environment=environment)
        self._timeout = timeout
        self._transport = transport

    async def get_token(self) -> Optional[str]:
        """
        Request a service access token.

        Raises:
            AuthTokenError: If the token service fails or returns no token
        """
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self.token_url,
                    json={"serviceId": self.service_id},
                    headers={"x-pat-jwt": f"Bearer {self._access_token}"},
                )
                response.raise_for_status()
                token = response.json().get("token")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.error(f"Failed to generate OSC service access token: {e}")
            raise AuthTokenError("Failed to generate authentication token") from e

        if not token:
            logger.error("OSC token service returned no token")
            raise AuthTokenError("Failed to generate authentication token")

        return token


class UnconfiguredTokenProvider(TokenProvider):
    """No credential configured; requests go out unauthenticated."""

    auth_method = "none"

    async def get_token(self) -> Optional[str]:
        return None


def build_token_provider(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> TokenProvider:
    """Pick the provider for the configured credentials; static wins."""
    static_token = (settings.encore_bearer_token or "").strip()
    if static_token:
        logger.info("Authentication: static bearer token configured")
        return StaticTokenProvider(static_token)

    access_token = (settings.osc_access_token or "").strip()
    if access_token:
        logger.info("Authentication: OSC dynamic token generation enabled")
        return OscTokenProvider(
            access_token,
            service_id=settings.osc_service_id,
            environment=settings.osc_environment,
            token_url=settings.osc_token_url,
            timeout=settings.request_timeout,
            transport=transport,
        )

    logger.warning("Authentication: no authentication configured")
    return UnconfiguredTokenProvider()
