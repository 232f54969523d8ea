"""Typed client for the Encore job API."""
from typing import Any, List, Optional, Sequence, Tuple, Type, TypeVar

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from encore_console.core.exceptions import BackendRequestError, BackendUnreachable
from encore_console.core.logging import logger
from encore_console.models.job import (
    EncoreJob,
    EncoreJobRequest,
    JobListParams,
    JobStatus,
    PagedJobs,
    QueueItem,
)


ModelT = TypeVar("ModelT", bound=BaseModel)

_queue_adapter = TypeAdapter(List[QueueItem])


class EncoreClient:
    """
    One method per Encore resource action.

    No caching and no retries here. Every failure is raised as
    BackendRequestError (BackendUnreachable when nothing answered), so callers
    never handle httpx exceptions.
    """

    def __init__(
        self,
        base_url: str,
        bearer_token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if bearer_token and bearer_token.strip():
            headers["Authorization"] = f"Bearer {bearer_token.strip()}"
        self._headers = headers
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(cls, config, **kwargs) -> "EncoreClient":
        """Build from a persisted ClientConfig."""
        return cls(config.encore_api_url, config.bearer_token, **kwargs)

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "EncoreClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Sequence[Tuple[str, str]]] = None,
        json: Any = None,
    ) -> httpx.Response:
        try:
            response = await self.client.request(method, path, params=params, json=json)
        except (httpx.UnsupportedProtocol, httpx.InvalidURL) as e:
            raise BackendRequestError(None, f"API Error: {e}") from e
        except httpx.TransportError as e:
            logger.warning(f"Encore API unreachable: {method} {path}: {e}")
            raise BackendUnreachable(f"API Error: {e}") from e
        except httpx.HTTPError as e:
            raise BackendRequestError(None, f"API Error: {e}") from e

        if not response.is_success:
            message = response.reason_phrase
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("message"):
                    message = body["message"]
                elif isinstance(body, dict) and isinstance(body.get("error"), str):
                    message = body["error"]
            except ValueError:
                pass
            raise BackendRequestError(response.status_code, f"API Error: {message}")

        return response

    @staticmethod
    def _parse(response: httpx.Response, model: Type[ModelT]) -> ModelT:
        try:
            return model.model_validate_json(response.content)
        except ValidationError as e:
            raise BackendRequestError(
                response.status_code,
                f"API Error: malformed {model.__name__} payload"
            ) from e

    # Jobs

    async def list_jobs(self, params: Optional[JobListParams] = None) -> PagedJobs:
        """List jobs, one page at a time, optionally filtered by status."""
        params = params or JobListParams()
        response = await self._request("GET", "/encoreJobs", params=params.to_query())
        return self._parse(response, PagedJobs)

    async def get_job(self, job_id: str) -> EncoreJob:
        response = await self._request("GET", f"/encoreJobs/{job_id}")
        return self._parse(response, EncoreJob)

    async def create_job(self, job: EncoreJobRequest) -> EncoreJob:
        response = await self._request("POST", "/encoreJobs", json=job.to_wire())
        created = self._parse(response, EncoreJob)
        logger.info(f"Job created: {created.id}")
        return created

    async def update_job(self, job_id: str, job: EncoreJobRequest) -> EncoreJob:
        response = await self._request("PUT", f"/encoreJobs/{job_id}", json=job.to_wire())
        return self._parse(response, EncoreJob)

    async def delete_job(self, job_id: str) -> None:
        await self._request("DELETE", f"/encoreJobs/{job_id}")
        logger.info(f"Job deleted: {job_id}")

    async def cancel_job(self, job_id: str) -> str:
        """
        Ask the backend to cancel a job.

        Whether a terminal job can still be cancelled is up to the backend.

        Returns:
            Confirmation message from the backend
        """
        response = await self._request("POST", f"/encoreJobs/{job_id}/cancel")
        logger.info(f"Job cancel requested: {job_id}")
        try:
            body = response.json()
        except ValueError:
            return response.text
        return body if isinstance(body, str) else response.text

    async def find_by_status(
        self,
        status: JobStatus,
        params: Optional[JobListParams] = None,
    ) -> PagedJobs:
        query = [("status", JobStatus(status).value)]
        if params is not None:
            query += [item for item in params.to_query() if item[0] != "status"]
        response = await self._request("GET", "/encoreJobs/search/findByStatus", params=query)
        return self._parse(response, PagedJobs)

    # Queue

    async def get_queue(self) -> List[QueueItem]:
        response = await self._request("GET", "/queue")
        try:
            return _queue_adapter.validate_json(response.content)
        except ValidationError as e:
            raise BackendRequestError(
                response.status_code,
                "API Error: malformed queue payload"
            ) from e

    async def ping(self) -> bool:
        """Check that the configured backend answers with a 2xx."""
        try:
            await self._request("GET", "/")
        except BackendRequestError as e:
            logger.warning(f"Connection test failed: {e}")
            return False
        return True
