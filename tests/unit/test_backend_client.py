"""Test the typed Encore client."""

import pytest
import httpx

from encore_console.client.backend import EncoreClient
from encore_console.client.config_store import ClientConfig
from encore_console.core.exceptions import BackendRequestError, BackendUnreachable
from encore_console.models.job import (
    EncoreJobRequest,
    Input,
    JobListParams,
    JobStatus,
)
from conftest import BACKEND_URL, make_job, make_page


@pytest.fixture
def encore(backend):
    return EncoreClient(BACKEND_URL, bearer_token=" user-token ", transport=backend.transport)


@pytest.fixture
def job_request():
    return EncoreJobRequest(
        base_name="clip",
        inputs=[Input(uri="s3://media/in.mp4")],
    )


class TestRequests:
    """Test request shaping for each operation."""

    @pytest.mark.asyncio
    async def test_list_jobs(self, backend, encore):
        backend.on("GET", "/encoreJobs", json=make_page([make_job("a"), make_job("b")]))

        page = await encore.list_jobs(JobListParams(page=1, size=20, sort=["createdDate,desc"]))

        assert [job.id for job in page.jobs] == ["a", "b"]
        assert page.page.total_elements == 2
        params = backend.last.url.params
        assert params["page"] == "1"
        assert params["size"] == "20"
        assert params["sort"] == "createdDate,desc"

    @pytest.mark.asyncio
    async def test_list_jobs_status_filter(self, backend, encore):
        backend.on("GET", "/encoreJobs", json=make_page([]))

        page = await encore.list_jobs(JobListParams(status=JobStatus.FAILED))

        assert backend.last.url.params["status"] == "FAILED"
        assert page.jobs == []

    @pytest.mark.asyncio
    async def test_bearer_token_trimmed(self, backend, encore):
        backend.on("GET", "/queue", json=[])
        await encore.get_queue()
        assert backend.last.headers["authorization"] == "Bearer user-token"

    @pytest.mark.asyncio
    async def test_blank_token_not_sent(self, backend):
        backend.on("GET", "/queue", json=[])
        async with EncoreClient(BACKEND_URL, bearer_token="   ", transport=backend.transport) as encore:
            await encore.get_queue()
        assert "authorization" not in backend.last.headers

    @pytest.mark.asyncio
    async def test_get_job(self, backend, encore):
        backend.on("GET", "/encoreJobs/job-1", json=make_job("job-1", status="IN_PROGRESS", progress=42, speed=1.5))

        job = await encore.get_job("job-1")

        assert job.status == JobStatus.IN_PROGRESS
        assert job.progress == 42
        assert job.speed == 1.5

    @pytest.mark.asyncio
    async def test_create_job(self, backend, encore, job_request):
        backend.on("POST", "/encoreJobs", status_code=201, json=make_job("new"))

        job = await encore.create_job(job_request)

        assert job.id == "new"
        body = backend.body(backend.last)
        assert body["baseName"] == "clip"
        assert body["profile"] == "program"
        assert body["outputFolder"] == "/usercontent"
        assert body["inputs"][0]["uri"] == "s3://media/in.mp4"
        assert body["inputs"][0]["copyTs"] is True
        assert "externalId" not in body

    @pytest.mark.asyncio
    async def test_update_job(self, backend, encore, job_request):
        backend.on("PUT", "/encoreJobs/job-1", json=make_job("job-1", priority=50))

        job = await encore.update_job("job-1", job_request)

        assert job.priority == 50
        assert backend.last.method == "PUT"

    @pytest.mark.asyncio
    async def test_delete_job(self, backend, encore):
        backend.on("DELETE", "/encoreJobs/job-1", status_code=204)
        assert await encore.delete_job("job-1") is None

    @pytest.mark.asyncio
    async def test_cancel_job_text(self, backend, encore):
        """Backend answers with plain text."""
        backend.on("POST", "/encoreJobs/job-1/cancel", text="Job cancelled")
        assert await encore.cancel_job("job-1") == "Job cancelled"

    @pytest.mark.asyncio
    async def test_cancel_job_through_gateway(self, backend, encore):
        """The gateway relays the confirmation as a JSON string."""
        backend.on("POST", "/encoreJobs/job-1/cancel", json="Job cancelled")
        assert await encore.cancel_job("job-1") == "Job cancelled"

    @pytest.mark.asyncio
    async def test_find_by_status(self, backend, encore):
        backend.on("GET", "/encoreJobs/search/findByStatus", json=make_page([make_job(status="QUEUED")]))

        page = await encore.find_by_status(JobStatus.QUEUED, JobListParams(size=5))

        assert page.jobs[0].status == JobStatus.QUEUED
        params = backend.last.url.params
        assert params["status"] == "QUEUED"
        assert params["size"] == "5"

    @pytest.mark.asyncio
    async def test_get_queue(self, backend, encore):
        backend.on("GET", "/queue", json=[
            {"id": "a", "priority": 10, "created": "2024-01-01T10:00:00Z"},
            {"id": "b", "priority": 20, "created": "2024-01-01T09:00:00Z", "segment": 3},
        ])

        queue = await encore.get_queue()

        assert [item.id for item in queue] == ["a", "b"]
        assert queue[1].segment == 3

    @pytest.mark.asyncio
    async def test_from_config(self, backend):
        config = ClientConfig(encore_api_url=BACKEND_URL, bearer_token="cfg")
        backend.on("GET", "/queue", json=[])
        async with EncoreClient.from_config(config, transport=backend.transport) as encore:
            await encore.get_queue()
        assert backend.last.headers["authorization"] == "Bearer cfg"


class TestErrors:
    """Test that every failure becomes a BackendRequestError."""

    @pytest.mark.asyncio
    async def test_not_found(self, backend, encore):
        backend.on("GET", "/encoreJobs/missing", status_code=404, json={"message": "Job not found"})

        with pytest.raises(BackendRequestError) as exc_info:
            await encore.get_job("missing")

        error = exc_info.value
        assert error.status == 404
        assert error.is_not_found
        assert "Job not found" in error.message
        assert not isinstance(error, BackendUnreachable)

    @pytest.mark.asyncio
    async def test_gateway_error_envelope(self, backend, encore):
        """Error bodies normalized by the gateway carry the message in `error`."""
        backend.on("GET", "/queue", status_code=503, json={"error": "Service unavailable", "details": "x"})

        with pytest.raises(BackendRequestError) as exc_info:
            await encore.get_queue()

        assert exc_info.value.status == 503
        assert "Service unavailable" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_server_error_without_body(self, backend, encore):
        backend.on("GET", "/queue", status_code=500)

        with pytest.raises(BackendRequestError) as exc_info:
            await encore.get_queue()

        assert exc_info.value.status == 500
        assert "Internal Server Error" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        encore = EncoreClient(BACKEND_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(BackendUnreachable) as exc_info:
            await encore.get_job("job-1")

        assert exc_info.value.status is None
        assert isinstance(exc_info.value, BackendRequestError)

    @pytest.mark.asyncio
    async def test_malformed_payload(self, backend, encore):
        backend.on("GET", "/encoreJobs/job-1", json={"unexpected": True})

        with pytest.raises(BackendRequestError) as exc_info:
            await encore.get_job("job-1")

        assert exc_info.value.status == 200

    @pytest.mark.asyncio
    async def test_ping(self, backend, encore):
        backend.on("GET", "/", json={"_links": {}})
        assert await encore.ping() is True

    @pytest.mark.asyncio
    async def test_ping_failure(self, backend, encore):
        backend.on("GET", "/", status_code=401)
        assert await encore.ping() is False
