"""End-to-end workflow: synchronized client, gateway, fake Encore."""

import httpx
import pytest

from encore_console.client.backend import EncoreClient
from encore_console.client.sync import EncoreSync, QueryCache
from encore_console.core.exceptions import BackendRequestError, BackendUnreachable
from encore_console.core.proxy import ProxyGateway
from encore_console.core.token_provider import UnconfiguredTokenProvider
from encore_console.main import create_app
from encore_console.models.job import EncoreJobRequest, Input, JobStatus
from conftest import BACKEND_URL, make_job, make_page


GATEWAY_URL = "http://console.test/api"


class JobBackend:
    """Stateful Encore double: jobs move through their statuses."""

    def __init__(self, backend):
        self.jobs = {}
        self.backend = backend
        backend.on("GET", "/encoreJobs", handler=self.list_jobs)
        backend.on("POST", "/encoreJobs", handler=self.create)
        backend.on("GET", "/queue", handler=self.queue)

    def register(self, job_id):
        self.backend.on("GET", f"/encoreJobs/{job_id}", handler=lambda r: self.get(job_id))
        self.backend.on("POST", f"/encoreJobs/{job_id}/cancel", handler=lambda r: self.cancel(job_id))

    def list_jobs(self, request):
        return httpx.Response(200, json=make_page(list(self.jobs.values())))

    def create(self, request):
        body = self.backend.body(request)
        job_id = f"job-{len(self.jobs) + 1}"
        self.jobs[job_id] = make_job(job_id, status="QUEUED", baseName=body["baseName"], priority=body["priority"])
        self.register(job_id)
        return httpx.Response(201, json=self.jobs[job_id])

    def get(self, job_id):
        return httpx.Response(200, json=self.jobs[job_id])

    def cancel(self, job_id):
        self.jobs[job_id]["status"] = "CANCELLED"
        return httpx.Response(200, text="Cancel requested")

    def queue(self, request):
        return httpx.Response(200, json=[
            {"id": job["id"], "priority": job["priority"], "created": job["createdDate"]}
            for job in self.jobs.values() if job["status"] == "QUEUED"
        ])


@pytest.fixture
def encore_backend(backend):
    return JobBackend(backend)


@pytest.fixture
def sync(app, clock):
    client = EncoreClient(GATEWAY_URL, transport=httpx.ASGITransport(app=app))
    return EncoreSync(client, cache=QueryCache(clock=clock, retry_delay=0))


def job_request(name, priority=0):
    return EncoreJobRequest(base_name=name, priority=priority, inputs=[Input(uri=f"s3://media/{name}.mp4")])


class TestWorkflow:
    """Test the console workflow through the gateway."""

    @pytest.mark.asyncio
    async def test_create_count_and_cancel(self, backend, encore_backend, sync):
        """Create a job, see it counted and queued, cancel it."""
        created = await sync.create_job(job_request("news", priority=50))
        await sync.create_job(job_request("sports"))

        counts = await sync.status_counts()
        assert counts.total == 2
        assert counts.queued == 2

        queue = await sync.sorted_queue()
        assert [item.id for item in queue] == [created.id, "job-2"]

        job = await sync.job(created.id)
        assert job.status == JobStatus.QUEUED

        assert await sync.cancel_job(created.id) == "Cancel requested"

        job = await sync.job(created.id)
        assert job.status == JobStatus.CANCELLED
        assert job.is_terminal
        counts = await sync.status_counts()
        assert counts.cancelled == 1
        assert [item.id for item in await sync.queue()] == ["job-2"]

        for request in backend.requests:
            assert request.headers["authorization"] == "Bearer static-token"

    @pytest.mark.asyncio
    async def test_cached_reads_do_not_reach_backend(self, backend, encore_backend, sync):
        await sync.jobs()
        await sync.jobs()
        await sync.queue()
        await sync.queue()

        assert backend.calls("GET", "/encoreJobs") == 1
        assert backend.calls("GET", "/queue") == 1

    @pytest.mark.asyncio
    async def test_missing_job(self, backend, encore_backend, sync):
        """Not found travels through the gateway and is not retried."""
        with pytest.raises(BackendRequestError) as exc_info:
            await sync.job("nope")

        assert exc_info.value.is_not_found
        assert backend.calls("GET", "/encoreJobs/nope") == 1

    @pytest.mark.asyncio
    async def test_ping_through_gateway(self, backend, sync):
        backend.on("GET", "/", json={"_links": {}})
        assert await sync.client.ping() is True

    @pytest.mark.asyncio
    async def test_backend_down(self, test_settings, clock):
        """An unreachable backend surfaces as a 503 from the gateway."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        gateway = ProxyGateway(UnconfiguredTokenProvider(), BACKEND_URL, transport=httpx.MockTransport(handler))
        app = create_app(test_settings, gateway=gateway)
        client = EncoreClient(GATEWAY_URL, transport=httpx.ASGITransport(app=app))
        sync = EncoreSync(client, cache=QueryCache(clock=clock, max_retries=1, retry_delay=0))

        with pytest.raises(BackendRequestError) as exc_info:
            await sync.queue()

        assert exc_info.value.status == 503
        assert not isinstance(exc_info.value, BackendUnreachable)
        assert "Service unavailable" in exc_info.value.message
