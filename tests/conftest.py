"""Pytest configuration and fixtures."""
import json
import pytest
import httpx
from fastapi.testclient import TestClient

from encore_console.config import Settings
from encore_console.core.proxy import ProxyGateway
from encore_console.core.token_provider import StaticTokenProvider
from encore_console.main import create_app


BACKEND_URL = "http://encore.test"


def make_job(job_id="job-1", status="NEW", **overrides):
    """Backend representation of a job."""
    job = {
        "id": job_id,
        "profile": "program",
        "profileParams": {},
        "outputFolder": "/usercontent",
        "baseName": f"{job_id}-out",
        "createdDate": "2024-01-01T10:00:00Z",
        "priority": 0,
        "progress": 0,
        "debugOverlay": False,
        "logContext": {},
        "inputs": [
            {
                "type": "AudioVideo",
                "uri": "s3://media/in.mp4",
                "accessUri": "https://media.test/in.mp4",
                "params": {},
                "copyTs": True,
            }
        ],
        "output": [],
        "status": status,
    }
    job.update(overrides)
    return job


def make_page(jobs, total=None, size=20, number=0):
    """Backend representation of a page of jobs."""
    total = len(jobs) if total is None else total
    page = {
        "_links": {"self": {"href": f"{BACKEND_URL}/encoreJobs"}},
        "page": {
            "size": size,
            "totalElements": total,
            "totalPages": (total + size - 1) // size,
            "number": number,
        },
    }
    if jobs:
        page["_embedded"] = {"encoreJobs": jobs}
    return page


class FakeEncore:
    """
    Fake Encore API served through httpx.MockTransport.

    Routes map (method, path) to a handler returning an httpx.Response.
    Every request is recorded.
    """

    def __init__(self):
        self.requests = []
        self.routes = {}

    def on(self, method, path, status_code=200, json=None, text=None, handler=None):
        if handler is None:
            def handler(request):
                if text is not None:
                    return httpx.Response(status_code, text=text)
                if json is None:
                    return httpx.Response(status_code)
                return httpx.Response(status_code, json=json)
        self.routes[(method, path)] = handler
        return self

    def handle(self, request):
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"message": f"No route for {request.url.path}"})
        return handler(request)

    @property
    def transport(self):
        return httpx.MockTransport(self.handle)

    def calls(self, method, path):
        return sum(
            1 for request in self.requests
            if request.method == method and request.url.path == path
        )

    @property
    def last(self):
        return self.requests[-1]

    @staticmethod
    def body(request):
        return json.loads(request.content) if request.content else None


@pytest.fixture
def backend():
    """Fake Encore API."""
    return FakeEncore()


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at the fake backend."""
    return Settings(
        encore_api_url=BACKEND_URL,
        encore_bearer_token="static-token",
        osc_access_token=None,
        static_dir=str(tmp_path / "dist"),
    )


@pytest.fixture
def gateway(backend):
    """Gateway with a static credential, wired to the fake backend."""
    return ProxyGateway(
        StaticTokenProvider("static-token"),
        BACKEND_URL,
        transport=backend.transport,
    )


@pytest.fixture
def app(test_settings, gateway):
    return create_app(test_settings, gateway=gateway)


@pytest.fixture
def client(app):
    """FastAPI test client."""
    return TestClient(app)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
