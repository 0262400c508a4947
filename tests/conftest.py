"""Pytest configuration to make the project root importable as a package.

Also provides the fakes shared by the pipeline tests: a scripted prediction
API behind ``httpx.MockTransport`` and a manual clock for the poller.
"""

import io
import os
import sys
from typing import Callable, Dict, List, Optional

import httpx
import pytest
from PIL import Image

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from image_enhancer.schemas import EnhancementRequest  # noqa: E402

TOKEN = "r8_testtoken123"
BASE_URL = "http://proxy.test"
REMOTE = "https://api.replicate.com/v1"
FETCH_PROXY = "https://cors.test/fetch/"
OUTPUT_URL = "https://replicate.delivery/pbxt/abc/output.png"


def png_bytes(size=(8, 8), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color=color).save(buf, format="PNG")
    return buf.getvalue()


def prediction(status: str, job_id: str = "job123", output=None, error=None) -> Dict:
    return {
        "id": job_id,
        "status": status,
        "urls": {
            "get": f"{REMOTE}/predictions/{job_id}",
            "cancel": f"{REMOTE}/predictions/{job_id}/cancel",
        },
        "output": output,
        "error": error,
    }


class FakeReplicate:
    """
    Scripted stand-in for the proxy, the prediction API and the fetch proxy.

    `polls` is consumed one entry per status request; the last entry repeats
    once the script runs out. Entries are dicts (JSON bodies) or
    httpx.Response / exceptions to return or raise as-is.
    """

    def __init__(self, submit=None, polls=None, artifact: Optional[bytes] = None,
                 artifact_type: str = "image/png"):
        self.submit = submit if submit is not None else prediction("starting")
        self.polls: List = list(polls or [])
        self.artifact = artifact if artifact is not None else png_bytes((16, 16))
        self.artifact_type = artifact_type
        self.requests: List[httpx.Request] = []
        self.on_poll: Optional[Callable[[], None]] = None

    def _reply(self, entry, request):
        if isinstance(entry, Exception):
            raise entry
        if isinstance(entry, httpx.Response):
            return entry
        return httpx.Response(200, json=entry)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url.startswith(FETCH_PROXY):
            return httpx.Response(200, content=self.artifact,
                                  headers={"content-type": self.artifact_type})
        if request.method == "POST" and request.url.path == "/api/predictions":
            return self._reply(self.submit, request)
        if request.method == "GET" and request.url.path.startswith("/api/predictions/"):
            if self.on_poll is not None:
                self.on_poll()
            entry = self.polls.pop(0) if len(self.polls) > 1 else self.polls[0]
            return self._reply(entry, request)
        return httpx.Response(404, json={"detail": "not found"})

    # request views
    @property
    def submits(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]

    @property
    def poll_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests
                if r.method == "GET" and r.url.path.startswith("/api/predictions/")]

    @property
    def fetches(self) -> List[httpx.Request]:
        return [r for r in self.requests if str(r.url).startswith(FETCH_PROXY)]


class ManualClock:
    """Monotonic clock that only moves when the poller sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def image_request() -> EnhancementRequest:
    return EnhancementRequest(png_bytes(), "image/png")


def make_pipeline(fake: FakeReplicate, clock: ManualClock, *, interval: float = 2.5,
                  deadline: float = 180.0):
    from image_enhancer.artifact_io import ResultFetcher
    from image_enhancer.pipeline import EnhancementPipeline
    from image_enhancer.replicate_client import JobPoller, JobSubmitter

    client = mock_client(fake)
    return EnhancementPipeline(
        JobSubmitter(client, proxy_prefix="/api", remote_api_prefix=REMOTE, token_prefix="r8_"),
        JobPoller(client, interval=interval, deadline=deadline, clock=clock, sleep=clock.sleep),
        ResultFetcher(client, proxy_prefix=FETCH_PROXY),
        model_version="test-version",
        token_prefix="r8_",
    )
