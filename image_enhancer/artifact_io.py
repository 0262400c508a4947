from __future__ import annotations

import re

import httpx
import structlog

from .config import settings
from .errors import ProtocolError, RemoteJobFailed, classify
from .schemas import BinaryArtifact, JobState, JobStatus

log = structlog.get_logger()

_ART_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)


def artifact_location(status: JobStatus) -> str:
    """URL of the finished image, or a classified RemoteProcessing error."""
    if status.state is not JobState.SUCCEEDED:
        raise classify(RemoteJobFailed(status))
    uri = status.artifact_location
    if not uri:
        raise classify(ProtocolError("prediction succeeded without an output URL"))
    if not _ART_RE.match(uri):
        raise classify(ProtocolError(f"bad artifact URL: {uri}"))
    return uri


class ResultFetcher:
    """
    Downloads finished images. Output files live on a different origin than
    the prediction API, so they go through the general cross-origin fetch
    proxy instead of the application proxy, and carry no auth header.
    """

    def __init__(self, client: httpx.AsyncClient, proxy_prefix: str = settings.fetch_proxy_prefix):
        self.client = client
        self.proxy_prefix = proxy_prefix

    def proxied(self, uri: str) -> str:
        return f"{self.proxy_prefix}{uri}"

    async def fetch(self, uri: str) -> BinaryArtifact:
        """Download artifact through the fetch proxy"""
        url = self.proxied(uri)
        log.info("artifact_fetch", uri=uri)
        try:
            res = await self.client.get(url, follow_redirects=True)
            res.raise_for_status()
        except Exception as exc:  # noqa: BLE001
            log.error("artifact_fetch_failed", uri=uri, err=str(exc))
            raise classify(exc) from exc

        media_type = res.headers.get("content-type", "").split(";")[0].strip() or None
        log.info("artifact_fetched", uri=uri, size=len(res.content), media_type=media_type)
        return BinaryArtifact(data=res.content, media_type=media_type, source_url=uri)

    async def fetch_result(self, status: JobStatus) -> BinaryArtifact:
        return await self.fetch(artifact_location(status))
