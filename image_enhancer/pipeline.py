"""
Enhancement pipeline facade.

    encode -> submit -> poll until terminal -> fetch -> wrap

One job per pipeline at a time. The pipeline owns the "current" result
handle: installing a new one always releases the previous one first.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar, Union

import httpx
import structlog

from .artifact_io import ResultFetcher
from .codec import ImageCodec
from .config import Settings, settings
from .errors import CredentialsError, EnhancementError, classify
from .replicate_client import JobPoller, JobSubmitter, validate_credentials
from .schemas import BinaryArtifact, EnhancementJob, EnhancementRequest, ResourceHandle

log = structlog.get_logger()

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok = True


@dataclass(frozen=True)
class Err:
    error: EnhancementError
    ok = False


Result = Union[Ok[T], Err]


class PipelineState(str, Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    POLLING = "polling"
    FETCHING = "fetching"
    DONE = "done"
    FAILED = "failed"


class PipelineBusyError(RuntimeError):
    """enhance() was called while a previous call was still running."""


class EnhancementPipeline:
    def __init__(
        self,
        submitter: JobSubmitter,
        poller: JobPoller,
        fetcher: ResultFetcher,
        codec: Optional[ImageCodec] = None,
        *,
        model_version: str = settings.model_version,
        token_prefix: str = settings.token_prefix,
    ):
        self.submitter = submitter
        self.poller = poller
        self.fetcher = fetcher
        self.codec = codec or ImageCodec()
        self.model_version = model_version
        self.token_prefix = token_prefix

        self.state = PipelineState.IDLE
        self.job: Optional[EnhancementJob] = None
        self._current: Optional[ResourceHandle] = None
        self._in_flight = False
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(
        cls,
        cfg: Settings = settings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "EnhancementPipeline":
        owned = client is None
        if client is None:
            client = httpx.AsyncClient(base_url=cfg.proxy_base_url, timeout=cfg.http_timeout)
        pipeline = cls(
            JobSubmitter(
                client,
                proxy_prefix=cfg.proxy_prefix,
                remote_api_prefix=cfg.remote_api_prefix,
                token_prefix=cfg.token_prefix,
            ),
            JobPoller(client, interval=cfg.poll_interval, deadline=cfg.poll_deadline),
            ResultFetcher(client, proxy_prefix=cfg.fetch_proxy_prefix),
            model_version=cfg.model_version,
            token_prefix=cfg.token_prefix,
        )
        if owned:
            pipeline._client = client
        return pipeline

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def current(self) -> Optional[ResourceHandle]:
        return self._current

    async def enhance(self, image: EnhancementRequest, credentials: Optional[str]) -> Result[ResourceHandle]:
        """
        Run one enhancement end to end.

        Returns Ok(handle) with the caller owning `handle`, or Err(error) with
        exactly one classified error. Every failure of the run itself comes
        back as Err.

        Raises:
            PipelineBusyError: another call on this pipeline has not finished
                yet. This is the only exception enhance() raises.
        """
        try:
            validate_credentials(credentials, self.token_prefix)
        except CredentialsError as exc:
            err = classify(exc)
            log.error("enhance_rejected", kind=err.kind.value, reason=str(exc))
            return Err(err)

        if self._in_flight:
            raise PipelineBusyError("an enhancement is already in progress")

        self._in_flight = True
        try:
            artifact = await self._run(image, credentials)
            handle = self._install(artifact)
        except Exception as exc:  # noqa: BLE001
            err = classify(exc)
            self.state = PipelineState.FAILED
            log.error("enhance_failed", kind=err.kind.value, err=err.message,
                      job_id=self.job.id if self.job else None)
            return Err(err)
        finally:
            self._in_flight = False
            self.job = None

        self.state = PipelineState.DONE
        log.info("enhance_complete", handle=handle.id, size=handle.size)
        return Ok(handle)

    async def _run(self, image: EnhancementRequest, credentials: str) -> BinaryArtifact:
        self.state = PipelineState.SUBMITTING
        payload = self.codec.encode(image)
        self.job = await self.submitter.submit(payload, self.model_version, credentials)

        self.state = PipelineState.POLLING
        status = await self.poller.poll_until_terminal(self.job, credentials)

        self.state = PipelineState.FETCHING
        return await self.fetcher.fetch_result(status)

    def _install(self, artifact: BinaryArtifact) -> ResourceHandle:
        # everything that can fail happens before the previous result goes
        media_type = self.codec.media_type_of(artifact.data, artifact.media_type)
        # release first: two live results must never coexist
        previous, self._current = self._current, None
        self.codec.release(previous)
        self._current = self.codec.wrap(artifact.data, media_type)
        return self._current

    def reset(self) -> None:
        """Drop the current result, if any."""
        previous, self._current = self._current, None
        self.codec.release(previous)
        if not self._in_flight:
            self.state = PipelineState.IDLE

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "EnhancementPipeline":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
