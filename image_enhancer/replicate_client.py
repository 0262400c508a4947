"""
Prediction API client: job submission and status polling.

Every request goes through the application-side proxy. Status URLs handed
back by the remote API are absolute (https://api.replicate.com/v1/...), so
they are rewritten onto the proxy prefix before being polled.
"""
from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, Dict, Optional

import httpx
import structlog

from .config import settings
from .errors import (
    CredentialsError,
    PollDeadlineExceeded,
    ProtocolError,
    classify,
)
from .schemas import (
    EnhancementJob,
    JobStatus,
    PredictionRequest,
    PredictionResponse,
)

log = structlog.get_logger()


def validate_credentials(credentials: Optional[str], prefix: str = settings.token_prefix) -> str:
    """Raise CredentialsError unless `credentials` is a usable API token."""
    if not credentials or not isinstance(credentials, str):
        raise CredentialsError("API token is not configured")
    if not credentials.startswith(prefix) or len(credentials) == len(prefix):
        raise CredentialsError(f"API token must start with {prefix!r}")
    if any(ch.isspace() for ch in credentials):
        raise CredentialsError("API token contains whitespace")
    return credentials


def auth_headers(credentials: str) -> Dict[str, str]:
    return {
        "Authorization": f"Token {credentials}",
        "Content-Type": "application/json",
    }


def rewrite_to_proxy(url: str, remote_prefix: str, proxy_prefix: str) -> str:
    if url.startswith(remote_prefix):
        return proxy_prefix + url[len(remote_prefix):]
    return url


async def _get_prediction(client: httpx.AsyncClient, url: str, **kw) -> PredictionResponse:
    res = await client.request(url=url, **kw)
    res.raise_for_status()
    return PredictionResponse.model_validate(res.json())


class JobSubmitter:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        proxy_prefix: str = settings.proxy_prefix,
        remote_api_prefix: str = settings.remote_api_prefix,
        token_prefix: str = settings.token_prefix,
    ):
        self.client = client
        self.proxy_prefix = proxy_prefix.rstrip("/")
        self.remote_api_prefix = remote_api_prefix.rstrip("/")
        self.token_prefix = token_prefix

    @property
    def predictions_url(self) -> str:
        return f"{self.proxy_prefix}/predictions"

    async def submit(self, payload: str, model_version: str, credentials: Optional[str]) -> EnhancementJob:
        """
        Start a prediction for `payload` (a data URI).

        Credentials are checked before anything is sent; a bad token never
        costs a request.
        """
        try:
            validate_credentials(credentials, self.token_prefix)
        except CredentialsError as exc:
            raise classify(exc) from exc

        body = PredictionRequest(version=model_version, input={"image": payload})
        log.info("prediction_submit", url=self.predictions_url, version=model_version[:12])
        try:
            prediction = await _get_prediction(
                self.client, self.predictions_url, method="POST",
                json=body.model_dump(), headers=auth_headers(credentials),
            )
            if not prediction.urls or not prediction.urls.get:
                raise ProtocolError("prediction response carries no polling URL")
            status = JobStatus.from_response(prediction)
        except Exception as exc:  # noqa: BLE001
            log.error("prediction_submit_failed", err=str(exc))
            raise classify(exc) from exc

        job = EnhancementJob(
            id=prediction.id,
            status_endpoint=self._proxied(prediction.urls.get),
            cancel_endpoint=self._proxied(prediction.urls.cancel) if prediction.urls.cancel else None,
            status=status,
        )
        log.info("prediction_created", job_id=job.id, status=status.state.value,
                 poll_url=job.status_endpoint)
        return job

    def _proxied(self, url: str) -> str:
        return rewrite_to_proxy(url, self.remote_api_prefix, self.proxy_prefix)


class JobPoller:
    """
    Polls one job at a time until it reaches a terminal status.

    The deadline is measured from the first poll with a monotonic clock and
    checked before every attempt; it also bounds each in-flight request.
    Reaching it abandons the job locally, no cancel request is sent.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        interval: float = settings.poll_interval,
        deadline: float = settings.poll_deadline,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.interval = interval
        self.deadline = deadline
        self._clock = clock
        self._sleep = sleep

    async def poll_until_terminal(
        self,
        job: EnhancementJob,
        credentials: str,
        *,
        interval: Optional[float] = None,
        deadline: Optional[float] = None,
    ) -> JobStatus:
        interval = self.interval if interval is None else interval
        deadline = self.deadline if deadline is None else deadline
        if job.status.terminal:
            return job.status

        headers = auth_headers(credentials)
        started = self._clock()
        next_tick = started

        while True:
            remaining = started + deadline - self._clock()
            if remaining <= 0:
                log.warning("poll_deadline_exceeded", job_id=job.id,
                            polls=job.polls, deadline=deadline)
                raise classify(PollDeadlineExceeded(job.id, deadline))

            try:
                status = await asyncio.wait_for(self._poll_once(job, headers), timeout=remaining)
            except asyncio.TimeoutError as exc:
                log.warning("poll_deadline_exceeded", job_id=job.id,
                            polls=job.polls, deadline=deadline, in_flight=True)
                raise classify(PollDeadlineExceeded(job.id, deadline)) from exc

            if job.advance(status):
                log.info("job_status", job_id=job.id, status=status.state.value,
                         elapsed=round(self._clock() - started, 2))
            if job.status.terminal:
                return job.status

            next_tick += interval
            now = self._clock()
            delay = min(next_tick - now, started + deadline - now)
            if delay > 0:
                await self._sleep(delay)

    async def _poll_once(self, job: EnhancementJob, headers: Dict[str, str]) -> JobStatus:
        job.polls += 1
        log.debug("job_poll", job_id=job.id, attempt=job.polls)
        try:
            prediction = await _get_prediction(
                self.client, job.status_endpoint, method="GET", headers=headers,
            )
            return JobStatus.from_response(prediction)
        except Exception as exc:  # noqa: BLE001
            log.error("job_poll_failed", job_id=job.id, attempt=job.polls, err=str(exc))
            raise classify(exc) from exc
