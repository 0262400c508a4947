from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Optional

import httpx
import structlog

from .schemas import JobState, JobStatus

log = structlog.get_logger()


class ErrorKind(str, Enum):
    CONFIGURATION = "configuration"
    NETWORK = "network"
    AUTH = "auth"
    VALIDATION = "validation"
    REMOTE_PROCESSING = "remote_processing"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


_GENERIC_MESSAGE = (
    "Failed to enhance the image. The AI model might be unavailable or another "
    "error occurred. Please try again later."
)

USER_MESSAGES = {
    ErrorKind.CONFIGURATION: (
        "Configuration error: The Replicate API key is missing or invalid. "
        "The application cannot enhance images."
    ),
    ErrorKind.AUTH: (
        "Authentication failed. Please ensure your Replicate API token is valid "
        "and has the correct permissions."
    ),
    ErrorKind.VALIDATION: (
        "The AI model could not process the image. It might be an unsupported "
        "format or corrupted. Please try a different image."
    ),
    ErrorKind.NETWORK: (
        "A network error occurred. This could be a proxy issue or a problem "
        "with your connection."
    ),
    ErrorKind.TIMEOUT: "The enhancement took too long to complete. Please try again later.",
    ErrorKind.REMOTE_PROCESSING: _GENERIC_MESSAGE,
    ErrorKind.UNKNOWN: _GENERIC_MESSAGE,
}


class EnhancementError(Exception):
    """Terminal, classified outcome of a failed enhancement."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str = "",
        *,
        status: Optional[JobStatus] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value
        self.status = status
        self.http_status = http_status

    @property
    def detail(self) -> Any:
        """Remote error detail for RemoteProcessing failures."""
        return self.status.detail if self.status is not None else None

    @property
    def user_message(self) -> str:
        return USER_MESSAGES[self.kind]

    def to_dict(self) -> dict:
        out = {"kind": self.kind.value, "message": self.user_message}
        if self.http_status is not None:
            out["http_status"] = self.http_status
        if self.status is not None:
            out["status"] = self.status.state.value
            out["detail"] = self.status.detail
        return out

    def __repr__(self) -> str:
        return f"EnhancementError({self.kind.value}: {self.message})"


# Raw failures raised by the stages before classification

class CredentialsError(ValueError):
    pass


class PollDeadlineExceeded(TimeoutError):
    def __init__(self, job_id: str, deadline: float):
        super().__init__(f"job {job_id} not terminal after {deadline:.1f}s")
        self.job_id = job_id
        self.deadline = deadline


class ProtocolError(RuntimeError):
    """Remote response broke the prediction API contract."""


class RemoteJobFailed(RuntimeError):
    def __init__(self, status: JobStatus):
        super().__init__(f"remote job ended with status {status.state.value}: {status.detail!r}")
        self.status = status


def _from_http_status(code: int, exc: BaseException) -> EnhancementError:
    if code in (401, 403):
        return EnhancementError(ErrorKind.AUTH, f"HTTP {code}", http_status=code)
    if code == 422:
        return EnhancementError(ErrorKind.VALIDATION, f"HTTP {code}", http_status=code)
    if code == 0:
        return EnhancementError(ErrorKind.NETWORK, f"HTTP {code}", http_status=code)
    return EnhancementError(ErrorKind.UNKNOWN, f"HTTP {code}: {exc}", http_status=code)


def _classify(failure: Any) -> EnhancementError:
    if isinstance(failure, EnhancementError):
        return failure
    if isinstance(failure, CredentialsError):
        return EnhancementError(ErrorKind.CONFIGURATION, str(failure))
    if isinstance(failure, httpx.HTTPStatusError):
        return _from_http_status(failure.response.status_code, failure)
    if isinstance(failure, httpx.TransportError):
        return EnhancementError(ErrorKind.NETWORK, f"{type(failure).__name__}: {failure}")
    if isinstance(failure, (PollDeadlineExceeded, asyncio.TimeoutError)):
        return EnhancementError(ErrorKind.TIMEOUT, str(failure) or "deadline exceeded")
    if isinstance(failure, RemoteJobFailed):
        return EnhancementError(ErrorKind.REMOTE_PROCESSING, str(failure), status=failure.status)
    if isinstance(failure, JobStatus) and failure.state in (JobState.FAILED, JobState.CANCELED):
        return EnhancementError(
            ErrorKind.REMOTE_PROCESSING,
            f"remote job ended with status {failure.state.value}",
            status=failure,
        )
    if isinstance(failure, ProtocolError):
        return EnhancementError(ErrorKind.REMOTE_PROCESSING, str(failure))
    return EnhancementError(ErrorKind.UNKNOWN, f"{type(failure).__name__}: {failure}")


def classify(failure: Any) -> EnhancementError:
    """
    Map a raw failure (exception, terminal JobStatus or anything else) onto
    one EnhancementError kind. Never raises.
    """
    try:
        err = _classify(failure)
    except Exception as exc:  # noqa: BLE001
        log.error("classification_failed", failure=repr(failure), err=str(exc))
        return EnhancementError(ErrorKind.UNKNOWN, repr(failure))
    if err is not failure:
        log.debug("failure_classified", kind=err.kind.value, failure=type(failure).__name__)
    return err
