"""Wire schemas for the prediction API and the pipeline's data model"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


# ────────────────────────────────────────────────────────────────
#  Prediction API (wire format)
# ────────────────────────────────────────────────────────────────
class PredictionRequest(BaseModel):
    version: str = Field(..., description="Model version identifier")
    input: Dict[str, Any] = Field(..., description="Must contain 'image' key with a data URI")


class PredictionUrls(BaseModel):
    get: Optional[str] = None
    cancel: Optional[str] = None


class PredictionResponse(BaseModel):
    id: str
    status: str
    urls: Optional[PredictionUrls] = None
    output: Any = None
    error: Any = None


# ────────────────────────────────────────────────────────────────
#  Job status
# ────────────────────────────────────────────────────────────────
class JobState(str, Enum):
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


TERMINAL_STATES = frozenset({JobState.SUCCEEDED, JobState.FAILED, JobState.CANCELED})

# starting -> processing -> terminal, never backwards
_ORDER = {
    JobState.STARTING: 0,
    JobState.PROCESSING: 1,
    JobState.SUCCEEDED: 2,
    JobState.FAILED: 2,
    JobState.CANCELED: 2,
}


@dataclass(frozen=True)
class JobStatus:
    """
    Status of a remote job.

    Only SUCCEEDED carries `artifact_location`; FAILED and CANCELED carry
    whatever `detail` the remote reported.
    """
    state: JobState
    artifact_location: Optional[str] = None
    detail: Any = None

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @classmethod
    def from_response(cls, resp: PredictionResponse) -> "JobStatus":
        state = JobState(resp.status)
        if state is JobState.SUCCEEDED:
            output = resp.output
            # The model may return a list of URLs; the first one is the image
            if isinstance(output, list):
                output = output[0] if output else None
            return cls(state, artifact_location=str(output) if output else None)
        if state in (JobState.FAILED, JobState.CANCELED):
            return cls(state, detail=resp.error)
        return cls(state)


@dataclass
class EnhancementJob:
    """A submitted prediction. `cancel_endpoint` is kept for diagnostics only; no cancel is ever sent."""
    id: str
    status_endpoint: str
    cancel_endpoint: Optional[str] = None
    status: JobStatus = field(default_factory=lambda: JobStatus(JobState.STARTING))
    polls: int = 0

    def advance(self, status: JobStatus) -> bool:
        """
        Apply a freshly polled status.

        A report that would move the job backwards is ignored. Returns True
        when the stored status changed.
        """
        if self.status.terminal:
            raise RuntimeError(
                f"job {self.id} is already {self.status.state.value}, cannot move to {status.state.value}"
            )
        if _ORDER[status.state] < _ORDER[self.status.state]:
            return False
        changed = status != self.status
        self.status = status
        return changed


# ────────────────────────────────────────────────────────────────
#  Payloads and results
# ────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class EnhancementRequest:
    data: bytes
    media_type: Optional[str] = None

    def __post_init__(self):
        if not self.data:
            raise ValueError("image data is empty")

    @classmethod
    def from_path(cls, path: Path | str, media_type: Optional[str] = None) -> "EnhancementRequest":
        return cls(Path(path).read_bytes(), media_type)


@dataclass(frozen=True)
class BinaryArtifact:
    data: bytes
    media_type: Optional[str]
    source_url: str


class ResourceHandle:
    """Owned reference to an enhanced image. Readable until released."""

    def __init__(self, data: bytes, media_type: str):
        self.id = f"blob:{uuid.uuid4().hex}"
        self.media_type = media_type
        self.size = len(data)
        self._data: Optional[bytes] = data

    @property
    def live(self) -> bool:
        return self._data is not None

    @property
    def data(self) -> bytes:
        if self._data is None:
            raise ValueError(f"resource {self.id} has been released")
        return self._data

    def _drop(self) -> None:
        self._data = None

    def __repr__(self) -> str:
        state = "live" if self.live else "released"
        return f"<ResourceHandle {self.id} {self.media_type} {self.size}B {state}>"
