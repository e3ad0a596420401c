"""Try-on job and history records, plus the wire shapes built from them."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TryOnJobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING_UPPER = "processing_upper"
    PROCESSING_LOWER = "processing_lower"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TryOnJobStatus.COMPLETED, TryOnJobStatus.FAILED})

# Edges of the job state machine. Cancellation and failures reach FAILED
# from any non-terminal state.
ALLOWED_TRANSITIONS = {
    TryOnJobStatus.PENDING: {
        TryOnJobStatus.PROCESSING_UPPER,
        TryOnJobStatus.FAILED,
    },
    TryOnJobStatus.PROCESSING_UPPER: {
        TryOnJobStatus.PROCESSING_LOWER,
        TryOnJobStatus.COMPLETED,
        TryOnJobStatus.FAILED,
    },
    TryOnJobStatus.PROCESSING_LOWER: {
        TryOnJobStatus.COMPLETED,
        TryOnJobStatus.FAILED,
    },
    TryOnJobStatus.COMPLETED: set(),
    TryOnJobStatus.FAILED: set(),
}

# Fixed per-state progress reported to clients. These are part of the
# public contract and do not measure real work.
PROGRESS_BY_STATUS = {
    TryOnJobStatus.PENDING: 0,
    TryOnJobStatus.PROCESSING_UPPER: 25,
    TryOnJobStatus.PROCESSING_LOWER: 75,
    TryOnJobStatus.COMPLETED: 100,
    TryOnJobStatus.FAILED: 0,
}


def progress_for(status: TryOnJobStatus) -> int:
    return PROGRESS_BY_STATUS[TryOnJobStatus(status)]


def is_terminal(status: TryOnJobStatus) -> bool:
    return TryOnJobStatus(status) in TERMINAL_STATUSES


def can_transition(current: TryOnJobStatus, target: TryOnJobStatus) -> bool:
    return TryOnJobStatus(target) in ALLOWED_TRANSITIONS[TryOnJobStatus(current)]


@dataclass
class TryOnRequest:
    """Caller input for a queued try-on, already stripped of transport types."""
    model_image_url: Optional[str] = None
    garment_urls: Optional[List[str]] = None
    upper_garment_url: Optional[str] = None
    lower_garment_url: Optional[str] = None
    outfit_image_url: Optional[str] = None
    category: Optional[str] = None
    seed: Optional[int] = None
    mode: Optional[str] = None
    save_to_history: bool = False


class TryOnJob(BaseModel):
    """Tracks the lifecycle of one queued try-on."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str

    # Inputs, fixed at submit time
    model_image_url: str
    garment_urls: Optional[List[str]] = None
    upper_garment_url: Optional[str] = None
    lower_garment_url: Optional[str] = None
    outfit_image_url: Optional[str] = None
    seed: int
    mode: str = "quality"
    category: str = "auto"
    save_to_history: bool = False

    # Written only by the background task (or a cancellation)
    status: TryOnJobStatus = TryOnJobStatus.PENDING
    upper_prediction_id: Optional[str] = None
    lower_prediction_id: Optional[str] = None
    upper_result_url: Optional[str] = None
    result_image_url: Optional[str] = None
    processing_time: Optional[int] = None  # milliseconds
    error_message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    history_id: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(protected_namespaces=())


class TryOnHistory(BaseModel):
    """User-visible copy of a completed try-on."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    model_image_url: str
    garment_urls: Optional[List[str]] = None
    upper_garment_url: Optional[str] = None
    lower_garment_url: Optional[str] = None
    result_image_url: str
    prediction_id: str
    processing_time: int
    category: Optional[str] = None
    is_saved: bool = False
    model_name: str = "tryon-v1.6"
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(protected_namespaces=())


# ---------------------------------------------------------------------------
# Wire shapes (camelCase on the wire, snake_case in Python)
# ---------------------------------------------------------------------------

class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class JobSubmitResponse(CamelModel):
    job_id: str
    status: TryOnJobStatus
    message: str
    created_at: datetime


class JobStatusResponse(CamelModel):
    job_id: str
    status: TryOnJobStatus
    progress: int
    result_image_url: Optional[str] = None
    upper_result_url: Optional[str] = None
    processing_time: Optional[int] = None
    error_message: Optional[str] = None
    history_id: Optional[str] = None
    garment_urls: Optional[List[str]] = None
    upper_garment_url: Optional[str] = None
    lower_garment_url: Optional[str] = None
    model_image_url: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_job(cls, job: TryOnJob) -> "JobStatusResponse":
        return cls(
            job_id=job.id,
            status=job.status,
            progress=progress_for(job.status),
            result_image_url=job.result_image_url,
            upper_result_url=job.upper_result_url,
            processing_time=job.processing_time,
            error_message=job.error_message,
            history_id=job.history_id,
            garment_urls=job.garment_urls,
            upper_garment_url=job.upper_garment_url,
            lower_garment_url=job.lower_garment_url,
            model_image_url=job.model_image_url,
            created_at=job.created_at,
            completed_at=job.completed_at,
            metadata=job.metadata,
        )


class JobUpdatePayload(CamelModel):
    """Body of every event pushed to live subscribers."""
    job_id: str
    user_id: str
    status: TryOnJobStatus
    progress: int
    result_image_url: Optional[str] = None
    upper_result_url: Optional[str] = None
    processing_time: Optional[int] = None
    error_message: Optional[str] = None
    history_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_job(cls, job: TryOnJob) -> "JobUpdatePayload":
        return cls(
            job_id=job.id,
            user_id=job.user_id,
            status=job.status,
            progress=progress_for(job.status),
            result_image_url=job.result_image_url,
            upper_result_url=job.upper_result_url,
            processing_time=job.processing_time,
            error_message=job.error_message,
            history_id=job.history_id,
            completed_at=job.completed_at,
            metadata=job.metadata,
        )


class HistoryItem(CamelModel):
    id: str
    model_image_url: str
    garment_urls: Optional[List[str]] = None
    upper_garment_url: Optional[str] = None
    lower_garment_url: Optional[str] = None
    result_image_url: str
    prediction_id: str
    processing_time: int
    is_saved: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: TryOnHistory) -> "HistoryItem":
        return cls(
            id=record.id,
            model_image_url=record.model_image_url,
            garment_urls=record.garment_urls,
            upper_garment_url=record.upper_garment_url,
            lower_garment_url=record.lower_garment_url,
            result_image_url=record.result_image_url,
            prediction_id=record.prediction_id,
            processing_time=record.processing_time,
            is_saved=record.is_saved,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
