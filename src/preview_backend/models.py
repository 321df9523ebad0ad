from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict


class GenerationMethod(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"
    EXTERNAL_TOOL = "external_tool"
    PLACEHOLDER = "placeholder"


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_bytes: bytes
    declared_mime_type: str
    document_id: str

    @property
    def size(self) -> int:
        return len(self.source_bytes)


class StrategyResult(BaseModel):
    """What a strategy hands back to the orchestrator."""

    model_config = ConfigDict(frozen=True)

    image_bytes: bytes
    method: GenerationMethod
    attempt: Optional[int] = None
    placeholder_type: Optional[str] = None


class ThumbnailOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    image_bytes: bytes
    storage_key: str
    content_type: str
    method: GenerationMethod
    attempt: Optional[int] = None
    placeholder_type: Optional[str] = None
    original_size: int
    output_size: int
    elapsed_ms: int

    @property
    def method_label(self) -> str:
        if self.method is GenerationMethod.FALLBACK and self.attempt is not None:
            return f"fallback_{self.attempt}"
        return self.method.value


class OutcomeSummary(BaseModel):
    """Outcome without the image payload, for API responses."""

    document_id: str
    storage_key: str
    content_type: str
    method: str
    placeholder_type: Optional[str] = None
    original_size: int
    output_size: int
    elapsed_ms: int

    @classmethod
    def from_outcome(cls, document_id: str, outcome: ThumbnailOutcome) -> "OutcomeSummary":
        return cls(
            document_id=document_id,
            storage_key=outcome.storage_key,
            content_type=outcome.content_type,
            method=outcome.method_label,
            placeholder_type=outcome.placeholder_type,
            original_size=outcome.original_size,
            output_size=outcome.output_size,
            elapsed_ms=outcome.elapsed_ms,
        )


class ConversionResult(BaseModel):
    """Result reported by the office-to-PDF converter."""

    success: bool
    pdf_bytes: Optional[bytes] = None
    error: Optional[str] = None
    original_size: int = 0
    converted_size: Optional[int] = None
    elapsed_ms: int = 0


class JobPriority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class JobState(str, Enum):
    NOT_QUEUED = "not_queued"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"


class QueueStatus(BaseModel):
    queue_size: int
    processing: int
    by_priority: Dict[str, int]
    oldest_job: Optional[datetime] = None


class JobStatus(BaseModel):
    status: JobState
    position: Optional[int] = None
    estimated_seconds: Optional[int] = None
    retry_count: Optional[int] = None
    last_error: Optional[str] = None
