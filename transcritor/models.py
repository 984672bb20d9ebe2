"""
Data models shared by the audio pipeline and the server.

All records serialize to JSON-friendly dictionaries with snake_case keys so
they can be persisted in job directories and returned by the API as-is.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

WORDS_PER_PAGE = 250


class JobStatus(Enum):
    """Lifecycle of a transcription job."""

    PENDING = "pending"
    PREPARING = "preparing"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)


class ChunkStatus(Enum):
    """Lifecycle of one chunk within a job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class Quality(Enum):
    STANDARD = "standard"
    PREMIUM = "premium"


_CHUNK_TRANSITIONS = {
    ChunkStatus.PENDING: {ChunkStatus.PROCESSING},
    ChunkStatus.PROCESSING: {ChunkStatus.COMPLETED, ChunkStatus.ERROR},
    ChunkStatus.COMPLETED: set(),
    ChunkStatus.ERROR: set(),
}

_JOB_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PREPARING, JobStatus.ERROR},
    JobStatus.PREPARING: {JobStatus.PROCESSING, JobStatus.ERROR},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.ERROR},
    JobStatus.COMPLETED: set(),
    JobStatus.ERROR: set(),
}


@dataclass
class Segment:
    """A single span of transcribed speech on the global timeline."""

    start: float
    end: float
    text: str
    speaker: Optional[str] = None

    def shifted(self, offset: float) -> "Segment":
        return Segment(start=self.start + offset, end=self.end + offset, text=self.text, speaker=self.speaker)

    def to_dict(self) -> Dict[str, Any]:
        data = {"start": self.start, "end": self.end, "text": self.text}
        if self.speaker is not None:
            data["speaker"] = self.speaker
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Segment":
        return cls(
            start=float(data["start"]),
            end=float(data["end"]),
            text=data.get("text", ""),
            speaker=data.get("speaker"),
        )


@dataclass
class ChunkProgress:
    """Progress of one chunk. Owned by its TranscriptionJob."""

    chunk_index: int
    total_chunks: int
    start_offset: float
    status: ChunkStatus = ChunkStatus.PENDING
    text: Optional[str] = None
    segments: Optional[List[Segment]] = None
    error: Optional[str] = None

    def transition(self, status: ChunkStatus) -> None:
        """Move to ``status``; chunk states never go backwards."""
        if status not in _CHUNK_TRANSITIONS[self.status]:
            raise ValueError(f"Chunk {self.chunk_index}: illegal transition {self.status.value} -> {status.value}")
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_index": self.chunk_index,
            "total_chunks": self.total_chunks,
            "status": self.status.value,
            "text": self.text,
            "segments": [s.to_dict() for s in self.segments] if self.segments is not None else None,
            "start_offset": self.start_offset,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChunkProgress":
        segments = data.get("segments")
        return cls(
            chunk_index=int(data["chunk_index"]),
            total_chunks=int(data["total_chunks"]),
            start_offset=float(data.get("start_offset", 0.0)),
            status=ChunkStatus(data.get("status", ChunkStatus.PENDING.value)),
            text=data.get("text"),
            segments=[Segment.from_dict(s) for s in segments] if segments is not None else None,
            error=data.get("error"),
        )


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class TranscriptionJob:
    """One uploaded audio file and everything known about its transcription."""

    id: str
    user_id: str
    title: str
    original_filename: str
    file_size: int
    status: JobStatus = JobStatus.PENDING
    quality: Quality = Quality.STANDARD
    use_free_trial: bool = False
    duration: Optional[float] = None
    transcription_text: Optional[str] = None
    segments: Optional[List[Segment]] = None
    word_count: Optional[int] = None
    total_chunks: int = 0
    chunk_progress: List[ChunkProgress] = field(default_factory=list)
    error: Optional[str] = None
    credits_settled: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def completed_chunks(self) -> int:
        return sum(1 for chunk in self.chunk_progress if chunk.status == ChunkStatus.COMPLETED)

    @property
    def page_count(self) -> Optional[int]:
        if self.word_count is None:
            return None
        return pages_for_words(self.word_count)

    def transition(self, status: JobStatus) -> None:
        """Move to ``status``; terminal states are final."""
        if status not in _JOB_TRANSITIONS[self.status]:
            raise ValueError(f"Job {self.id}: illegal transition {self.status.value} -> {status.value}")
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "original_filename": self.original_filename,
            "file_size": self.file_size,
            "duration": self.duration,
            "status": self.status.value,
            "quality": self.quality.value,
            "use_free_trial": self.use_free_trial,
            "transcription_text": self.transcription_text,
            "segments": [s.to_dict() for s in self.segments] if self.segments is not None else None,
            "word_count": self.word_count,
            "page_count": self.page_count,
            "total_chunks": self.total_chunks,
            "completed_chunks": self.completed_chunks,
            "chunk_progress": [chunk.to_dict() for chunk in self.chunk_progress],
            "error": self.error,
            "credits_settled": self.credits_settled,
            "created_at": _format_datetime(self.created_at),
            "updated_at": _format_datetime(self.updated_at),
            "completed_at": _format_datetime(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscriptionJob":
        segments = data.get("segments")
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            title=data["title"],
            original_filename=data["original_filename"],
            file_size=int(data["file_size"]),
            duration=data.get("duration"),
            status=JobStatus(data.get("status", JobStatus.PENDING.value)),
            quality=Quality(data.get("quality", Quality.STANDARD.value)),
            use_free_trial=bool(data.get("use_free_trial", False)),
            transcription_text=data.get("transcription_text"),
            segments=[Segment.from_dict(s) for s in segments] if segments is not None else None,
            word_count=data.get("word_count"),
            total_chunks=int(data.get("total_chunks", 0)),
            chunk_progress=[ChunkProgress.from_dict(c) for c in data.get("chunk_progress", [])],
            error=data.get("error"),
            credits_settled=bool(data.get("credits_settled", False)),
            created_at=_parse_datetime(data.get("created_at")) or datetime.now(),
            updated_at=_parse_datetime(data.get("updated_at")) or datetime.now(),
            completed_at=_parse_datetime(data.get("completed_at")),
        )


@dataclass
class User:
    """Credit ledger view of a user."""

    id: str
    free_transcription_used: bool = False
    transcription_credits: int = 0
    # job_id -> True when the job runs on the free trial
    holds: Dict[str, bool] = field(default_factory=dict)
    settled_jobs: List[str] = field(default_factory=list)

    @property
    def free_trial_available(self) -> bool:
        return not self.free_transcription_used and not any(self.holds.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "free_transcription_used": self.free_transcription_used,
            "transcription_credits": self.transcription_credits,
            "holds": dict(self.holds),
            "settled_jobs": list(self.settled_jobs),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(
            id=data["id"],
            free_transcription_used=bool(data.get("free_transcription_used", False)),
            transcription_credits=int(data.get("transcription_credits", 0)),
            holds=dict(data.get("holds", {})),
            settled_jobs=list(data.get("settled_jobs", [])),
        )


def pages_for_words(word_count: int) -> int:
    """Pages billed for a transcript: one page per 250 words, rounded up."""
    return math.ceil(word_count / WORDS_PER_PAGE)
