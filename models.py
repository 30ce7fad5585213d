"""Core data models for the app."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class CaptureState(str, Enum):
    IDLE = "IDLE"
    AWAITING_PERMISSION = "AWAITING_PERMISSION"
    RECORDING = "RECORDING"
    PAUSED = "PAUSED"
    STOPPED = "STOPPED"
    ERROR = "ERROR"


class SessionEventKind(str, Enum):
    INTERRUPTION_BEGAN = "interruption_began"
    INTERRUPTION_ENDED = "interruption_ended"
    ROUTE_CHANGED = "route_changed"


class ExportStatus(str, Enum):
    PENDING = "pending"
    EXPORTING = "exporting"
    EXPORTED = "exported"
    FAILED = "failed"


class JobStatus(str, Enum):
    QUEUED = "queued"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED_PERMANENTLY = "failed_permanently"
    OFFLINE_QUEUED = "offline_queued"


@dataclass
class AudioBlock:
    pcm16_bytes: bytes
    sample_rate: int = 48000
    channels: int = 1
    timestamp_ms: int = 0


@dataclass
class SessionEvent:
    kind: SessionEventKind
    should_resume: bool = False


@dataclass(frozen=True)
class RecordingFile:
    path: str
    name: str
    created_at: datetime
    sample_rate: int
    frames: int = 0

    @property
    def duration_s(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frames / self.sample_rate


@dataclass
class AudioSegment:
    index: int
    source: RecordingFile
    start_offset_s: float
    end_offset_s: float
    file_path: str
    export_status: ExportStatus = ExportStatus.PENDING
    error: str = ""

    @property
    def duration_s(self) -> float:
        return self.end_offset_s - self.start_offset_s


@dataclass
class TranscriptionJob:
    path: str
    segment: Optional[AudioSegment] = None
    attempt: int = 0
    status: JobStatus = JobStatus.QUEUED
    text: str = ""
    error_code: str = ""
    via_fallback: bool = False
    consecutive_failures_at_submission: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.SUCCEEDED


@dataclass
class RecordingEntry:
    """Persisted result of one recording.

    ``segment_transcripts[i]`` belongs to ``segment_paths[i]``; ``None`` marks
    a segment whose transcript is missing (failed or still offline-queued).
    """

    original_path: str
    segment_paths: list[str] = field(default_factory=list)
    segment_transcripts: list[Optional[str]] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "original_path": self.original_path,
            "segment_paths": list(self.segment_paths),
            "segment_transcripts": list(self.segment_transcripts),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RecordingEntry":
        return cls(
            id=uuid.UUID(str(data["id"])),
            original_path=str(data["original_path"]),
            segment_paths=[str(p) for p in data.get("segment_paths", [])],
            segment_transcripts=list(data.get("segment_transcripts", [])),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class PipelineResult:
    entry: RecordingEntry
    segments: list[AudioSegment] = field(default_factory=list)
    jobs: list[TranscriptionJob] = field(default_factory=list)
    persisted: bool = False
    error_code: str = ""

    @property
    def failed_segments(self) -> list[AudioSegment]:
        return [s for s in self.segments if s.export_status == ExportStatus.FAILED]
