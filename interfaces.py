"""Protocol interfaces used by CaptureSession, TranscriptionClient and Pipeline."""

from __future__ import annotations

from typing import Callable, Protocol

from models import AudioBlock, RecordingEntry


class Recorder(Protocol):
    def start(self, on_block: Callable[[AudioBlock], None]) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def restart(self) -> None: ...

    def stop(self) -> None: ...


class PermissionProvider(Protocol):
    def request(self) -> bool: ...


class FallbackRecognizer(Protocol):
    def transcribe(self, path: str) -> str: ...


class PersistenceGateway(Protocol):
    def save(self, entry: RecordingEntry) -> None: ...

