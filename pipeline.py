"""Composition root: segment a stopped recording, transcribe it, persist the entry."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Optional

from errors import PERSISTENCE_ERROR, AppError
from interfaces import PersistenceGateway
from models import (
    ExportStatus,
    JobStatus,
    PipelineResult,
    RecordingEntry,
    RecordingFile,
    TranscriptionJob,
)
from segmenter import Segmenter
from transcription_client import TranscriptionClient

logger = logging.getLogger(__name__)

ResultCallback = Callable[[PipelineResult], None]
ErrorCallback = Callable[[str, str], None]


class Pipeline:
    def __init__(
        self,
        segmenter: Segmenter,
        client: TranscriptionClient,
        gateway: PersistenceGateway,
        segment_duration_s: float = 30.0,
        on_complete: Optional[ResultCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._segmenter = segmenter
        self._client = client
        self._gateway = gateway
        self._segment_duration_s = segment_duration_s
        self._on_complete = on_complete
        self._on_error = on_error
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pipeline")
        # segment path -> (entry, slot) for segments still waiting for a transcript
        self._awaiting: dict[str, tuple[RecordingEntry, int]] = {}
        self._awaiting_lock = threading.Lock()
        self._in_progress: set = set()
        client.on_drained = self._on_drained

    def submit(self, recording: RecordingFile) -> Future:
        """Run the pipeline for ``recording`` on the background worker."""
        return self._executor.submit(self.run, recording)

    def run(self, recording: RecordingFile) -> PipelineResult:
        logger.info("Processing %s", recording.path)
        try:
            segments = self._segmenter.segment(recording, self._segment_duration_s)
        except AppError as exc:
            self._emit_error(exc.code, exc.message)
            segments = []

        exported = [s for s in segments if s.export_status == ExportStatus.EXPORTED]
        entry = RecordingEntry(
            original_path=recording.path,
            segment_paths=[s.file_path for s in exported],
            segment_transcripts=[None] * len(exported),
            created_at=self._clock(),
        )
        # Slots are registered before the first upload so a drain that finishes
        # while later segments are still in flight can fill them.
        with self._awaiting_lock:
            self._in_progress.add(entry.id)
            for slot, segment in enumerate(exported):
                self._awaiting[segment.file_path] = (entry, slot)

        try:
            jobs = self._client.transcribe_many(
                exported, on_job=lambda slot, job: self._settle(entry, slot, job)
            )
        finally:
            with self._awaiting_lock:
                self._in_progress.discard(entry.id)

        result = PipelineResult(entry=entry, segments=segments, jobs=jobs)
        if result.failed_segments:
            logger.warning(
                "%d segments of %s were not exported and are left out of the entry",
                len(result.failed_segments), recording.path,
            )
        result.persisted = self._save(entry)
        if not result.persisted:
            result.error_code = PERSISTENCE_ERROR
        if self._on_complete:
            self._on_complete(result)
        return result

    def shutdown(self, cancel: bool = False) -> None:
        if cancel:
            self._client.close()
        self._executor.shutdown(wait=not cancel, cancel_futures=cancel)

    def _settle(self, entry: RecordingEntry, slot: int, job: TranscriptionJob) -> None:
        if job.status == JobStatus.OFFLINE_QUEUED:
            return
        with self._awaiting_lock:
            self._awaiting.pop(job.path, None)
            if job.succeeded:
                entry.segment_transcripts[slot] = job.text

    def _on_drained(self, job: TranscriptionJob) -> None:
        with self._awaiting_lock:
            if job.status == JobStatus.OFFLINE_QUEUED:
                return
            awaiting = self._awaiting.pop(job.path, None)
            if awaiting is None or not job.succeeded:
                return
            entry, slot = awaiting
            entry.segment_transcripts[slot] = job.text
            # run() saves the entry itself once its own uploads are done
            save_now = entry.id not in self._in_progress
        logger.info("Filled transcript %d of recording %s after reconnect", slot, entry.id)
        if save_now:
            self._save(entry)

    def _save(self, entry: RecordingEntry) -> bool:
        try:
            self._gateway.save(entry)
        except Exception as exc:
            logger.error("Saving recording %s failed: %s", entry.id, exc)
            self._emit_error(PERSISTENCE_ERROR, str(exc))
            return False
        return True

    def _emit_error(self, code: str, message: str) -> None:
        if self._on_error:
            self._on_error(code, message)
