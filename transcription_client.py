"""Remote transcription client with retries, an offline queue and local fallback.

Segments are uploaded as multipart form data to ``{base_url}/transcriptions``.
Failed attempts are retried with exponential backoff. While the network is
unreachable, segment paths are queued and drained in FIFO order once it comes
back. After enough consecutive jobs exhaust their retries, the next one is
handed to the on-device fallback recognizer.

``reachable``, the offline queue and the consecutive failure count are only
read or written while holding ``_lock``; uploads run outside it.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional, Sequence

import requests

from errors import (
    CANCELLED,
    DECODE_ERROR,
    EXHAUSTED_RETRIES,
    FALLBACK_FAILURE,
    FILE_IO_ERROR,
    NETWORK_ERROR,
    AppError,
)
from interfaces import FallbackRecognizer
from models import AudioSegment, JobStatus, TranscriptionJob

logger = logging.getLogger(__name__)

DrainCallback = Callable[[TranscriptionJob], None]


def extract_text(payload: object) -> str:
    """Pick ``text``, then ``transcription``, from a response body."""
    if not isinstance(payload, dict):
        raise AppError(DECODE_ERROR, f"expected a JSON object, got {type(payload).__name__}")
    for key in ("text", "transcription"):
        value = payload.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise AppError(DECODE_ERROR, f"field {key!r} is not a string")
        return value
    return ""


class TranscriptionClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        fallback: Optional[FallbackRecognizer] = None,
        max_retry: int = 5,
        base_delay_s: float = 1.0,
        request_timeout_s: float = 30.0,
        language: str = "english",
        fallback_after: Optional[int] = None,
        session: Optional[requests.Session] = None,
        sleep: Optional[Callable[[float], None]] = None,
        on_drained: Optional[DrainCallback] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._fallback = fallback
        self._max_retry = max(1, max_retry)
        self._base_delay_s = base_delay_s
        self._request_timeout_s = request_timeout_s
        self._language = language
        self._fallback_after = fallback_after or self._max_retry
        self._session = session or requests.Session()
        self._cancel_event = threading.Event()
        self._sleep = sleep or self._wait
        self.on_drained = on_drained

        self._lock = threading.Lock()
        self._reachable = True
        self._offline_queue: list[str] = []
        self._consecutive_failures = 0
        self._drain_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="offline-drain")

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/transcriptions"

    @property
    def reachable(self) -> bool:
        with self._lock:
            return self._reachable

    @property
    def offline_queue(self) -> list[str]:
        with self._lock:
            return list(self._offline_queue)

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    def set_api_key(self, api_key: str) -> None:
        self._api_key = api_key

    # ------------------------------------------------------------------
    # Transcription
    # ------------------------------------------------------------------

    def transcribe_one(self, segment: AudioSegment) -> TranscriptionJob:
        return self.transcribe_path(segment.file_path, segment=segment)

    def transcribe_many(
        self,
        segments: Sequence[AudioSegment],
        on_job: Optional[Callable[[int, TranscriptionJob], None]] = None,
    ) -> list[TranscriptionJob]:
        """Transcribe ``segments`` one after another; jobs keep the input order.

        ``on_job`` is called with the slot index as soon as each job settles.
        """
        jobs = []
        for slot, segment in enumerate(segments):
            job = self.transcribe_one(segment)
            if on_job:
                on_job(slot, job)
            jobs.append(job)
        return jobs

    @staticmethod
    def successful_texts(jobs: Sequence[TranscriptionJob]) -> list[str]:
        return [job.text for job in jobs if job.succeeded]

    def transcribe_path(self, path: str, segment: Optional[AudioSegment] = None) -> TranscriptionJob:
        job = TranscriptionJob(path=path, segment=segment)
        with self._lock:
            job.consecutive_failures_at_submission = self._consecutive_failures
            if not self._reachable:
                self._offline_queue.append(path)
                job.status = JobStatus.OFFLINE_QUEUED
                logger.info("Network unreachable, queued %s (%d waiting)", path, len(self._offline_queue))
                return job

        job.status = JobStatus.IN_FLIGHT
        for attempt in range(self._max_retry):
            if self._cancel_event.is_set():
                return self._cancelled(job)
            job.attempt = attempt
            try:
                text = self._upload(path)
            except AppError as exc:
                delay = self._base_delay_s * (2 ** attempt)
                logger.warning(
                    "Upload of %s failed (attempt %d/%d, %s: %s), waiting %.1fs",
                    path, attempt + 1, self._max_retry, exc.code, exc.message, delay,
                )
                self._sleep(delay)
                continue
            with self._lock:
                self._consecutive_failures = 0
            job.text = text
            job.status = JobStatus.SUCCEEDED
            return job

        if self._cancel_event.is_set():
            return self._cancelled(job)

        with self._lock:
            self._consecutive_failures += 1
            use_fallback = self._consecutive_failures >= self._fallback_after
            if use_fallback:
                self._consecutive_failures = 0
        if not use_fallback:
            logger.error("Giving up on %s after %d attempts", path, self._max_retry)
            job.status = JobStatus.FAILED_PERMANENTLY
            job.error_code = EXHAUSTED_RETRIES
            return job
        return self._run_fallback(job)

    def _upload(self, path: str) -> str:
        file_path = Path(path)
        extension = file_path.suffix.lstrip(".").lower() or "wav"
        try:
            with file_path.open("rb") as fh:
                response = self._session.post(
                    self.endpoint,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    files={"file": (file_path.name, fh, f"audio/{extension}")},
                    data={"language": self._language, "response_format": "json"},
                    timeout=self._request_timeout_s,
                )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise AppError(NETWORK_ERROR, str(exc)) from exc
        except OSError as exc:
            raise AppError(FILE_IO_ERROR, str(exc)) from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise AppError(DECODE_ERROR, f"invalid JSON body: {exc}") from exc
        return extract_text(payload)

    def _run_fallback(self, job: TranscriptionJob) -> TranscriptionJob:
        job.via_fallback = True
        if self._fallback is None:
            logger.error("Remote service keeps failing and no local recognizer is configured")
            job.status = JobStatus.FAILED_PERMANENTLY
            job.error_code = FALLBACK_FAILURE
            return job
        logger.warning("Remote service keeps failing, using local recognizer for %s", job.path)
        try:
            job.text = self._fallback.transcribe(job.path)
        except Exception as exc:
            logger.error("Local recognizer failed for %s: %s", job.path, exc)
            job.status = JobStatus.FAILED_PERMANENTLY
            job.error_code = FALLBACK_FAILURE
            return job
        job.status = JobStatus.SUCCEEDED
        return job

    def _cancelled(self, job: TranscriptionJob) -> TranscriptionJob:
        logger.info("Transcription of %s cancelled", job.path)
        job.status = JobStatus.FAILED_PERMANENTLY
        job.error_code = CANCELLED
        return job

    def _wait(self, delay: float) -> None:
        self._cancel_event.wait(delay)

    # ------------------------------------------------------------------
    # Reachability and offline queue
    # ------------------------------------------------------------------

    def set_reachable(self, reachable: bool) -> Optional[Future]:
        """Record the network status; going back online drains the queue.

        Returns the future of the drain, or ``None`` when nothing was queued.
        """
        with self._lock:
            was_reachable = self._reachable
            self._reachable = reachable
            if not reachable or was_reachable or not self._offline_queue:
                if reachable != was_reachable:
                    logger.info("Network %s", "reachable" if reachable else "unreachable")
                return None
            pending = list(self._offline_queue)
            self._offline_queue.clear()
        logger.info("Network reachable, draining %d queued segments", len(pending))
        try:
            return self._drain_pool.submit(self._drain, pending)
        except RuntimeError:
            logger.warning("Client closed, keeping %d segments queued", len(pending))
            with self._lock:
                self._offline_queue[:0] = pending
            return None

    def drain_offline_queue(self) -> list[TranscriptionJob]:
        """Transcribe every queued path now, in FIFO order."""
        with self._lock:
            pending = list(self._offline_queue)
            self._offline_queue.clear()
        return self._drain(pending)

    def _drain(self, pending: list[str]) -> list[TranscriptionJob]:
        jobs = []
        for path in pending:
            job = self.transcribe_path(path)
            jobs.append(job)
            if job.status == JobStatus.FAILED_PERMANENTLY:
                logger.error("Queued segment %s failed during drain (%s)", path, job.error_code)
            if self.on_drained:
                try:
                    self.on_drained(job)
                except Exception:
                    logger.exception("Drain callback failed for %s", path)
        return jobs

    def close(self) -> None:
        """Abort backoff waits and stop the drain worker."""
        self._cancel_event.set()
        self._drain_pool.shutdown(wait=False, cancel_futures=True)
        self._session.close()
