"""Capture session state machine.

Control calls and system events are posted to a command queue and executed by
a single worker thread, which is the only code that changes the state. The
audio callback runs on the sounddevice thread and only writes the block to the
recording file and records its level.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime
from pathlib import Path
from queue import Full, Queue
from typing import Any, Callable, Optional

import numpy as np
import soundfile as sf

from config import container_for
from errors import ERROR_MESSAGES, FILE_IO_ERROR, PERMISSION_DENIED, SESSION_CONFIG_ERROR
from interfaces import PermissionProvider, Recorder
from level_meter import LevelHistory, compute_level
from models import AudioBlock, CaptureState, RecordingFile, SessionEvent, SessionEventKind

logger = logging.getLogger(__name__)

StateCallback = Callable[[CaptureState, CaptureState], None]
ErrorCallback = Callable[[str, str], None]
StoppedCallback = Callable[[RecordingFile], None]


class CaptureSession:
    def __init__(
        self,
        recorder: Recorder,
        permission: PermissionProvider,
        recordings_dir: str | Path,
        audio_format: str = "wav",
        sample_rate: int = 48000,
        level_history_size: int = 200,
        block_queue: Optional[Queue[AudioBlock]] = None,
        on_state_change: Optional[StateCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_stopped: Optional[StoppedCallback] = None,
    ) -> None:
        self._recorder = recorder
        self._permission = permission
        self._recordings_dir = Path(recordings_dir)
        self._audio_format = audio_format.lower()
        self._sample_rate = sample_rate
        self._block_queue = block_queue
        self._on_state_change = on_state_change
        self._on_error = on_error
        self._on_stopped = on_stopped

        self._state = CaptureState.IDLE
        self._error_code = ""
        self._permission_granted = False
        self._paused_by_interruption = False
        self._levels = LevelHistory(level_history_size)
        self.dropped_blocks = 0

        self._writer_lock = threading.Lock()
        self._writer: Any = None
        self._write_failed = False
        self._frames = 0
        self._pending: Optional[tuple[str, str, datetime]] = None
        self._last_recording: Optional[RecordingFile] = None

        self._commands: Queue[Optional[Callable[[], None]]] = Queue()
        self._worker = threading.Thread(target=self._run, name="capture-session", daemon=True)
        self._worker.start()

    # ------------------------------------------------------------------
    # Published state
    # ------------------------------------------------------------------

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def error_code(self) -> str:
        return self._error_code

    @property
    def permission_granted(self) -> bool:
        return self._permission_granted

    @property
    def paused_by_interruption(self) -> bool:
        return self._paused_by_interruption

    @property
    def duration_s(self) -> float:
        return self._frames / self._sample_rate if self._sample_rate else 0.0

    @property
    def current_level(self) -> float:
        return self._levels.latest

    @property
    def last_recording(self) -> Optional[RecordingFile]:
        return self._last_recording

    def levels(self) -> list[float]:
        return self._levels.snapshot()

    # ------------------------------------------------------------------
    # Control calls (return immediately)
    # ------------------------------------------------------------------

    def request_permission(self) -> None:
        self._post(self._do_request_permission)

    def start(self) -> None:
        self._post(self._do_start)

    def pause(self) -> None:
        self._post(lambda: self._do_pause(manual=True))

    def resume(self) -> None:
        self._post(self._do_resume)

    def stop(self) -> None:
        self._post(self._do_stop)

    def clear_error(self) -> None:
        self._post(self._do_clear_error)

    def post_event(self, event: SessionEvent) -> None:
        self._post(lambda: self._do_event(event))

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until every previously posted command has run."""
        done = threading.Event()
        self._post(done.set)
        return done.wait(timeout)

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Stop an active recording and end the worker thread."""
        if not self._worker.is_alive():
            return
        self._post(self._do_stop)
        self._commands.put(None)
        self._worker.join(timeout=timeout)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _post(self, command: Callable[[], None]) -> None:
        self._commands.put(command)

    def _run(self) -> None:
        while True:
            command = self._commands.get()
            if command is None:
                return
            try:
                command()
            except Exception:
                logger.exception("Capture command failed")

    def _do_request_permission(self) -> None:
        if self._state not in (CaptureState.IDLE, CaptureState.STOPPED):
            logger.debug("Ignoring permission request in state %s", self._state.value)
            return
        self._transition(CaptureState.AWAITING_PERMISSION)
        try:
            granted = bool(self._permission.request())
        except Exception as exc:
            logger.warning("Permission request failed: %s", exc)
            granted = False
        if not granted:
            self._fail(PERMISSION_DENIED, ERROR_MESSAGES[PERMISSION_DENIED])
            return
        self._permission_granted = True
        self._transition(CaptureState.IDLE)

    def _do_start(self) -> None:
        if self._state not in (CaptureState.IDLE, CaptureState.STOPPED):
            logger.debug("Ignoring start in state %s", self._state.value)
            return
        if not self._permission_granted:
            self._do_request_permission()
            if not self._permission_granted:
                return

        created_at = datetime.now()
        name = f"rec_{created_at:%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:8]}.{self._audio_format}"
        path = self._recordings_dir / name
        try:
            self._recordings_dir.mkdir(parents=True, exist_ok=True)
            writer = self._open_writer(path)
        except Exception as exc:
            self._fail(FILE_IO_ERROR, f"cannot open {path}: {exc}")
            return

        with self._writer_lock:
            self._writer = writer
            self._write_failed = False
            self._frames = 0
        self._pending = (str(path), name, created_at)
        self._levels.clear()

        try:
            self._recorder.start(self._handle_block)
        except Exception as exc:
            self._close_writer()
            path.unlink(missing_ok=True)
            self._pending = None
            self._fail(SESSION_CONFIG_ERROR, f"input stream failed: {exc}")
            return

        self._paused_by_interruption = False
        logger.info("Recording to %s", path)
        self._transition(CaptureState.RECORDING)

    def _do_pause(self, manual: bool) -> None:
        if manual and self._state == CaptureState.PAUSED and self._paused_by_interruption:
            # the user now owns this pause
            self._paused_by_interruption = False
            logger.info("Interruption pause taken over by manual pause")
            return
        if self._state != CaptureState.RECORDING:
            logger.debug("Ignoring pause in state %s", self._state.value)
            return
        try:
            self._recorder.pause()
        except Exception as exc:
            self._abort(SESSION_CONFIG_ERROR, f"pause failed: {exc}")
            return
        self._paused_by_interruption = not manual
        self._transition(CaptureState.PAUSED)

    def _do_resume(self) -> None:
        if self._state != CaptureState.PAUSED:
            logger.debug("Ignoring resume in state %s", self._state.value)
            return
        try:
            self._recorder.resume()
        except Exception as exc:
            self._abort(SESSION_CONFIG_ERROR, f"resume failed: {exc}")
            return
        self._paused_by_interruption = False
        self._transition(CaptureState.RECORDING)

    def _do_event(self, event: SessionEvent) -> None:
        logger.debug("Session event %s in state %s", event.kind.value, self._state.value)
        if event.kind == SessionEventKind.INTERRUPTION_BEGAN:
            if self._state == CaptureState.RECORDING:
                self._do_pause(manual=False)
        elif event.kind == SessionEventKind.INTERRUPTION_ENDED:
            if (
                self._state == CaptureState.PAUSED
                and self._paused_by_interruption
                and event.should_resume
            ):
                self._do_resume()
        elif event.kind == SessionEventKind.ROUTE_CHANGED:
            if self._state == CaptureState.RECORDING:
                try:
                    self._recorder.restart()
                except Exception as exc:
                    self._abort(SESSION_CONFIG_ERROR, f"route change restart failed: {exc}")

    def _do_stop(self) -> None:
        if self._state not in (CaptureState.RECORDING, CaptureState.PAUSED):
            logger.debug("Ignoring stop in state %s", self._state.value)
            return
        self._safe_stop_recorder()
        try:
            self._close_writer()
        except Exception as exc:
            self._fail(FILE_IO_ERROR, f"cannot finalize recording: {exc}")
            return
        if self._pending is None:
            self._fail(FILE_IO_ERROR, "no recording file")
            return
        path, name, created_at = self._pending
        self._pending = None
        recording = RecordingFile(
            path=path,
            name=name,
            created_at=created_at,
            sample_rate=self._sample_rate,
            frames=self._frames,
        )
        self._last_recording = recording
        self._paused_by_interruption = False
        logger.info("Recording stopped (%.2fs): %s", recording.duration_s, path)
        self._transition(CaptureState.STOPPED)
        if self._on_stopped:
            self._on_stopped(recording)

    def _do_write_failed(self, message: str) -> None:
        if self._state in (CaptureState.RECORDING, CaptureState.PAUSED):
            self._abort(FILE_IO_ERROR, message)

    def _do_clear_error(self) -> None:
        if self._state != CaptureState.ERROR:
            return
        self._error_code = ""
        self._transition(CaptureState.IDLE)

    # ------------------------------------------------------------------
    # Audio callback domain
    # ------------------------------------------------------------------

    def _handle_block(self, block: AudioBlock) -> None:
        self._levels.append(compute_level(block))
        with self._writer_lock:
            if self._writer is None or self._write_failed:
                return
            samples = np.frombuffer(block.pcm16_bytes, dtype=np.int16)
            try:
                self._writer.write(samples)
            except Exception as exc:
                self._write_failed = True
                message = f"write failed: {exc}"
                self._post(lambda: self._do_write_failed(message))
                return
            self._frames += samples.size
        if self._block_queue is not None:
            try:
                self._block_queue.put_nowait(block)
            except Full:
                self.dropped_blocks += 1

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _open_writer(self, path: Path) -> Any:
        container, subtype = container_for(self._audio_format)
        return sf.SoundFile(
            str(path),
            mode="w",
            samplerate=self._sample_rate,
            channels=1,
            format=container,
            subtype=subtype,
        )

    def _close_writer(self) -> None:
        with self._writer_lock:
            writer = self._writer
            self._writer = None
        if writer is not None:
            writer.close()

    def _abort(self, code: str, message: str) -> None:
        self._safe_stop_recorder()
        try:
            self._close_writer()
        except Exception as exc:
            logger.warning("Closing recording after failure: %s", exc)
        self._pending = None
        self._fail(code, message)

    def _fail(self, code: str, message: str) -> None:
        logger.error("Capture error %s: %s", code, message)
        self._error_code = code
        self._transition(CaptureState.ERROR)
        if self._on_error:
            self._on_error(code, message)

    def _safe_stop_recorder(self) -> None:
        try:
            self._recorder.stop()
        except Exception as exc:
            logger.warning("Stopping input stream: %s", exc)

    def _transition(self, to_state: CaptureState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        logger.debug("Capture state %s -> %s", from_state.value, to_state.value)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
