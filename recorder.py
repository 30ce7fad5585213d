"""Microphone recorder adapter and input permission probe."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional

import numpy as np

from models import AudioBlock

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


class SoundDeviceRecorder:
    """Mono PCM16 input stream; blocks are handed to ``on_block`` on the audio thread."""

    def __init__(
        self,
        sample_rate: int = 48000,
        channels: int = 1,
        chunk_ms: int = 20,
        device: Optional[int | str] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self.device = device
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self._on_block: Optional[Callable[[AudioBlock], None]] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self, on_block: Callable[[AudioBlock], None]) -> None:
        with self._lock:
            if self._running:
                return
            self._on_block = on_block
            self._stream = self._open_stream()
            self._stream.start()
            self._running = True

    def pause(self) -> None:
        with self._lock:
            if not self._running or self._stream is None:
                return
            self._stream.stop()
            self._running = False

    def resume(self) -> None:
        with self._lock:
            if self._running or self._stream is None:
                return
            self._stream.start()
            self._running = True

    def restart(self) -> None:
        """Reopen the stream on the current default device."""
        with self._lock:
            self._close_stream()
            self._stream = self._open_stream()
            self._stream.start()
            self._running = True
            logger.info("Input stream restarted")

    def stop(self) -> None:
        with self._lock:
            self._running = False
            self._close_stream()
            self._on_block = None

    def _open_stream(self) -> Any:
        if sd is None:
            raise RuntimeError("sounddevice is not installed")
        blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
        return sd.InputStream(
            samplerate=self.sample_rate,
            channels=self.channels,
            dtype="int16",
            blocksize=blocksize,
            device=self.device,
            callback=self._on_audio,
        )

    def _close_stream(self) -> None:
        if self._stream is None:
            return
        try:
            self._stream.stop()
            self._stream.close()
        finally:
            self._stream = None

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.debug("Audio callback status: %s", status)
        on_block = self._on_block
        if not self._running or on_block is None:
            return
        samples = np.asarray(indata, dtype=np.int16)
        if samples.ndim > 1 and samples.shape[1] > 1:
            samples = samples[:, 0]
        on_block(
            AudioBlock(
                pcm16_bytes=samples.tobytes(),
                sample_rate=self.sample_rate,
                channels=1,
                timestamp_ms=int(time.time() * 1000),
            )
        )


class InputDevicePermission:
    """Treats a usable default input device as granted microphone access."""

    def __init__(self, sample_rate: int = 48000, channels: int = 1) -> None:
        self.sample_rate = sample_rate
        self.channels = channels

    def request(self) -> bool:
        if sd is None:
            logger.error("sounddevice is not installed")
            return False
        try:
            sd.query_devices(kind="input")
            sd.check_input_settings(samplerate=self.sample_rate, channels=self.channels)
        except Exception as exc:
            logger.warning("Microphone unavailable: %s", exc)
            return False
        return True
