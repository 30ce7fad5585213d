"""Loudness samples for the live level display."""

from __future__ import annotations

import threading
from collections import deque

import numpy as np

from models import AudioBlock

_FULL_SCALE = 32768.0


def compute_level(block: AudioBlock) -> float:
    """Return the RMS loudness of a PCM16 block in ``[0, 1]``."""
    samples = np.frombuffer(block.pcm16_bytes, dtype=np.int16)
    if samples.size == 0:
        return 0.0
    normalized = samples.astype(np.float64) / _FULL_SCALE
    rms = float(np.sqrt(np.mean(normalized * normalized)))
    return min(max(rms, 0.0), 1.0)


class LevelHistory:
    """Bounded history of level samples, oldest dropped first.

    Written from the audio callback and read from the presentation side.
    """

    def __init__(self, maxlen: int = 200) -> None:
        self._samples: deque[float] = deque(maxlen=maxlen)
        self._lock = threading.Lock()

    @property
    def maxlen(self) -> int:
        return self._samples.maxlen or 0

    @property
    def latest(self) -> float:
        with self._lock:
            return self._samples[-1] if self._samples else 0.0

    def append(self, level: float) -> None:
        with self._lock:
            self._samples.append(level)

    def snapshot(self) -> list[float]:
        with self._lock:
            return list(self._samples)

    def clear(self) -> None:
        with self._lock:
            self._samples.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)
