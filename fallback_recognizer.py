"""On-device fallback recognizer using Vosk.

Used by the transcription client only after the remote service has failed
for several consecutive jobs.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Optional

import soundfile as sf

from errors import FALLBACK_FAILURE, AppError

try:
    from vosk import KaldiRecognizer
    from vosk import Model as VoskModel
except Exception:  # pragma: no cover
    KaldiRecognizer = None  # type: ignore
    VoskModel = None  # type: ignore

logger = logging.getLogger(__name__)

_CHUNK_FRAMES = 4000


class VoskFallbackRecognizer:
    def __init__(self, model_path: str) -> None:
        self._model_path = model_path
        self._model: Optional[Any] = None
        self._lock = threading.Lock()

    def transcribe(self, path: str) -> str:
        """Return the final recognised text of ``path``."""
        model = self._load_model()
        started = time.time()
        try:
            data, sample_rate = sf.read(path, dtype="int16", always_2d=True)
            recognizer = KaldiRecognizer(model, float(sample_rate))
            recognizer.SetWords(False)
            mono = data[:, 0]
            parts = []
            for offset in range(0, len(mono), _CHUNK_FRAMES):
                chunk = mono[offset:offset + _CHUNK_FRAMES].tobytes()
                if recognizer.AcceptWaveform(chunk):
                    parts.append(json.loads(recognizer.Result()).get("text", ""))
            parts.append(json.loads(recognizer.FinalResult()).get("text", ""))
        except Exception as exc:
            raise AppError(FALLBACK_FAILURE, f"local recognition of {path} failed: {exc}") from exc
        text = " ".join(p for p in parts if p).strip()
        logger.info("Local transcription of %s finished in %.2fs", path, time.time() - started)
        return text

    def _load_model(self) -> Any:
        with self._lock:
            if self._model is not None:
                return self._model
            if VoskModel is None or KaldiRecognizer is None:
                raise AppError(FALLBACK_FAILURE, "vosk is not installed")
            if not self._model_path:
                raise AppError(FALLBACK_FAILURE, "no Vosk model configured")
            logger.info("Loading Vosk model from %s", self._model_path)
            try:
                self._model = VoskModel(self._model_path)
            except Exception as exc:
                raise AppError(FALLBACK_FAILURE, f"cannot load Vosk model: {exc}") from exc
            return self._model
