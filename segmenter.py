"""Split a finished recording into fixed-length segment files."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import soundfile as sf

from config import container_for
from errors import FILE_IO_ERROR, AppError
from models import AudioSegment, ExportStatus, RecordingFile

logger = logging.getLogger(__name__)


class Segmenter:
    def __init__(self, output_dir: str | Path, audio_format: str = "wav", max_workers: int = 4) -> None:
        self._output_dir = Path(output_dir)
        self._audio_format = audio_format.lower()
        self._max_workers = max(1, max_workers)

    def segment(self, recording: RecordingFile, segment_duration_s: float = 30.0) -> list[AudioSegment]:
        """Export ``recording`` as consecutive segments ordered by start offset.

        A segment whose export fails is returned with ``ExportStatus.FAILED``;
        the remaining segments are still exported.
        """
        if segment_duration_s <= 0:
            raise ValueError("segment duration must be positive")
        try:
            info = sf.info(recording.path)
        except Exception as exc:
            raise AppError(FILE_IO_ERROR, f"cannot read {recording.path}: {exc}") from exc

        sample_rate = int(info.samplerate)
        total_frames = int(info.frames)
        segment_frames = max(1, int(round(segment_duration_s * sample_rate)))
        segments = self._plan(recording, sample_rate, total_frames, segment_frames)
        if not segments:
            logger.info("Recording %s is empty, nothing to segment", recording.path)
            return []

        self._output_dir.mkdir(parents=True, exist_ok=True)
        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="segment-export") as pool:
            for segment in segments:
                pool.submit(self._export, recording.path, segment, sample_rate)

        failed = [s.index for s in segments if s.export_status == ExportStatus.FAILED]
        if failed:
            logger.warning("Segments %s of %s failed to export", failed, recording.path)
        logger.info("Exported %d/%d segments of %s", len(segments) - len(failed), len(segments), recording.path)
        return segments

    def _plan(
        self,
        recording: RecordingFile,
        sample_rate: int,
        total_frames: int,
        segment_frames: int,
    ) -> list[AudioSegment]:
        stem = Path(recording.name).stem or Path(recording.path).stem
        segments = []
        for index, start in enumerate(range(0, total_frames, segment_frames)):
            end = min(start + segment_frames, total_frames)
            start_ms = int(round(start * 1000 / sample_rate))
            segments.append(
                AudioSegment(
                    index=index,
                    source=recording,
                    start_offset_s=start / sample_rate,
                    end_offset_s=end / sample_rate,
                    file_path=str(self._output_dir / f"seg_{start_ms:09d}_{stem}.{self._audio_format}"),
                )
            )
        return segments

    def _export(self, source_path: str, segment: AudioSegment, sample_rate: int) -> None:
        segment.export_status = ExportStatus.EXPORTING
        start = int(round(segment.start_offset_s * sample_rate))
        stop = int(round(segment.end_offset_s * sample_rate))
        container, subtype = container_for(self._audio_format)
        try:
            data, _ = sf.read(source_path, start=start, stop=stop, dtype="int16", always_2d=True)
            sf.write(segment.file_path, data, sample_rate, format=container, subtype=subtype)
        except Exception as exc:
            logger.error("Exporting segment %d to %s failed: %s", segment.index, segment.file_path, exc)
            segment.error = str(exc)
            segment.export_status = ExportStatus.FAILED
            return
        segment.export_status = ExportStatus.EXPORTED
