from __future__ import annotations

import math
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import numpy as np
import pytest
import soundfile as sf

from errors import FILE_IO_ERROR, AppError
from models import ExportStatus, RecordingFile
from segmenter import Segmenter

RATE = 100  # low sample rate keeps fixtures small


def _recording(tmp_path: Path, seconds: float, name: str = "rec_test_abcd1234.wav") -> RecordingFile:
    frames = int(round(seconds * RATE))
    path = tmp_path / name
    samples = (np.arange(frames) % 30000).astype(np.int16)
    sf.write(str(path), samples, RATE, subtype="PCM_16")
    return RecordingFile(path=str(path), name=name, created_at=datetime(2025, 7, 6), sample_rate=RATE, frames=frames)


def test_65s_recording_gives_three_segments(tmp_path: Path) -> None:
    recording = _recording(tmp_path, 65)
    segments = Segmenter(tmp_path / "segments").segment(recording, 30)

    assert [(s.start_offset_s, s.end_offset_s) for s in segments] == [(0, 30), (30, 60), (60, 65)]
    assert [s.index for s in segments] == [0, 1, 2]
    assert all(s.export_status == ExportStatus.EXPORTED for s in segments)


@pytest.mark.parametrize("seconds", [1, 29.5, 30, 31, 90, 95.25])
def test_segments_cover_recording_contiguously(tmp_path: Path, seconds: float) -> None:
    recording = _recording(tmp_path, seconds)
    segments = Segmenter(tmp_path / "segments").segment(recording, 30)

    assert len(segments) == math.ceil(seconds / 30)
    assert segments[0].start_offset_s == 0
    assert segments[-1].end_offset_s == pytest.approx(seconds)
    for prev, nxt in zip(segments, segments[1:]):
        assert prev.end_offset_s == nxt.start_offset_s
    remainder = seconds - 30 * math.floor(seconds / 30)
    assert segments[-1].duration_s == pytest.approx(remainder or 30)


def test_exported_files_hold_the_matching_audio(tmp_path: Path) -> None:
    recording = _recording(tmp_path, 65)
    source, _ = sf.read(recording.path, dtype="int16")
    segments = Segmenter(tmp_path / "segments").segment(recording, 30)

    joined = np.concatenate([sf.read(s.file_path, dtype="int16")[0] for s in segments])
    assert np.array_equal(joined, source)
    assert len(sf.read(segments[-1].file_path)[0]) == 5 * RATE


def test_segment_names_include_source_and_offset(tmp_path: Path) -> None:
    first = _recording(tmp_path, 40, name="rec_a.wav")
    second = _recording(tmp_path, 40, name="rec_b.wav")
    segmenter = Segmenter(tmp_path / "segments")

    paths = [s.file_path for s in segmenter.segment(first, 30) + segmenter.segment(second, 30)]

    assert len(set(paths)) == 4
    assert Path(paths[1]).name == "seg_000030000_rec_a.wav"


def test_flac_output_format(tmp_path: Path) -> None:
    recording = _recording(tmp_path, 35)
    segments = Segmenter(tmp_path / "segments", audio_format="flac").segment(recording, 30)

    assert all(s.file_path.endswith(".flac") for s in segments)
    assert sf.info(segments[0].file_path).format == "FLAC"


def test_failed_export_is_reported_and_others_continue(tmp_path: Path) -> None:
    recording = _recording(tmp_path, 95)
    real_write = sf.write

    def flaky_write(path, *args, **kwargs):  # noqa: ANN001, ANN002, ANN003
        if "seg_000030000_" in str(path):
            raise RuntimeError("encoder failed")
        return real_write(path, *args, **kwargs)

    with patch("segmenter.sf.write", side_effect=flaky_write):
        segments = Segmenter(tmp_path / "segments").segment(recording, 30)

    assert [s.export_status for s in segments] == [
        ExportStatus.EXPORTED,
        ExportStatus.FAILED,
        ExportStatus.EXPORTED,
        ExportStatus.EXPORTED,
    ]
    assert "encoder failed" in segments[1].error
    assert [s.index for s in segments] == [0, 1, 2, 3]


def test_empty_recording_gives_no_segments(tmp_path: Path) -> None:
    recording = _recording(tmp_path, 0)
    assert Segmenter(tmp_path / "segments").segment(recording, 30) == []


def test_unreadable_recording_raises_file_io_error(tmp_path: Path) -> None:
    missing = RecordingFile(
        path=str(tmp_path / "missing.wav"), name="missing.wav", created_at=datetime.now(), sample_rate=RATE
    )
    with pytest.raises(AppError) as excinfo:
        Segmenter(tmp_path / "segments").segment(missing, 30)
    assert excinfo.value.code == FILE_IO_ERROR


def test_non_positive_duration_rejected(tmp_path: Path) -> None:
    recording = _recording(tmp_path, 5)
    with pytest.raises(ValueError):
        Segmenter(tmp_path / "segments").segment(recording, 0)
