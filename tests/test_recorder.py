"""Tests for SoundDeviceRecorder and InputDevicePermission."""

from __future__ import annotations

from typing import Callable
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from models import AudioBlock
from recorder import InputDevicePermission, SoundDeviceRecorder


def _collect() -> tuple[list[AudioBlock], Callable[[AudioBlock], None]]:
    blocks: list[AudioBlock] = []
    return blocks, blocks.append


# ---------------------------------------------------------------
# Basic start / stop
# ---------------------------------------------------------------

@patch("recorder.sd")
def test_start_creates_stream_and_runs(mock_sd: MagicMock) -> None:
    mock_stream = MagicMock()
    mock_sd.InputStream.return_value = mock_stream

    recorder = SoundDeviceRecorder(sample_rate=16000, chunk_ms=100)
    recorder.start(lambda block: None)

    mock_sd.InputStream.assert_called_once()
    kwargs = mock_sd.InputStream.call_args.kwargs
    assert kwargs["samplerate"] == 16000
    assert kwargs["blocksize"] == 1600
    assert kwargs["dtype"] == "int16"
    mock_stream.start.assert_called_once()
    assert recorder.running is True

    recorder.stop()
    mock_stream.stop.assert_called_once()
    mock_stream.close.assert_called_once()
    assert recorder.running is False


@patch("recorder.sd")
def test_start_is_idempotent(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.return_value = MagicMock()

    recorder = SoundDeviceRecorder()
    recorder.start(lambda block: None)
    recorder.start(lambda block: None)  # second call should be no-op

    assert mock_sd.InputStream.call_count == 1
    recorder.stop()


@patch("recorder.sd")
def test_stop_is_idempotent(mock_sd: MagicMock) -> None:
    mock_stream = MagicMock()
    mock_sd.InputStream.return_value = mock_stream

    recorder = SoundDeviceRecorder()
    recorder.start(lambda block: None)
    recorder.stop()
    recorder.stop()

    mock_stream.close.assert_called_once()


# ---------------------------------------------------------------
# Pause / resume / restart
# ---------------------------------------------------------------

@patch("recorder.sd")
def test_pause_and_resume_reuse_the_stream(mock_sd: MagicMock) -> None:
    mock_stream = MagicMock()
    mock_sd.InputStream.return_value = mock_stream

    recorder = SoundDeviceRecorder()
    recorder.start(lambda block: None)
    recorder.pause()
    assert recorder.running is False
    mock_stream.stop.assert_called_once()

    recorder.resume()
    assert recorder.running is True
    assert mock_stream.start.call_count == 2
    assert mock_sd.InputStream.call_count == 1
    recorder.stop()


@patch("recorder.sd")
def test_restart_opens_a_new_stream(mock_sd: MagicMock) -> None:
    first, second = MagicMock(), MagicMock()
    mock_sd.InputStream.side_effect = [first, second]

    recorder = SoundDeviceRecorder()
    recorder.start(lambda block: None)
    recorder.restart()

    first.close.assert_called_once()
    second.start.assert_called_once()
    assert recorder.running is True
    recorder.stop()


@patch("recorder.sd")
def test_restart_failure_propagates(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.side_effect = [MagicMock(), RuntimeError("no device")]

    recorder = SoundDeviceRecorder()
    recorder.start(lambda block: None)
    with pytest.raises(RuntimeError, match="no device"):
        recorder.restart()


# ---------------------------------------------------------------
# Audio callback hands blocks to the sink
# ---------------------------------------------------------------

@patch("recorder.sd")
def test_callback_delivers_mono_pcm16_blocks(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.return_value = MagicMock()
    blocks, sink = _collect()

    recorder = SoundDeviceRecorder(sample_rate=16000, chunk_ms=100)
    recorder.start(sink)
    recorder._on_audio(np.zeros((1600, 1), dtype=np.int16), frames=1600, time_info=None, status=None)

    assert len(blocks) == 1
    assert blocks[0].sample_rate == 16000
    assert blocks[0].channels == 1
    assert len(blocks[0].pcm16_bytes) == 1600 * 2
    recorder.stop()


@patch("recorder.sd")
def test_callback_keeps_first_channel_only(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.return_value = MagicMock()
    blocks, sink = _collect()

    recorder = SoundDeviceRecorder(channels=2)
    recorder.start(sink)
    stereo = np.array([[1, 100], [2, 200], [3, 300]], dtype=np.int16)
    recorder._on_audio(stereo, frames=3, time_info=None, status=None)

    assert np.frombuffer(blocks[0].pcm16_bytes, dtype=np.int16).tolist() == [1, 2, 3]
    recorder.stop()


@patch("recorder.sd")
def test_callback_after_stop_is_noop(mock_sd: MagicMock) -> None:
    mock_sd.InputStream.return_value = MagicMock()
    blocks, sink = _collect()

    recorder = SoundDeviceRecorder()
    recorder.start(sink)
    recorder.stop()
    recorder._on_audio(np.zeros((160, 1), dtype=np.int16), frames=160, time_info=None, status=None)

    assert blocks == []


def test_start_raises_without_sounddevice(monkeypatch) -> None:  # noqa: ANN001
    import recorder as rec_mod
    monkeypatch.setattr(rec_mod, "sd", None)

    recorder = SoundDeviceRecorder()
    with pytest.raises(RuntimeError, match="sounddevice is not installed"):
        recorder.start(lambda block: None)


# ---------------------------------------------------------------
# Permission probe
# ---------------------------------------------------------------

@patch("recorder.sd")
def test_permission_granted_when_input_device_usable(mock_sd: MagicMock) -> None:
    assert InputDevicePermission(sample_rate=16000).request() is True
    mock_sd.check_input_settings.assert_called_once_with(samplerate=16000, channels=1)


@patch("recorder.sd")
def test_permission_denied_when_no_input_device(mock_sd: MagicMock) -> None:
    mock_sd.query_devices.side_effect = ValueError("No input device matching")
    assert InputDevicePermission().request() is False
