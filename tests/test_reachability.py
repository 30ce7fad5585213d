from __future__ import annotations

import threading
from unittest.mock import MagicMock

import requests

from reachability import ReachabilityMonitor


def _monitor(session: MagicMock) -> tuple[ReachabilityMonitor, list[bool]]:
    changes: list[bool] = []
    monitor = ReachabilityMonitor("https://api.example.com/v1/audio", changes.append, session=session)
    return monitor, changes


def test_first_successful_probe_is_silent() -> None:
    monitor, changes = _monitor(MagicMock())

    assert monitor.check_once() is True
    assert changes == []
    assert monitor.reachable is True


def test_only_transitions_are_reported() -> None:
    session = MagicMock()
    monitor, changes = _monitor(session)

    monitor.check_once()
    session.head.side_effect = requests.ConnectionError("down")
    monitor.check_once()
    monitor.check_once()
    session.head.side_effect = None
    monitor.check_once()

    assert changes == [False, True]


def test_first_failed_probe_reports_offline() -> None:
    session = MagicMock()
    session.head.side_effect = requests.Timeout("slow")
    monitor, changes = _monitor(session)

    assert monitor.check_once() is False
    assert changes == [False]


def test_http_error_status_still_counts_as_reachable() -> None:
    session = MagicMock()
    session.head.return_value = MagicMock(status_code=405)
    monitor, changes = _monitor(session)

    assert monitor.check_once() is True


def test_background_thread_reports_changes() -> None:
    session = MagicMock()
    session.head.side_effect = requests.ConnectionError("down")
    went_offline = threading.Event()
    monitor = ReachabilityMonitor(
        "https://x", lambda r: went_offline.set(), interval_s=0.01, session=session
    )
    monitor.start()
    try:
        assert went_offline.wait(timeout=2.0)
    finally:
        monitor.stop()

    assert monitor.reachable is False
