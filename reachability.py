"""Network reachability monitor.

Probes the transcription host periodically and reports transitions only.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

import requests

logger = logging.getLogger(__name__)


class ReachabilityMonitor:
    def __init__(
        self,
        probe_url: str,
        on_change: Callable[[bool], None],
        interval_s: float = 5.0,
        timeout_s: float = 3.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._probe_url = probe_url
        self._on_change = on_change
        self._interval_s = interval_s
        self._timeout_s = timeout_s
        self._session = session or requests.Session()
        self._reachable: Optional[bool] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def reachable(self) -> Optional[bool]:
        return self._reachable

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._worker, name="reachability", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=self._timeout_s + 0.5)

    def check_once(self) -> bool:
        """Probe once and notify ``on_change`` if the status changed."""
        reachable = self._probe()
        if reachable != self._reachable:
            previous = self._reachable
            self._reachable = reachable
            # The first probe only reports going offline; the client starts out reachable.
            if previous is not None or not reachable:
                logger.info("Reachability changed: %s", "online" if reachable else "offline")
                self._on_change(reachable)
        return reachable

    def _probe(self) -> bool:
        try:
            self._session.head(self._probe_url, timeout=self._timeout_s, allow_redirects=False)
        except requests.RequestException as exc:
            logger.debug("Probe of %s failed: %s", self._probe_url, exc)
            return False
        return True

    def _worker(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.check_once()
            except Exception:
                logger.exception("Reachability check failed")
            self._stop_event.wait(self._interval_s)
