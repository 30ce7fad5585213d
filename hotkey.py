"""Global hotkeys based on pynput; each binding fires once per key press."""

from __future__ import annotations

import threading
from typing import Callable, Optional

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore


class GlobalHotkeyAdapter:
    def __init__(self) -> None:
        self._bindings: dict[str, Callable[[], None]] = {}
        self._held: set[str] = set()
        self._listener: Optional[object] = None
        self._lock = threading.Lock()

    def bind(self, key_name: str, action: Callable[[], None]) -> None:
        """Bind a pynput key name such as ``Key.alt_l`` to ``action``."""
        with self._lock:
            self._bindings[key_name] = action

    def start(self) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")
        self._listener = keyboard.Listener(on_press=self._on_press, on_release=self._on_release)
        self._listener.start()

    def stop(self) -> None:
        listener = self._listener
        if listener is not None:
            listener.stop()
            self._listener = None

    def _on_press(self, key: object) -> None:
        name = str(key)
        with self._lock:
            action = self._bindings.get(name)
            # auto-repeat delivers repeated presses while the key is held
            if action is None or name in self._held:
                return
            self._held.add(name)
        action()

    def _on_release(self, key: object) -> None:
        with self._lock:
            self._held.discard(str(key))
