from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from hotkey import GlobalHotkeyAdapter


def test_bound_key_fires_once_per_press() -> None:
    calls: list[str] = []
    adapter = GlobalHotkeyAdapter()
    adapter.bind("Key.alt_l", lambda: calls.append("toggle"))

    adapter._on_press("Key.alt_l")
    adapter._on_press("Key.alt_l")  # auto-repeat while held
    adapter._on_release("Key.alt_l")
    adapter._on_press("Key.alt_l")

    assert calls == ["toggle", "toggle"]


def test_unbound_keys_are_ignored() -> None:
    calls: list[str] = []
    adapter = GlobalHotkeyAdapter()
    adapter.bind("Key.alt_l", lambda: calls.append("toggle"))

    adapter._on_press("Key.shift")

    assert calls == []


@patch("hotkey.keyboard")
def test_start_and_stop_listener(mock_keyboard: MagicMock) -> None:
    adapter = GlobalHotkeyAdapter()
    adapter.start()
    mock_keyboard.Listener.return_value.start.assert_called_once()

    adapter.stop()
    mock_keyboard.Listener.return_value.stop.assert_called_once()


def test_start_without_pynput(monkeypatch: pytest.MonkeyPatch) -> None:
    import hotkey as mod
    monkeypatch.setattr(mod, "keyboard", None)

    with pytest.raises(RuntimeError, match="pynput is not installed"):
        GlobalHotkeyAdapter().start()
