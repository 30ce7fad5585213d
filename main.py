"""Application entrypoint."""

from __future__ import annotations

import logging
import sys

from capture_session import CaptureSession
from config import JsonConfigStore
from fallback_recognizer import VoskFallbackRecognizer
from hotkey import GlobalHotkeyAdapter
from models import CaptureState, PipelineResult, RecordingFile
from overlay import OverlayWindow
from pipeline import Pipeline
from reachability import ReachabilityMonitor
from recorder import InputDevicePermission, SoundDeviceRecorder
from recording_store import JsonRecordingStore
from segmenter import Segmenter
from transcription_client import TranscriptionClient

try:
    from PySide6.QtCore import QObject, QSize, QTimer, Signal
    from PySide6.QtGui import QAction, QBrush, QColor, QIcon, QPainter, QPixmap
    from PySide6.QtWidgets import QApplication, QInputDialog, QMenu, QMessageBox, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger(__name__)

ICON_COLORS = {
    CaptureState.IDLE: "#888888",
    CaptureState.AWAITING_PERMISSION: "#888888",
    CaptureState.RECORDING: "#FF4444",
    CaptureState.PAUSED: "#FFCC00",
    CaptureState.STOPPED: "#888888",
    CaptureState.ERROR: "#FF8800",
}
LEVEL_REFRESH_MS = 50


def _create_icon(color: str, size: int = 22) -> QIcon:
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


class UIBridge(QObject):
    state_signal = Signal(str, str)  # from_state, to_state
    error_signal = Signal(str)
    saved_signal = Signal(str)


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store = JsonConfigStore()
        self.settings = self.config_store.load_settings()
        self.overlay = OverlayWindow()
        self.ui = UIBridge()
        self.ui.state_signal.connect(self._on_state_change_ui)
        self.ui.error_signal.connect(self.overlay.show_error)
        self.ui.saved_signal.connect(self._on_saved_ui)

        s = self.settings
        fallback = VoskFallbackRecognizer(s.vosk_model_path) if s.vosk_model_path else None
        self.client = TranscriptionClient(
            base_url=s.api_base_url,
            api_key=s.api_key,
            fallback=fallback,
            max_retry=s.max_retry,
            base_delay_s=s.base_delay_s,
            request_timeout_s=s.request_timeout_s,
        )
        self.pipeline = Pipeline(
            segmenter=Segmenter(s.segments_dir, audio_format=s.audio_format),
            client=self.client,
            gateway=JsonRecordingStore(s.store_path),
            segment_duration_s=s.segment_duration_s,
            on_complete=self._on_pipeline_complete,
            on_error=self._on_error,
        )
        self.session = CaptureSession(
            recorder=SoundDeviceRecorder(sample_rate=s.sample_rate),
            permission=InputDevicePermission(sample_rate=s.sample_rate),
            recordings_dir=s.recordings_dir,
            audio_format=s.audio_format,
            sample_rate=s.sample_rate,
            level_history_size=s.level_history_size,
            on_state_change=self._on_state_change,
            on_error=self._on_error,
            on_stopped=self._on_stopped,
        )
        self.reachability = ReachabilityMonitor(s.api_base_url, on_change=self.client.set_reachable)

        self.hotkey = GlobalHotkeyAdapter()
        self.hotkey.bind(s.hotkey, self._toggle_recording)

        self.level_timer = QTimer()
        self.level_timer.timeout.connect(self._refresh_level)

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(ICON_COLORS[CaptureState.IDLE]))
        self.tray.setToolTip("Recorder - Ready")
        self._setup_menu()
        self.tray.show()

    def _setup_menu(self) -> None:
        menu = QMenu()
        for label, handler in (
            ("Start Recording", self.session.start),
            ("Pause", self.session.pause),
            ("Resume", self.session.resume),
            ("Stop", self.session.stop),
            ("Clear Error", self.session.clear_error),
        ):
            action = QAction(label, menu)
            action.triggered.connect(handler)
            menu.addAction(action)

        menu.addSeparator()
        api_action = QAction("Set API Key", menu)
        api_action.triggered.connect(self._set_api_key)
        menu.addAction(api_action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)
        self.tray.setContextMenu(menu)

    def _set_api_key(self) -> None:
        value, ok = QInputDialog.getText(None, "API Key", "Transcription API key")
        if not ok:
            return
        self.config_store.set_api_key(value)
        self.client.set_api_key(value)
        QMessageBox.information(None, "Saved", "API key saved and applied.")

    def _toggle_recording(self) -> None:
        if self.session.state in (CaptureState.RECORDING, CaptureState.PAUSED):
            self.session.stop()
        else:
            self.session.start()

    # ------------------------------------------------------------------
    # Callbacks (called from worker threads → emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: CaptureState, to_state: CaptureState) -> None:
        self.ui.state_signal.emit(from_state.value, to_state.value)

    def _on_error(self, code: str, message: str) -> None:
        self.ui.error_signal.emit(f"{code}: {message}")

    def _on_stopped(self, recording: RecordingFile) -> None:
        self.pipeline.submit(recording)

    def _on_pipeline_complete(self, result: PipelineResult) -> None:
        done = sum(1 for t in result.entry.segment_transcripts if t is not None)
        self.ui.saved_signal.emit(f"Saved {done}/{len(result.entry.segment_paths)} transcripts")

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _on_state_change_ui(self, from_state: str, to_state: str) -> None:
        state = CaptureState(to_state)
        self.tray.setIcon(_create_icon(ICON_COLORS[state]))
        self.tray.setToolTip(f"Recorder - {state.value.title()}")
        if state in (CaptureState.RECORDING, CaptureState.PAUSED):
            self.level_timer.start(LEVEL_REFRESH_MS)
            self._refresh_level()
        else:
            self.level_timer.stop()
            if state != CaptureState.ERROR:
                self.overlay.hide_with_delay(400)

    def _on_saved_ui(self, text: str) -> None:
        self.tray.showMessage("Recorder", text)

    def _refresh_level(self) -> None:
        self.overlay.show_status(
            self.session.state.value.title(),
            self.session.duration_s,
            self.session.current_level,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        self.session.request_permission()
        self.reachability.start()
        try:
            self.hotkey.start()
        except Exception as exc:
            self.overlay.show_error(f"Hotkey disabled: {exc}")
        return self.app.exec()

    def quit(self) -> None:
        self.hotkey.stop()
        self.reachability.stop()
        self.session.close()
        self.pipeline.shutdown(cancel=True)
        self.app.quit()


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
