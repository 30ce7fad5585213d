"""Shared error codes and user-facing messages."""

from __future__ import annotations

PERMISSION_DENIED = "PERMISSION_DENIED"
SESSION_CONFIG_ERROR = "SESSION_CONFIG_ERROR"
FILE_IO_ERROR = "FILE_IO_ERROR"
NETWORK_ERROR = "NETWORK_ERROR"
DECODE_ERROR = "DECODE_ERROR"
EXHAUSTED_RETRIES = "EXHAUSTED_RETRIES"
FALLBACK_FAILURE = "FALLBACK_FAILURE"
PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
CANCELLED = "CANCELLED"

ERROR_MESSAGES = {
    PERMISSION_DENIED: "Microphone access is required, enable it in system settings.",
    SESSION_CONFIG_ERROR: "Audio input could not be started.",
    FILE_IO_ERROR: "Recording file could not be written.",
    NETWORK_ERROR: "Network failed, please retry.",
    DECODE_ERROR: "Transcription response format is invalid.",
    EXHAUSTED_RETRIES: "Transcription service did not respond after several attempts.",
    FALLBACK_FAILURE: "On-device transcription failed.",
    PERSISTENCE_ERROR: "Recording could not be saved.",
    CANCELLED: "Transcription was cancelled.",
}


class AppError(Exception):
    """Error carrying one of the codes above."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or ERROR_MESSAGES.get(code, code))
        self.code = code
        self.message = message or ERROR_MESSAGES.get(code, code)