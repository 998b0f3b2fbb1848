"""Shared error codes, user-facing messages and exception types."""

from __future__ import annotations

NETWORK_ERROR = "NETWORK_ERROR"
AUTH_FAILED = "AUTH_FAILED"
ASR_PROTOCOL_ERROR = "ASR_PROTOCOL_ERROR"
ASSET_SYNC_FAILED = "ASSET_SYNC_FAILED"
MODEL_LOAD_FAILED = "MODEL_LOAD_FAILED"
SESSION_START_FAILED = "SESSION_START_FAILED"
RECOGNITION_TIMEOUT = "RECOGNITION_TIMEOUT"
CAPTURE_FAILED = "CAPTURE_FAILED"

ERROR_MESSAGES = {
    NETWORK_ERROR: "Network failed, please retry.",
    AUTH_FAILED: "API key is invalid.",
    ASR_PROTOCOL_ERROR: "ASR response format is invalid.",
    ASSET_SYNC_FAILED: "Error: could not sync the speech model files.",
    MODEL_LOAD_FAILED: "Error: could not load the speech model.",
    SESSION_START_FAILED: "Speech recognizer failed to start.",
    RECOGNITION_TIMEOUT: "No speech detected in time.",
    CAPTURE_FAILED: "Photo capture failed.",
}


class LiveCaptionError(Exception):
    code = ASR_PROTOCOL_ERROR

    def __init__(self, message: str = "", code: str | None = None) -> None:
        if code is not None:
            self.code = code
        super().__init__(message or ERROR_MESSAGES.get(self.code, self.code))

    @property
    def user_message(self) -> str:
        """Headline from ERROR_MESSAGES plus the concrete reason, if any."""
        headline = ERROR_MESSAGES.get(self.code, self.code)
        reason = str(self)
        if not reason or reason == headline:
            return headline
        return f"{headline}\nReason: {reason}"


class BootstrapError(LiveCaptionError):
    """Fatal: the recognition engine could not be made ready."""


class AssetSyncError(BootstrapError):
    code = ASSET_SYNC_FAILED


class ModelLoadError(BootstrapError):
    code = MODEL_LOAD_FAILED


class SessionStartError(LiveCaptionError):
    code = SESSION_START_FAILED


class CaptureError(LiveCaptionError):
    code = CAPTURE_FAILED


class RecognitionTerminalError(LiveCaptionError):
    def __init__(
        self,
        message: str = "",
        code: str | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message, code)
        self.retryable = retryable


class RecognitionTimeout(RecognitionTerminalError):
    code = RECOGNITION_TIMEOUT
