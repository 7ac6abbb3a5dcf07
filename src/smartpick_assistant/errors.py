"""Upstream failure types and the user-facing remediation message for each error kind."""

from __future__ import annotations

from enum import Enum


RETRYABLE_STATUSES = frozenset({0, 404, 405, 422})


class UpstreamError(RuntimeError):
    """A backend call failed. ``status`` is the HTTP status, or 0 when the server was unreachable."""

    def __init__(self, message: str, *, status: int = 0, path: str = "") -> None:
        super().__init__(message)
        self.status = int(status or 0)
        self.path = path

    @property
    def retryable(self) -> bool:
        return self.status in RETRYABLE_STATUSES

    @property
    def is_network_failure(self) -> bool:
        return self.status == 0


class RetrievalExhaustedError(UpstreamError):
    """Every recommendation request shape failed with a contract-mismatch or network status."""


class ErrorKind(str, Enum):
    MISSING_SERVER = "missing_server"
    NETWORK_ERROR = "network_error"
    QUOTA_EXCEEDED = "quota_exceeded"
    INVALID_KEY = "invalid_key"
    MISSING_KEY = "missing_key"
    UNSUPPORTED_MODEL = "unsupported_model"
    VISION_ERROR = "vision_error"
    GENERIC = ""

    @classmethod
    def from_code(cls, code: object) -> "ErrorKind":
        text = str(code or "").strip().lower()
        for kind in cls:
            if kind.value == text:
                return kind
        return cls.GENERIC

    @property
    def backend_offline(self) -> bool:
        return self in (ErrorKind.MISSING_SERVER, ErrorKind.NETWORK_ERROR)


_BACKEND_UNAVAILABLE = (
    "Vision backend is unavailable. Start your backend server and verify SP_API_BASE_URL in your .env file."
)
_INVALID_KEY = "AI provider key is missing or invalid. Add a valid API key in your .env file for accurate image detection."
_GENERIC_FAILURE = (
    'I could not identify the product type from this image. Add a short hint like "black adidas shoe bag" '
    "and try again."
)

_FAILURE_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.MISSING_SERVER: _BACKEND_UNAVAILABLE,
    ErrorKind.NETWORK_ERROR: _BACKEND_UNAVAILABLE,
    ErrorKind.QUOTA_EXCEEDED: (
        "Vision provider quota is currently exhausted. I used fallback detection, but retry later for best accuracy."
    ),
    ErrorKind.INVALID_KEY: _INVALID_KEY,
    ErrorKind.MISSING_KEY: _INVALID_KEY,
    ErrorKind.UNSUPPORTED_MODEL: "Configured vision model is unavailable. Check your SP_GROQ_VISION_MODEL value.",
    ErrorKind.VISION_ERROR: _GENERIC_FAILURE,
    ErrorKind.GENERIC: _GENERIC_FAILURE,
}

GENERIC_CYCLE_FAILURE = "Something went wrong while fetching recommendations."


def failure_message(kind: ErrorKind) -> str:
    return _FAILURE_MESSAGES[kind]
