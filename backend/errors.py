"""Error taxonomy for the generation pipeline.

Every failure of a generation is classified where it happens (submission or
polling) into one of the exceptions below. The orchestrator only relays them;
the worker stores ``error_code`` and ``user_message()`` on the job record so
the frontend can render actionable guidance.

``GenerationCancelled`` is the deliberate termination path and is not a
failure (``is_failure`` is False).
"""

from __future__ import annotations

MAX_DETAIL_LENGTH = 300


def truncate(text: str, limit: int = MAX_DETAIL_LENGTH) -> str:
    return text if len(text) <= limit else text[:limit]


class GenerationError(Exception):
    """Base class for generation pipeline errors."""

    error_code = "unknown"
    default_message = "Generation failed"
    is_failure = True

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"


class AuthError(GenerationError):
    error_code = "auth"
    default_message = "API token rejected or missing"


class QuotaError(GenerationError):
    error_code = "quota"
    default_message = "API quota exhausted"


class NetworkError(GenerationError):
    error_code = "network"
    default_message = "Could not reach the generation service"


class TaskTimeoutError(GenerationError):
    error_code = "timeout"
    default_message = "Generation did not finish in time"


class RemoteTaskError(GenerationError):
    error_code = "remote_task"
    default_message = "unknown error"


class GenerationCancelled(GenerationError):
    error_code = "cancelled"
    default_message = "Generation cancelled by user"
    is_failure = False


class UnknownError(GenerationError):
    error_code = "unknown"


def classify_exception(exc: BaseException) -> GenerationError:
    """Return ``exc`` if already classified, else wrap it as ``UnknownError``."""
    if isinstance(exc, GenerationError):
        return exc
    return UnknownError(str(exc) or exc.__class__.__name__)


def user_message(err: GenerationError) -> str:
    """Map a classified error to the text shown to the end user."""
    if isinstance(err, AuthError):
        return (
            "ModelScope API token is invalid or not configured. "
            "Get a token at https://modelscope.cn/my/myaccesstoken and set it in the settings."
        )
    if isinstance(err, QuotaError):
        return "API quota exhausted. Wait a while or upgrade your quota, then try again."
    if isinstance(err, (NetworkError, TaskTimeoutError)):
        return f"{err.message}. Please retry later."
    if isinstance(err, GenerationCancelled):
        return "Generation cancelled."
    return truncate(err.message)
