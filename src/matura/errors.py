"""
Failure taxonomy for generation requests.

Every failure the Request Controller can report is a GenerationError subclass
tagged with a FailureKind. The Orchestrator reads `user_visible` to decide
whether a failure is shown to the user or absorbed silently.

ParseFailure is deliberately absent from the exception hierarchy: malformed
completion text is absorbed by the parser's fallback artifacts and only shows
up as `ParseOutcome.used_fallback`.
"""

from enum import Enum


class FailureKind(str, Enum):
    """Why a generation step did not produce a fresh artifact."""
    ALREADY_IN_FLIGHT = "already_in_flight"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    TRANSPORT = "transport"
    EMPTY_RESPONSE = "empty_response"
    PARSE_FAILURE = "parse_failure"


class GenerationError(Exception):
    """Base class for failures raised out of the Request Controller."""

    kind: FailureKind = FailureKind.TRANSPORT
    retryable: bool = True
    user_visible: bool = True
    user_message: str = "エラーが発生しました。もう一度お試しください。"

    def __init__(self, message: str = "", request_id: str | None = None):
        super().__init__(message or self.kind.value)
        self.request_id = request_id

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": str(self),
            "retryable": self.retryable,
            "user_visible": self.user_visible,
            "request_id": self.request_id,
        }


class AlreadyInFlightError(GenerationError):
    """A request is already outstanding; no network call was attempted."""
    kind = FailureKind.ALREADY_IN_FLIGHT
    retryable = False
    user_visible = False
    user_message = "前のリクエストを処理中です。完了までお待ちください。"


class GenerationTimeoutError(GenerationError):
    kind = FailureKind.TIMEOUT
    user_message = "応答に時間がかかりすぎています。再生成してください。"

    def __init__(self, message: str = "", request_id: str | None = None, timeout_ms: int = 0):
        super().__init__(message or f"request timed out after {timeout_ms}ms", request_id)
        self.timeout_ms = timeout_ms


class RequestCancelledError(GenerationError):
    """Explicit cancellation. Never shown to the user."""
    kind = FailureKind.CANCELLED
    retryable = False
    user_visible = False
    user_message = ""


class TransportError(GenerationError):
    kind = FailureKind.TRANSPORT
    user_message = "AIサービスとの通信に失敗しました。再生成してください。"


class EmptyResponseError(GenerationError):
    kind = FailureKind.EMPTY_RESPONSE
    user_message = "AIから有効な応答が得られませんでした。再生成してください。"
