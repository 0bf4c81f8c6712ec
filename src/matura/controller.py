"""
Request Controller: one completion call at a time, with timeout and cancel.

Concurrency policy is reject-new: while a request owns the CancellationHandle,
another execute() fails immediately with AlreadyInFlightError and never
reaches the client. The running request is left untouched.

Timeout and explicit cancel share one mechanism (cancelling the request's
task); the handle records which of the two fired so the failure comes out as
GenerationTimeoutError (shown to the user) or RequestCancelledError (silent).
"""

import asyncio
import time
from dataclasses import dataclass, field

from matura.errors import (
    AlreadyInFlightError,
    EmptyResponseError,
    FailureKind,
    GenerationError,
    GenerationTimeoutError,
    RequestCancelledError,
    TransportError,
)
from matura.llm import CompletionClient, CompletionOptions
from matura.logging_utils import get_logger, step_logger
from matura.state import GenerationRequest

logger = get_logger(__name__)


@dataclass
class CancellationHandle:
    """Cancellation token and timer owned by exactly one in-flight request."""
    request_id: str
    task: asyncio.Task
    timer: asyncio.TimerHandle | None = None
    cause: FailureKind | None = None
    started: float = field(default_factory=time.monotonic)

    def cancel(self, cause: FailureKind = FailureKind.CANCELLED) -> bool:
        """
        Fire the cancellation signal once.

        Returns:
            False if the request already finished or was already cancelled.
        """
        if self.cause is not None or self.task.done():
            return False
        self.cause = cause
        self.task.cancel()
        return True

    def release(self) -> None:
        """Disarm the timer."""
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class RequestController:
    """
    Runs GenerationRequests against a CompletionClient, single-flight.

    Usage:
        controller = RequestController(client)
        try:
            text = await controller.execute(request)
        except GenerationError as e:
            if e.user_visible:
                show(e.user_message)

        # Elsewhere, e.g. on navigation away:
        controller.cancel()
    """

    def __init__(self, client: CompletionClient):
        self.client = client
        self._handle: CancellationHandle | None = None

    @property
    def in_flight(self) -> bool:
        return self._handle is not None

    @property
    def current_request_id(self) -> str | None:
        return self._handle.request_id if self._handle else None

    async def execute(self, request: GenerationRequest) -> str:
        """
        Execute one request.

        Args:
            request: The request to send.

        Returns:
            Non-empty completion text.

        Raises:
            AlreadyInFlightError: Another request owns the handle.
            GenerationTimeoutError: No response within request.timeout_ms.
            RequestCancelledError: cancel() was called.
            TransportError: The client failed.
            EmptyResponseError: The client returned blank text.
        """
        log = step_logger(logger, request.phase, request.request_id)

        # Check and claim happen before the first await
        if self._handle is not None:
            log.warning(f"rejected, request {self._handle.request_id} still in flight")
            raise AlreadyInFlightError(
                f"request {self._handle.request_id} is still in flight",
                request_id=request.request_id,
            )

        loop = asyncio.get_running_loop()
        options = CompletionOptions(
            structured=request.structured,
            max_tokens=request.max_tokens,
            request_id=request.request_id,
        )
        task = loop.create_task(
            self.client.complete(request.directive, request.history_payload(), options)
        )
        handle = CancellationHandle(request_id=request.request_id, task=task)
        handle.timer = loop.call_later(request.timeout_seconds, handle.cancel, FailureKind.TIMEOUT)
        self._handle = handle

        log.debug("started")
        try:
            text = await task
        except asyncio.CancelledError:
            if handle.cause is FailureKind.TIMEOUT:
                log.warning(f"timed out after {request.timeout_ms}ms")
                raise GenerationTimeoutError(
                    request_id=request.request_id, timeout_ms=request.timeout_ms
                ) from None
            if handle.cause is FailureKind.CANCELLED:
                log.info("cancelled")
                raise RequestCancelledError(
                    "request cancelled", request_id=request.request_id
                ) from None
            # The caller itself is being cancelled
            task.cancel()
            raise
        except GenerationError:
            raise
        except Exception as e:
            log.error(f"failed: {e}")
            raise TransportError(
                f"{e.__class__.__name__}: {e}", request_id=request.request_id
            ) from e
        finally:
            handle.release()
            if self._handle is handle:
                self._handle = None

        if not isinstance(text, str) or not text.strip():
            raise EmptyResponseError("completion returned no text", request_id=request.request_id)

        log.debug(f"completed in {handle.elapsed_ms}ms")
        return text

    def cancel(self) -> bool:
        """
        Cancel the in-flight request, if any.

        Idempotent: cancelling twice, or after the request finished, is a no-op.
        The handle is released at once so a new request may start.

        Returns:
            True if a request was cancelled by this call.
        """
        handle = self._handle
        if handle is None:
            return False

        self._handle = None
        handle.release()
        return handle.cancel(FailureKind.CANCELLED)
