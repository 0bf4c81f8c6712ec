"""
Completion Client: the one boundary to the text-generation service.

The orchestration core only needs "given a system directive and a message
history, asynchronously return text or fail". CompletionClient is that
contract; LLMClient implements it on top of openai.AsyncOpenAI.

Design principles:
- No global client: constructed explicitly and injected into the Orchestrator
- One validated response field (choices[0].message.content); absent or blank
  content fails fast with EmptyResponseError
- Provider errors are mapped to TransportError at this boundary
- Cancellation is never swallowed: asyncio.CancelledError passes straight
  through so the Request Controller can classify it
- Optional JSONL logging of every call
"""

import asyncio
import functools
import json
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Mapping, Protocol, Sequence, TypeVar

import openai
import tiktoken
from openai import AsyncOpenAI

from matura.config import LLMConfig
from matura.errors import EmptyResponseError, TransportError
from matura.logging_utils import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Provider failures worth another attempt
RETRYABLE_ERRORS = (
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    retryable_exceptions: tuple = (Exception,),
):
    """
    Decorator for retrying coroutines with exponential backoff.

    The backoff sleep is an await, so a cancelled request stops retrying
    immediately.

    Args:
        max_retries: Maximum number of attempts.
        base_delay: Initial delay in seconds.
        max_delay: Maximum delay between retries.
        exponential_base: Base for exponential backoff calculation.
        retryable_exceptions: Tuple of exception types to retry on.

    Usage:
        @retry_with_backoff(max_retries=3)
        async def my_api_call():
            ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            last_exception = None

            for attempt in range(max(1, max_retries)):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_exception = e

                    if attempt < max_retries - 1:
                        delay = min(
                            base_delay * (exponential_base ** attempt),
                            max_delay
                        )
                        logger.warning(
                            f"retry {attempt + 1}/{max_retries - 1} in {delay:.1f}s: {e.__class__.__name__}"
                        )
                        await asyncio.sleep(delay)

            # All retries exhausted
            raise last_exception

        return wrapper
    return decorator


@dataclass(frozen=True)
class CompletionOptions:
    """Per-call options passed across the client boundary."""
    structured: bool = False
    max_tokens: int | None = None
    request_id: str | None = None


class CompletionClient(Protocol):
    """Anything that can turn (directive, history) into text."""

    async def complete(
        self,
        directive: str,
        history: Sequence[Mapping[str, str]],
        options: CompletionOptions,
    ) -> str:
        ...


@dataclass
class LLMResponse:
    """Structured response from one completion call."""
    content: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


@dataclass
class LLMStats:
    """Statistics for usage tracking."""
    calls: int = 0
    failures: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0

    def record(self, prompt_tokens: int, completion_tokens: int) -> None:
        self.calls += 1
        self.prompt_tokens += prompt_tokens
        self.completion_tokens += completion_tokens

    def record_failure(self) -> None:
        self.failures += 1


class LLMClient:
    """
    CompletionClient backed by the OpenAI chat completions API.

    Usage:
        config = LLMConfig.from_env()
        client = LLMClient(config)

        text = await client.complete(
            PROMPT_FREE_TALK,
            [{"role": "user", "content": "家計簿アプリを作りたい"}],
            CompletionOptions(),
        )
        await client.close()
    """

    def __init__(
        self,
        config: LLMConfig,
        log_path: str | None = None,
        client: AsyncOpenAI | None = None,
    ):
        """
        Initialize LLM client.

        Args:
            config: Model configuration (model, temperature, retries).
            log_path: Optional path to write JSONL logs. If None, no logging.
            client: Pre-built AsyncOpenAI client. Built from config if None.
        """
        self.config = config
        self.log_path = log_path
        self.stats = LLMStats()
        self._encoding = tiktoken.get_encoding("cl100k_base")
        # SDK retries are disabled; retry_with_backoff owns retrying
        self._client = client or AsyncOpenAI(base_url=config.base_url, max_retries=0)
        self._call_api = retry_with_backoff(
            max_retries=config.max_retries,
            base_delay=config.retry_base_delay,
            retryable_exceptions=RETRYABLE_ERRORS,
        )(self._create_completion)

    async def complete(
        self,
        directive: str,
        history: Sequence[Mapping[str, str]],
        options: CompletionOptions | None = None,
    ) -> str:
        """
        Send the directive and history, return the reply text.

        Args:
            directive: System message.
            history: Ordered {role, content} messages.
            options: Structured output and token limits.

        Returns:
            Non-empty completion text.

        Raises:
            TransportError: The provider could not be reached or refused.
            EmptyResponseError: The completion carried no usable text.
        """
        options = options or CompletionOptions()
        messages = [{"role": "system", "content": directive}]
        messages.extend({"role": m["role"], "content": m["content"]} for m in history)

        try:
            completion = await self._call_api(messages, options)
        except openai.APIError as e:
            self.stats.record_failure()
            raise TransportError(
                f"{e.__class__.__name__}: {e}", request_id=options.request_id
            ) from e

        content = None
        if completion.choices:
            content = completion.choices[0].message.content
        if content is None or not content.strip():
            self.stats.record_failure()
            raise EmptyResponseError("completion returned no content", request_id=options.request_id)

        usage = getattr(completion, "usage", None)
        if usage:
            prompt_tokens, completion_tokens = usage.prompt_tokens, usage.completion_tokens
        else:
            prompt_tokens = self.count_tokens(json.dumps(messages, ensure_ascii=False))
            completion_tokens = self.count_tokens(content)

        response = LLMResponse(
            content=content,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )
        self.stats.record(response.prompt_tokens, response.completion_tokens)
        await self._log(messages, options, response)

        return response.content

    async def _create_completion(self, messages: list[dict[str, str]], options: CompletionOptions):
        """Make the actual API call (wrapped with retry in __init__)."""
        kwargs = {
            "messages": messages,
            "model": self.config.model,
            "temperature": self.config.temperature,
            "max_tokens": options.max_tokens or self.config.max_tokens,
            "stream": False,
        }
        if options.structured:
            kwargs["response_format"] = {"type": "json_object"}
        return await self._client.chat.completions.create(**kwargs)

    def count_tokens(self, text: str) -> int:
        """Estimate token count using tiktoken cl100k_base encoding."""
        return len(self._encoding.encode(text))

    async def close(self) -> None:
        await self._client.close()

    async def _log(
        self,
        messages: list[dict[str, str]],
        options: CompletionOptions,
        response: LLMResponse,
    ) -> None:
        """Write log entry to file if log_path is set."""
        if not self.log_path:
            return

        log_entry = {
            "request_id": options.request_id,
            "structured": options.structured,
            "model": self.config.model,
            "messages": messages,
            "response": response.content,
            "prompt_tokens": response.prompt_tokens,
            "completion_tokens": response.completion_tokens,
            "timestamp": datetime.now().isoformat(),
        }

        await asyncio.to_thread(self._append_log, json.dumps(log_entry, ensure_ascii=False))

    def _append_log(self, line: str) -> None:
        log_dir = os.path.dirname(self.log_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        with open(self.log_path, 'a', encoding='utf-8') as f:
            f.write(line + '\n')
