"""Rate-limited, retrying wrapper around a single chat completion call."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

import openai
from langfuse import observe

from folio.constants import COMPLETION_MAX_TOKENS, COMPLETION_TEMPERATURE

logger = logging.getLogger(__name__)


# ============================================================================
# Errors
# ============================================================================


class CompletionError(Exception):
    """Base class for completion failures that survived the retry policy."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class CompletionRateLimitError(CompletionError):
    """The provider kept reporting it was overloaded (HTTP 429)."""


class CompletionProviderError(CompletionError):
    """Any other provider or transport failure."""


class CompletionAuthError(CompletionProviderError):
    """Bad or missing credentials (HTTP 401)."""


class CompletionTimeoutError(CompletionError):
    """The request deadline would be crossed before the next attempt could finish."""


# ============================================================================
# Throttle
# ============================================================================


class CallThrottle:
    """Process-wide minimum spacing between outbound calls.

    Holds its lock for the whole wait-and-stamp step, so concurrent callers
    queue on the lock and leave it at least `min_interval` seconds apart.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: float | None = None

    @property
    def last_call(self) -> float | None:
        """Timestamp of the most recent call, or None before the first one."""
        with self._lock:
            return self._last_call

    def wait(self) -> float:
        """Block until a call is allowed, record it, and return its timestamp."""
        with self._lock:
            now = self._clock()
            if self._last_call is not None:
                elapsed = now - self._last_call
                if elapsed < self.min_interval:
                    wait_time = self.min_interval - elapsed
                    logger.info(f"Rate limiting: waiting {wait_time:.2f}s before completion call")
                    self._sleep(wait_time)
                    now = self._clock()
            self._last_call = now
            return now


# ============================================================================
# Client
# ============================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt cap and waits between attempts.

    Attributes:
        max_attempts: Total attempts, including the first one.
        rate_limit_cooldown: Fixed wait after an overloaded (429) response.
        backoff_step: Linear backoff after other errors (attempt * step).
        retry_unauthorized: Whether a 401 consumes retries like any other
            error. When False it fails on the first occurrence.
    """

    max_attempts: int = 3
    rate_limit_cooldown: float = 60.0
    backoff_step: float = 2.0
    retry_unauthorized: bool = True

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")


class CompletionClient:
    """Issues one chat completion per `complete()` call.

    Every attempt goes through the shared throttle, which also records the
    attempt's timestamp whether or not it succeeds.
    """

    def __init__(
        self,
        openai_client: Any | None,
        throttle: CallThrottle,
        model: str,
        retry_policy: RetryPolicy | None = None,
        request_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._openai_client = openai_client
        self._throttle = throttle
        self._model = model
        self._policy = retry_policy or RetryPolicy()
        self._request_timeout = request_timeout
        self._clock = clock
        self._sleep = sleep

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    @observe()
    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        deadline: float | None = None,
    ) -> str:
        """Return the completion text for the given prompts.

        Args:
            system_prompt: System instruction
            user_prompt: User message
            deadline: Optional absolute time (same clock as the client) after
                which no further attempt or wait is started

        Returns:
            Raw completion text (may be empty)

        Raises:
            CompletionRateLimitError: Last attempt was rejected as overloaded
            CompletionAuthError: Credentials missing or rejected
            CompletionProviderError: Last attempt failed for another reason
            CompletionTimeoutError: Deadline reached before an attempt or wait
        """
        if self._openai_client is None:
            raise CompletionAuthError("Completion service is not configured (missing API key)")

        max_attempts = self._policy.max_attempts
        last_error: CompletionError | None = None
        last_cause: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            self._ensure_time_left(deadline, 0.0, attempt - 1)
            self._throttle.wait()

            try:
                return self._request(system_prompt, user_prompt, deadline)
            except openai.RateLimitError as e:
                last_error = CompletionRateLimitError(f"Rate limit exceeded: {e}", attempt)
                last_cause = e
                delay = self._policy.rate_limit_cooldown
            except openai.AuthenticationError as e:
                last_error = CompletionAuthError(f"Invalid API credentials: {e}", attempt)
                last_cause = e
                if not self._policy.retry_unauthorized:
                    logger.error("Completion rejected as unauthorized, not retrying")
                    raise last_error from e
                delay = attempt * self._policy.backoff_step
            except openai.OpenAIError as e:
                last_error = CompletionProviderError(f"Completion API error: {e}", attempt)
                last_cause = e
                delay = attempt * self._policy.backoff_step
            except Exception as e:
                # Tracing wrapper or malformed response object
                last_error = CompletionProviderError(
                    f"Unexpected completion failure: {type(e).__name__}: {e}", attempt
                )
                last_cause = e
                delay = attempt * self._policy.backoff_step

            if attempt >= max_attempts:
                break

            logger.warning(
                f"Completion attempt {attempt}/{max_attempts} failed ({last_error}); "
                f"retrying in {delay:.1f}s"
            )
            self._ensure_time_left(deadline, delay, attempt)
            self._sleep(delay)

        logger.error(f"Completion failed after {max_attempts} attempts: {last_error}")
        raise last_error from last_cause

    def _request(self, system_prompt: str, user_prompt: str, deadline: float | None) -> str:
        timeout = self._request_timeout
        if deadline is not None:
            timeout = max(min(timeout, deadline - self._clock()), 0.001)

        logger.info(f"Completion request: model={self._model}, timeout={timeout:.1f}s")
        response = self._openai_client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            max_tokens=COMPLETION_MAX_TOKENS,
            temperature=COMPLETION_TEMPERATURE,
            timeout=timeout,
        )

        if not response.choices:
            return ""
        content = response.choices[0].message.content or ""
        logger.info(f"Completion response: {len(content)} chars")
        return content

    def _ensure_time_left(self, deadline: float | None, needed: float, attempts: int) -> None:
        if deadline is None:
            return
        if self._clock() + needed >= deadline:
            raise CompletionTimeoutError(
                f"Completion deadline reached after {attempts} attempt(s)", attempts
            )
