# vcs_bridge/error_handling/retry_manager.py

"""
Bounded retry execution with a fixed inter-attempt delay.

The executor is provider-agnostic: whether a failure may be retried is decided
by a pluggable predicate. Predicates must only claim failures the provider
rejected before processing, since wrapped operations can be mutating.
"""

import asyncio
from collections.abc import Awaitable, Callable
import logging
from typing import Any, TypeVar

from .core import OperationCancelledError, OperationTimeoutError, RetryConfig
from .error_classification import error_status_code

T = TypeVar("T")

RetryPredicate = Callable[[BaseException], bool]


def never_retry(error: BaseException) -> bool:
    return False


def http_too_many_requests_predicate(error: BaseException) -> bool:
    """Retry only HTTP 429 responses."""
    return error_status_code(error) == 429


class RetryExecutor:
    """Runs a single remote call, retrying the failures its predicate claims."""

    def __init__(
        self,
        max_retries: int = 5,
        retry_interval: float = 60.0,
        should_retry: RetryPredicate = never_retry,
        error_message: str = "",
        log_prefix: str = "",
        logger: logging.Logger | None = None,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if retry_interval < 0:
            raise ValueError("retry_interval cannot be negative")
        self.max_retries = max_retries
        self.retry_interval = retry_interval
        self.should_retry = should_retry
        self.error_message = error_message
        self.log_prefix = log_prefix
        self.logger = logger or logging.getLogger("RetryExecutor")

    @classmethod
    def from_config(
        cls,
        config: RetryConfig,
        should_retry: RetryPredicate = never_retry,
        **kwargs: Any,
    ) -> "RetryExecutor":
        return cls(
            max_retries=config.max_retries,
            retry_interval=config.retry_interval,
            should_retry=should_retry,
            **kwargs,
        )

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        cancel_event: asyncio.Event | None = None,
        deadline: float | None = None,
    ) -> T:
        """
        Execute ``operation`` and retry the failures the predicate claims.

        Args:
            operation: Zero-argument coroutine function performing one remote call
            cancel_event: Optional signal; once set, the in-flight attempt or
                sleep is abandoned and no further attempt is made
            deadline: Optional absolute ``loop.time()`` bounding every attempt
                and sleep

        Returns:
            The result of the first successful attempt

        Raises:
            The last error when the predicate declines it or the bound is reached,
            OperationCancelledError or OperationTimeoutError when a signal fires.
        """
        last_error: BaseException | None = None

        for attempt in range(self.max_retries + 1):
            if attempt:
                self._check_signals(cancel_event, deadline)

            try:
                return await self._attempt(operation, cancel_event, deadline)
            except (asyncio.CancelledError, OperationCancelledError, OperationTimeoutError):
                raise
            except Exception as e:
                if not self.should_retry(e):
                    raise
                last_error = e

            self._check_signals(cancel_event, deadline)
            self._log_retry(attempt, last_error)

            if self.retry_interval > 0 and attempt < self.max_retries:
                await self._sleep(cancel_event, deadline)

        self.logger.error(self._timeout_message())
        raise last_error

    async def _attempt(
        self,
        operation: Callable[[], Awaitable[T]],
        cancel_event: asyncio.Event | None,
        deadline: float | None,
    ) -> T:
        """Await one invocation, aborting it when the cancel event or deadline fires."""
        if cancel_event is None and deadline is None:
            return await operation()

        timeout = asyncio.timeout_at(deadline)
        try:
            async with timeout:
                if cancel_event is None:
                    return await operation()
                return await self._race_cancel_event(operation, cancel_event)
        except TimeoutError:
            if timeout.expired():
                raise OperationTimeoutError(
                    f"{self.log_prefix}operation deadline exceeded"
                ) from None
            raise

    async def _race_cancel_event(
        self, operation: Callable[[], Awaitable[T]], cancel_event: asyncio.Event
    ) -> T:
        operation_task = asyncio.ensure_future(operation())
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {operation_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            operation_task.cancel()
            cancel_task.cancel()
            raise

        cancel_task.cancel()
        if operation_task in done:
            return operation_task.result()

        operation_task.cancel()
        await asyncio.wait({operation_task})
        self.logger.info("Retry executor was cancelled")
        raise OperationCancelledError(f"{self.log_prefix}operation cancelled")

    def _check_signals(
        self, cancel_event: asyncio.Event | None, deadline: float | None
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            self.logger.info("Retry executor was cancelled")
            raise OperationCancelledError(f"{self.log_prefix}operation cancelled")
        if deadline is not None and asyncio.get_running_loop().time() >= deadline:
            raise OperationTimeoutError(f"{self.log_prefix}operation deadline exceeded")

    async def _sleep(
        self, cancel_event: asyncio.Event | None, deadline: float | None
    ) -> None:
        delay = self.retry_interval
        if deadline is not None:
            delay = max(0.0, min(delay, deadline - asyncio.get_running_loop().time()))

        if cancel_event is None:
            await asyncio.sleep(delay)
            return

        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except TimeoutError:
            return

    def _log_retry(self, attempt: int, error: BaseException | None) -> None:
        message = f"{self.log_prefix}(Attempt {attempt + 1})"
        if self.error_message:
            message = f"{message} - {self.error_message}"
        if error is not None:
            message = f"{message}: {error}"

        if error is not None or self.error_message:
            self.logger.warning(message)
        else:
            self.logger.debug(message)

    def _timeout_message(self) -> str:
        prefix = f"{self.log_prefix} " if self.log_prefix else ""
        return (
            f"{prefix}executor timeout after {self.max_retries} attempts "
            f"with {self.retry_interval} seconds wait intervals"
        )
