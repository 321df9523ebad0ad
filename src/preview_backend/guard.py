"""
Resource guard for thumbnail generation.

Every blocking conversion call goes through :meth:`ResourceGuard.run_with_timeout`,
which runs it on the service's worker pool and races it against a deadline.
Whichever finishes first wins; a call that loses the race is abandoned on
its worker thread. Store writes and placeholder rendering use a separate I/O
pool so abandoned conversions cannot starve them.
"""

from __future__ import annotations

import asyncio
import contextvars
import functools
import logging
import threading
import time
from concurrent.futures import Executor
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar

from .configuration import ResourceLimits
from .exceptions import (
    ConversionTimeoutError,
    EmptyInputError,
    EmptyResultError,
    InputTooLargeError,
    StreamReadTimeoutError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

STREAM_CHUNK_SIZE = 64 * 1024


class Deadline:
    """Per-request processing budget measured on the monotonic clock."""

    def __init__(self, budget_seconds: float) -> None:
        self.budget_seconds = budget_seconds
        self._started = time.monotonic()

    def elapsed(self) -> float:
        return time.monotonic() - self._started

    def elapsed_ms(self) -> int:
        return int(self.elapsed() * 1000)

    def remaining(self) -> float:
        return max(0.0, self.budget_seconds - self.elapsed())

    def expired(self) -> bool:
        return self.remaining() <= 0

    def bound(self, timeout: float) -> float:
        """Clamp a step timeout to what is left of the budget."""
        return min(timeout, self.remaining())


def read_stream(
    stream: Any,
    timeout: float,
    cancel: Optional[threading.Event] = None,
    allow_empty: bool = False,
) -> bytes:
    """
    Drain a binary stream (file-like or iterable of chunks) into bytes.

    The deadline and the cancellation token are checked between chunks; the
    stream is closed on every exit path.

    Raises:
        StreamReadTimeoutError: If the deadline passes or ``cancel`` is set
        EmptyResultError: If the stream yields nothing and ``allow_empty`` is False
    """
    deadline = time.monotonic() + timeout
    chunks: list[bytes] = []

    if hasattr(stream, "read"):
        source: Iterator[bytes] = iter(functools.partial(stream.read, STREAM_CHUNK_SIZE), b"")
    else:
        source = iter(stream)

    try:
        for chunk in source:
            if cancel is not None and cancel.is_set():
                raise StreamReadTimeoutError("Stream read cancelled")
            if time.monotonic() > deadline:
                raise StreamReadTimeoutError(f"Stream read exceeded {timeout:.1f}s")
            if chunk:
                chunks.append(bytes(chunk))
    finally:
        close = getattr(stream, "close", None)
        if callable(close):
            close()

    data = b"".join(chunks)
    if not data and not allow_empty:
        raise EmptyResultError("Stream ended without data")
    return data


class ResourceGuard:
    """Enforces input ceilings, deadlines and the temp-file ceiling."""

    def __init__(self, limits: ResourceLimits, executor: Executor, io_executor: Optional[Executor] = None) -> None:
        self.limits = limits
        self._executor = executor
        self._io_executor = io_executor or executor
        self._temp_slots = threading.BoundedSemaphore(limits.max_temp_files)

    def check_input(self, data: bytes) -> None:
        """
        Reject empty or oversized input before any strategy runs.

        Raises:
            EmptyInputError: If ``data`` is empty
            InputTooLargeError: If ``data`` exceeds ``max_input_bytes``
        """
        if not data:
            raise EmptyInputError()
        if len(data) > self.limits.max_input_bytes:
            raise InputTooLargeError(len(data), self.limits.max_input_bytes)

    def start_deadline(self) -> Deadline:
        return Deadline(self.limits.max_processing_seconds)

    async def run_blocking(self, func: Callable[..., T], *args: Any, timeout: Optional[float] = None, stage: str = "io") -> T:
        """
        Run a blocking store or placeholder call on the I/O pool.

        Raises:
            ConversionTimeoutError: If ``timeout`` is given and passes first
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._io_executor, contextvars.copy_context().run, functools.partial(func, *args))
        if timeout is None:
            return await future
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(f"{stage} abandoned after {timeout:.2f}s")
            raise ConversionTimeoutError(f"{stage} timed out after {timeout:.2f}s") from exc

    async def run_with_timeout(
        self,
        func: Callable[..., T],
        *args: Any,
        timeout: float,
        stage: str,
    ) -> T:
        """
        Race a blocking call against ``timeout`` seconds.

        Raises:
            ConversionTimeoutError: If the timer fires first or no time is left
        """
        if timeout <= 0:
            raise ConversionTimeoutError(f"{stage}: processing budget exhausted")
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, contextvars.copy_context().run, functools.partial(func, *args))
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(f"{stage} abandoned after {timeout:.2f}s")
            raise ConversionTimeoutError(f"{stage} timed out after {timeout:.2f}s") from exc

    async def await_with_timeout(self, awaitable: Awaitable[T], timeout: float, stage: str) -> T:
        """Race an awaitable against ``timeout`` seconds."""
        if timeout <= 0:
            raise ConversionTimeoutError(f"{stage}: processing budget exhausted")
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError as exc:
            raise ConversionTimeoutError(f"{stage} timed out after {timeout:.2f}s") from exc

    async def drain(self, stream: Any, deadline: Deadline, stage: str) -> bytes:
        """
        Materialize a stream under the stream timeout (bounded by the deadline).

        On timeout the cancellation token is set so the abandoned reader stops
        at the next chunk boundary and closes the stream.
        """
        cancel = threading.Event()
        timeout = deadline.bound(self.limits.max_stream_seconds)
        try:
            return await self.run_with_timeout(read_stream, stream, timeout, cancel, timeout=timeout, stage=stage)
        except StreamReadTimeoutError:
            raise
        except ConversionTimeoutError as exc:
            cancel.set()
            raise StreamReadTimeoutError(f"{stage}: stream not drained within {timeout:.2f}s") from exc

    @contextmanager
    def temp_slot(self, timeout: float) -> Iterator[None]:
        """
        Hold one of ``max_temp_files`` temp-file slots.

        Blocks the calling worker thread for at most ``timeout`` seconds.
        """
        if not self._temp_slots.acquire(timeout=max(0.0, timeout)):
            raise ConversionTimeoutError("No temporary file slot available")
        try:
            yield
        finally:
            self._temp_slots.release()
