"""
Generic "first success wins" runner for strategy chains.

A chain is an ordered list of :class:`ChainStep` objects. Steps run strictly
one after another; the next step starts only after the previous one failed,
produced nothing or timed out. All steps share the caller's
:class:`~preview_backend.guard.Deadline`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from .exceptions import ChainExhaustedError, ConversionTimeoutError, EmptyResultError
from .guard import Deadline, ResourceGuard
from .models import GenerationMethod

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainStep:
    """
    One candidate conversion.

    Attributes:
        name: Label used in logs (e.g. ``"pypdfium2:quality"``)
        attempt: Blocking callable returning bytes or a binary stream
        timeout: Step timeout in seconds, clamped to the request deadline
        method: Method reported when this step wins
        index: Variant number reported with ``GenerationMethod.FALLBACK``
    """

    name: str
    attempt: Callable[[], Any]
    timeout: float
    method: GenerationMethod
    index: Optional[int] = None


@dataclass(frozen=True)
class ChainResult:
    image_bytes: bytes
    step: ChainStep
    position: int


async def run_chain(
    steps: Sequence[ChainStep],
    guard: ResourceGuard,
    deadline: Deadline,
    context: str,
    validate: Optional[Callable[[bytes], None]] = None,
) -> ChainResult:
    """
    Evaluate ``steps`` in order and return the first usable result.

    Args:
        steps: Ordered candidates
        guard: Guard used to race each step against its timeout
        deadline: Shared per-request budget
        context: Prefix for log messages (usually the document id)
        validate: Optional check raising on a malformed image

    Returns:
        The winning step's bytes and position

    Raises:
        ChainExhaustedError: If every step failed or the budget ran out
    """
    errors: list[tuple[str, Exception]] = []

    for position, step in enumerate(steps):
        if deadline.expired():
            logger.warning(f"[{context}] budget exhausted before step {step.name}")
            errors.append((step.name, ConversionTimeoutError("Processing budget exhausted")))
            break

        stage = f"{context}:{step.name}"
        try:
            result = await guard.run_with_timeout(step.attempt, timeout=deadline.bound(step.timeout), stage=stage)
            if result is not None and not isinstance(result, (bytes, bytearray, memoryview)):
                result = await guard.drain(result, deadline, stage=stage)
            data = bytes(result or b"")
            if not data:
                raise EmptyResultError(f"{step.name} returned an empty image")
            if validate is not None:
                validate(data)
        except Exception as exc:
            logger.warning(f"[{context}] step {position + 1}/{len(steps)} {step.name} failed: {exc}")
            errors.append((step.name, exc))
            continue

        logger.debug(f"[{context}] step {step.name} succeeded with {len(data)} bytes after {deadline.elapsed_ms()}ms")
        return ChainResult(image_bytes=data, step=step, position=position)

    raise ChainExhaustedError(f"[{context}] all conversion steps failed", errors)
