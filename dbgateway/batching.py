"""Fixed-size concurrent batches."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def run_in_batches(
    items: Sequence[T],
    size: int,
    fn: Callable[[T], Awaitable[R]],
) -> list[R | BaseException]:
    """Run ``fn`` over ``items`` with at most ``size`` calls in flight.

    Each batch is awaited completely before the next one starts. Results keep
    the input order; a failing call contributes its exception instead of a
    result and never cancels its siblings.
    """

    if size < 1:
        raise ValueError("batch size must be positive")
    results: list[R | BaseException] = []
    for start in range(0, len(items), size):
        batch = items[start : start + size]
        results.extend(await asyncio.gather(*(fn(item) for item in batch), return_exceptions=True))
    return results


__all__ = ["run_in_batches"]
