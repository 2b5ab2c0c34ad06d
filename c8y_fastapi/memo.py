"""Per-request memoization on top of Starlette's ``request.state``."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from starlette.requests import Request

T = TypeVar("T")

STATE_ATTR = "c8y_context"


def request_context(request: Request) -> dict[str, Any]:
    """Return the context bag of ``request``, creating it on first use."""
    bag = getattr(request.state, STATE_ATTR, None)
    if bag is None:
        bag = {}
        setattr(request.state, STATE_ATTR, bag)
    return bag


async def get_or_compute(
    bag: dict[str, Any],
    slot: str,
    compute: Callable[[], Awaitable[T]],
) -> T:
    """
    Return ``bag[slot]``, computing and storing it first if absent.

    Two calls issued concurrently before the first finishes may both
    compute; sequential awaits compute at most once.
    """
    if slot in bag:
        return bag[slot]
    value = await compute()
    bag[slot] = value
    return value


__all__ = ["request_context", "get_or_compute"]
