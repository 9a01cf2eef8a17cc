"""Ordered fallback chains: evaluate strategies until one is accepted."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FallbackExhausted(RuntimeError):
    """Raised when every strategy produced a rejected result."""

    def __init__(self, message: str, *, last_result: object = None) -> None:
        super().__init__(message)
        self.kind = "fallback_exhausted"
        self.last_result = last_result


def first_success(
    strategies: Iterable[Callable[[], T]],
    *,
    accept: Callable[[T], bool] | None = None,
    catch: tuple[type[BaseException], ...] = (Exception,),
    describe: str = "operation",
) -> T:
    """
    Run ``strategies`` in order and return the first accepted result.

    A strategy fails when it raises one of ``catch`` or when ``accept`` rejects
    its result. Exceptions outside ``catch`` propagate immediately. When all
    strategies fail, the last exception is re-raised; if the last failure was a
    rejected result, :class:`FallbackExhausted` carries it instead.
    """
    last_error: BaseException | None = None
    last_result: object = None
    rejected = False
    attempted = 0

    for index, strategy in enumerate(strategies):
        attempted += 1
        try:
            result = strategy()
        except catch as exc:
            logger.debug("%s: strategy %d failed: %s", describe, index + 1, type(exc).__name__)
            last_error = exc
            rejected = False
            continue
        if accept is not None and not accept(result):
            logger.debug("%s: strategy %d result rejected", describe, index + 1)
            last_result = result
            rejected = True
            continue
        if index:
            logger.debug("%s: strategy %d succeeded", describe, index + 1)
        return result

    if attempted == 0:
        raise FallbackExhausted(f"No strategies given for {describe}.")
    if rejected or last_error is None:
        raise FallbackExhausted(f"All strategies failed for {describe}.", last_result=last_result)
    raise last_error
