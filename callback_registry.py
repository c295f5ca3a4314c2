"""
Shutdown callback registry

Callbacks are stored in one ordered sequence that is executed front to back.
Two registration disciplines write into it:

- ``append``: callbacks run after everything registered so far, in the order
  given (first registered, first executed).
- ``prepend``: callbacks run before everything registered so far; within one
  call the last argument runs first. This gives ``defer``-like LIFO teardown
  while callers list their steps top to bottom.

The same lock guards registration and execution, so nothing can be registered
while the sequence is running.
"""

import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from contexts import Context

ShutdownCallback = Callable[[Context], None]


@dataclass
class SequenceResult:
    """Outcome of one run of the shutdown sequence"""

    executed: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def completed(self) -> bool:
        return self.skipped == 0


class ShutdownCallbackRegistry:
    """Ordered registry of teardown callbacks"""

    def __init__(self):
        self._lock = threading.Lock()
        self._callbacks: deque[ShutdownCallback] = deque()

    def append(self, *callbacks: ShutdownCallback) -> None:
        with self._lock:
            self._callbacks.extend(callbacks)

    def prepend(self, *callbacks: ShutdownCallback) -> None:
        # extendleft reverses its argument, which is exactly the order we want
        with self._lock:
            self._callbacks.extendleft(callbacks)

    def snapshot(self) -> list[ShutdownCallback]:
        """Callbacks in execution order"""
        with self._lock:
            return list(self._callbacks)

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def run(self, ctx: Context, logger: logging.Logger) -> SequenceResult:
        """Run every callback sequentially with ``ctx``.

        Stops as soon as ctx is done; the remaining callbacks are counted as
        skipped and never called. An exception raised by a callback is logged
        and the sequence moves on to the next one.
        """
        result = SequenceResult()
        with self._lock:
            total = len(self._callbacks)
            for index, callback in enumerate(self._callbacks):
                if ctx.is_done():
                    result.skipped = total - index
                    logger.warning(
                        f"Shutdown context done ({ctx.err()}), skipping {result.skipped} remaining callback(s)"
                    )
                    break

                name = _callback_name(callback)
                logger.debug(f"Running shutdown callback {index + 1}/{total}: {name}")
                try:
                    callback(ctx)
                except Exception:
                    result.failed += 1
                    logger.exception(f"Shutdown callback {name} failed")
                result.executed += 1
        return result


def _callback_name(callback: Callable) -> str:
    return getattr(callback, "__qualname__", None) or repr(callback)
