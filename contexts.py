"""
Cancelable execution contexts

A Context is a cancellation scope shared between threads. Cancelling a context
cancels every context derived from it, and a context created with a deadline
cancels itself when the deadline passes. Cancellation is cooperative: code that
receives a context is expected to check ``ctx.err()`` or wait on ``ctx.done()``.
"""

import threading
import time
from collections.abc import Callable


class ContextError(Exception):
    """Base class for the reasons a context is done"""


class Canceled(ContextError):
    def __init__(self, message: str = "context canceled"):
        super().__init__(message)


class DeadlineExceeded(ContextError):
    def __init__(self, message: str = "context deadline exceeded"):
        super().__init__(message)


class Context:
    """Cancelable scope with an optional deadline (time.monotonic based)"""

    def __init__(self, parent: "Context | None" = None, deadline: float | None = None):
        self._parent = parent
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._err: ContextError | None = None
        self._children: set[Context] = set()
        self._callbacks: list[Callable[[], None]] = []
        self._timer: threading.Timer | None = None

        # A child can never outlive its parent's deadline
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._deadline = deadline

        if parent is not None:
            parent._add_child(self)

        if deadline is not None and not self._done.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._cancel(DeadlineExceeded())
            else:
                timer = threading.Timer(remaining, self._cancel, args=(DeadlineExceeded(),))
                timer.daemon = True
                with self._lock:
                    if self._err is None:
                        self._timer = timer
                        timer.start()

    @property
    def deadline(self) -> float | None:
        """Monotonic deadline, or None when the context has no deadline"""
        return self._deadline

    def done(self) -> threading.Event:
        """Event that is set once the context is canceled or its deadline passed"""
        return self._done

    def err(self) -> ContextError | None:
        """None while the context is live, the reason it is done otherwise"""
        with self._lock:
            return self._err

    def is_done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context is done; False if the timeout elapsed first"""
        return self._done.wait(timeout)

    def add_done_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run callback once the context is done (immediately if it already is).

        Returns a function that unregisters the callback.
        """
        with self._lock:
            if self._err is None:
                self._callbacks.append(callback)

                def remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return remove

        callback()
        return lambda: None

    def _add_child(self, child: "Context") -> None:
        with self._lock:
            err = self._err
            if err is None:
                self._children.add(child)
                return
        child._cancel(err, detach=False)

    def _remove_child(self, child: "Context") -> None:
        with self._lock:
            self._children.discard(child)

    def _cancel(self, err: ContextError, detach: bool = True) -> None:
        with self._lock:
            if self._err is not None:
                return
            self._err = err
            children = list(self._children)
            self._children.clear()
            callbacks = self._callbacks
            self._callbacks = []
            timer = self._timer
            self._timer = None
            self._done.set()

        if timer is not None:
            timer.cancel()
        for child in children:
            child._cancel(err, detach=False)
        for callback in callbacks:
            callback()
        if detach and self._parent is not None:
            self._parent._remove_child(self)

    def __repr__(self) -> str:
        state = "live" if self._err is None else str(self._err)
        return f"{self.__class__.__name__}({state})"


class _BackgroundContext(Context):
    """Root context that is never canceled and keeps no references to children"""

    def _add_child(self, child: Context) -> None:
        pass

    def add_done_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        return lambda: None

    def _cancel(self, err: ContextError, detach: bool = True) -> None:
        pass


_background = _BackgroundContext()


def background() -> Context:
    """The empty root context: never canceled, no deadline"""
    return _background


def with_cancel(parent: Context) -> tuple[Context, Callable[[], None]]:
    """Derive a context that is canceled when cancel() is called or parent is done"""
    ctx = Context(parent)
    return ctx, lambda: ctx._cancel(Canceled())


def with_deadline(parent: Context, deadline: float) -> tuple[Context, Callable[[], None]]:
    """Derive a context that is done at the monotonic time ``deadline`` at the latest"""
    ctx = Context(parent, deadline=deadline)
    return ctx, lambda: ctx._cancel(Canceled())


def with_timeout(parent: Context, timeout: float) -> tuple[Context, Callable[[], None]]:
    """Derive a context that is done ``timeout`` seconds from now at the latest"""
    return with_deadline(parent, time.monotonic() + timeout)


def sleep(ctx: Context, seconds: float) -> bool:
    """Sleep for ``seconds`` or until ctx is done. Returns True if the full time elapsed."""
    return not ctx.wait(seconds)
