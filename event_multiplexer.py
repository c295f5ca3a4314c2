"""
Event multiplexer

Merges the stop sources of a daemon into a single trigger:

- OS signals, delivered into a bounded Channel by the signal platform
- fatal errors, sent by application code into a bounded Channel
- cancellation of the parent context

Channels post into one Mailbox that the primary loop drains until the shutdown
sequence has completed, so producers are never left blocked while the daemon is
running. A second thread watches the parent context. Neither thread runs
shutdown callbacks; they only call the trigger function.
"""

import logging
import queue
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any

from contexts import Context
from daemon_config import DaemonConfig
from exit_codes import DaemonExitCode, ShutdownReason


class EventKind(Enum):
    SIGNAL = "signal"
    FATAL_ERROR = "fatal_error"
    DONE = "done"


class Mailbox:
    """Single receive point of the multiplexer.

    Backed by queue.SimpleQueue, whose put() is reentrant and may be called
    from a signal handler.
    """

    def __init__(self):
        self._queue: queue.SimpleQueue = queue.SimpleQueue()

    def post(self, kind: EventKind, item: Any = None, channel: "Channel | None" = None) -> None:
        self._queue.put((kind, item, channel))

    def receive(self, timeout: float | None = None) -> tuple[EventKind, Any, "Channel | None"]:
        return self._queue.get(timeout=timeout)


class Channel:
    """Bounded, send-only view of the mailbox for one kind of event.

    At most ``capacity`` items may be waiting for the receiver; senders block
    while the channel is full. A capacity of 0 is treated as a single slot.
    Once closed, sends are refused instead of blocking.
    """

    def __init__(self, kind: EventKind, mailbox: Mailbox, capacity: int):
        self.kind = kind
        self.capacity = capacity
        self._mailbox = mailbox
        self._slots = max(capacity, 1)
        self._pending = 0
        self._closed = False
        # RLock: a signal handler may interrupt the main thread while it holds the lock
        self._cond = threading.Condition(threading.RLock())

    def send(self, item: Any, timeout: float | None = None) -> bool:
        """Deliver item, waiting up to ``timeout`` for room. Returns True if delivered."""
        with self._cond:
            ready = self._cond.wait_for(lambda: self._closed or self._pending < self._slots, timeout)
            if not ready or self._closed:
                return False
            self._pending += 1
        self._mailbox.post(self.kind, item, self)
        return True

    def try_send(self, item: Any) -> bool:
        """Deliver item only if there is room right now; drop it otherwise"""
        return self.send(item, timeout=0)

    def ack(self) -> None:
        """Called by the receiver for every item it takes out of the mailbox"""
        with self._cond:
            self._pending -= 1
            self._cond.notify()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def __len__(self) -> int:
        with self._cond:
            return self._pending


class EventMultiplexer:
    """Two watcher threads feeding one shutdown trigger"""

    def __init__(
        self,
        config: DaemonConfig,
        parent_ctx: Context,
        trigger: Callable[[ShutdownReason], None],
    ):
        self.config = config
        self.logger: logging.Logger = config.logger
        self._parent_ctx = parent_ctx
        self._trigger = trigger

        self.mailbox = Mailbox()
        self.signal_channel = Channel(EventKind.SIGNAL, self.mailbox, config.max_signal_count)
        self.fatal_errors_channel = Channel(
            EventKind.FATAL_ERROR, self.mailbox, config.fatal_errors_channel_buffer_size
        )

        self._signal_lock = threading.Lock()
        self._signals_received = 0
        self._done = threading.Event()
        self._parent_wake = threading.Event()
        self._signals_released = False
        self._threads: list[threading.Thread] = []

    @property
    def signals_received(self) -> int:
        with self._signal_lock:
            return self._signals_received

    def start(self) -> None:
        self.config.platform.signal_notify(self.signal_channel, self.config.signals_notify)

        primary = threading.Thread(target=self._primary_loop, name="daemon-event-loop", daemon=True)
        parent_watch = threading.Thread(target=self._parent_watch_loop, name="daemon-parent-watch", daemon=True)
        self._threads = [primary, parent_watch]
        for thread in self._threads:
            thread.start()

    def stop(self) -> None:
        """Tear both watchers down; called once the shutdown sequence has completed"""
        if self._done.is_set():
            return
        self._done.set()
        self.signal_channel.close()
        self.fatal_errors_channel.close()
        self.mailbox.post(EventKind.DONE)
        self._parent_wake.set()

    def release_signals(self) -> None:
        """Hand the subscribed signals back to their previous handlers, once"""
        with self._signal_lock:
            if self._signals_released:
                return
            self._signals_released = True
        self.config.platform.signal_stop(self.signal_channel)

    def join(self, timeout: float | None = None) -> None:
        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join(timeout)

    def _primary_loop(self) -> None:
        while True:
            kind, item, channel = self.mailbox.receive()
            if channel is not None:
                channel.ack()

            if kind is EventKind.DONE:
                break
            try:
                if kind is EventKind.SIGNAL:
                    self._handle_signal(item)
                elif kind is EventKind.FATAL_ERROR:
                    self.config.log_fatal_error(self.logger, item)
                    self._trigger(ShutdownReason.FATAL_ERROR)
            except Exception:
                # The loop must keep draining; make sure shutdown still happens
                self.logger.exception(f"Error handling {kind.value} event")
                self._trigger(ShutdownReason(kind.value))
        self.logger.debug("Event loop stopped")

    def _handle_signal(self, sig) -> None:
        with self._signal_lock:
            self._signals_received += 1
            count = self._signals_received

        self.config.log_signal(self.logger, sig)
        max_count = self.config.max_signal_count
        if max_count > 0 and count >= max_count:
            self.logger.error(f"Max number of signals received ({count}), terminating immediately")
            self.config.exit_fn(DaemonExitCode.IMMEDIATE_TERMINATION)
        self._trigger(ShutdownReason.SIGNAL)

    def _parent_watch_loop(self) -> None:
        remove = self._parent_ctx.add_done_callback(self._parent_wake.set)
        try:
            self._parent_wake.wait()
            if self._done.is_set():
                return
            err = self._parent_ctx.err()
            self.logger.error(f"Parent context got canceled: {err if err is not None else ''}")
            self._trigger(ShutdownReason.PARENT_CONTEXT_DONE)
        finally:
            remove()
