"""
Graceful daemon lifecycle

``start`` returns a Daemon that shuts down gracefully, exactly once, when the
first stop condition is met:

    a. one of the configured OS signals is received
    b. an error is sent on the fatal errors channel
    c. the parent context passed to ``start`` is done
    d. ``Daemon.shut_down()`` is called

Shutdown runs the registered callbacks sequentially, each with a shutdown
context derived from the parent context (bounded by the grace duration when
one is configured), then cancels ``Daemon.context()`` and releases ``wait()``.

Example:

    daemon = start(None, with_shutdown_grace_duration(5))
    ctx = daemon.context()  # hand this to the rest of the application

    db = open_repository(ctx)
    server = start_http_server(ctx, daemon.fatal_errors_channel())

    daemon.defer(
        server.shutdown,
        CANCEL_CTX,
        db.close,
    )
    daemon.wait()

``defer`` registers in LIFO order: ``db.close`` runs first above. ``on_shut_down``
registers in FIFO order. Callbacks are cooperative: a callback that ignores
``ctx.done()`` delays every callback after it, the grace duration only stops
callbacks that have not started yet.
"""

import logging
import threading
import time

from callback_registry import SequenceResult, ShutdownCallback, ShutdownCallbackRegistry
from contexts import Canceled, Context, DeadlineExceeded, background, with_cancel
from daemon_config import DaemonConfig, DaemonConfigOption, build_config
from event_multiplexer import Channel, EventMultiplexer
from exit_codes import DaemonExitCode, ShutdownReason, determine_exit_code
from system_utils import log_system_state


class ShutdownContext(Context):
    """Context handed to shutdown callbacks; knows the daemon it belongs to"""

    def __init__(self, parent: Context, daemon: "Daemon", deadline: float | None = None):
        super().__init__(parent, deadline=deadline)
        self.daemon = daemon

    def cancel(self) -> None:
        self._cancel(Canceled())


def cancel_ctx(ctx: Context) -> None:
    """Shutdown callback that cancels the daemon context at its position in the sequence"""
    if isinstance(ctx, ShutdownContext):
        ctx.daemon.cancel_context()


CANCEL_CTX: ShutdownCallback = cancel_ctx


class Daemon:
    """Coordinates a single graceful shutdown of the process"""

    def __init__(self, parent_ctx: Context, config: DaemonConfig):
        self.config = config
        self.logger: logging.Logger = config.logger

        self._parent_ctx = parent_ctx
        self._ctx, self._ctx_cancel = with_cancel(parent_ctx)

        self._registry = ShutdownCallbackRegistry()

        self._latch_lock = threading.Lock()
        self._shutdown_initiated = False
        self._shutdown_reason: ShutdownReason | None = None
        self._shutdown_result: SequenceResult | None = None
        self._done = threading.Event()

        self._multiplexer = EventMultiplexer(config, parent_ctx, self.shut_down)

    def context(self) -> Context:
        """The context that gets canceled when the daemon shuts down"""
        return self._ctx

    def on_shut_down(self, *callbacks: ShutdownCallback) -> None:
        """Register callbacks to run on shutdown after the ones already registered"""
        self._registry.append(*callbacks)

    def defer(self, *callbacks: ShutdownCallback) -> None:
        """Register callbacks to run on shutdown before the ones already registered.

        Within one call the callbacks run last to first, like stacked defers.
        """
        self._registry.prepend(*callbacks)

    def shut_down(self, reason: ShutdownReason = ShutdownReason.MANUAL) -> None:
        """Start the shutdown sequence in the background; only the first call has an effect"""
        with self._latch_lock:
            if self._shutdown_initiated:
                self.logger.debug(
                    f"Shutdown already initiated (reason: {self._shutdown_reason.value}), "
                    f"ignoring new request ({reason.value})"
                )
                return
            self._shutdown_initiated = True
            self._shutdown_reason = reason

        threading.Thread(target=self._run_shutdown_sequence, name="daemon-shutdown", daemon=True).start()

    def fatal_errors_channel(self) -> Channel:
        """Channel on which application code reports errors that require shutdown"""
        return self._multiplexer.fatal_errors_channel

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the shutdown sequence has completed.

        Called from the main thread, this also hands the subscribed signals back
        to the handlers that were installed before the daemon started.
        """
        done = self._done.wait(timeout)
        if done and threading.current_thread() is threading.main_thread():
            self._multiplexer.release_signals()
        return done

    def cancel_context(self) -> None:
        self._ctx_cancel()

    def is_shutting_down(self) -> bool:
        with self._latch_lock:
            return self._shutdown_initiated

    def is_done(self) -> bool:
        return self._done.is_set()

    @property
    def shutdown_reason(self) -> ShutdownReason | None:
        with self._latch_lock:
            return self._shutdown_reason

    @property
    def shutdown_result(self) -> SequenceResult | None:
        """Outcome of the sequence, available once wait() has returned"""
        return self._shutdown_result

    def exit_code(self) -> DaemonExitCode:
        return determine_exit_code(self.shutdown_reason, self._shutdown_result)

    def _start(self) -> None:
        self._multiplexer.start()

    def _shutdown_deadline(self) -> float | None:
        if self.config.shutdown_timeout > 0:
            return time.monotonic() + self.config.shutdown_timeout
        return None

    def _run_shutdown_sequence(self) -> None:
        shutdown_ctx = None
        result = None
        try:
            self.logger.info(f"Starting graceful shutdown (reason: {self._shutdown_reason.value})")
            log_system_state(self.logger, "SHUTDOWN_START")

            # Derived from the parent, not from self._ctx, so callbacks get a live context
            shutdown_ctx = ShutdownContext(self._parent_ctx, self, deadline=self._shutdown_deadline())
            result = self._registry.run(shutdown_ctx, self.logger)

            if isinstance(shutdown_ctx.err(), DeadlineExceeded):
                self.logger.warning(f"Shutdown grace period of {self.config.shutdown_timeout}s exceeded")
            log_system_state(self.logger, "SHUTDOWN_END")
            self.logger.info("Shutdown completed")
        finally:
            if shutdown_ctx is not None:
                shutdown_ctx.cancel()
            self._ctx_cancel()
            self._shutdown_result = result

            # Channels are closed before waiters are released
            self._multiplexer.stop()
            self._done.set()


def start(parent_ctx: Context | None = None, *options: DaemonConfigOption) -> Daemon:
    """Create a daemon and start watching for stop conditions"""
    config = build_config(options)
    daemon = Daemon(parent_ctx if parent_ctx is not None else background(), config)
    daemon._start()
    return daemon
