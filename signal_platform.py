"""
Platform capabilities used by the daemon

The daemon never touches the signal module or terminates the process directly.
It goes through an ISignalPlatform so tests can inject signals and observe exit
calls without delivering real signals to the test runner.
"""

import logging
import os
import signal
import threading
from abc import ABC, abstractmethod
from typing import Any


class ISignalPlatform(ABC):
    """Abstract interface over OS signal delivery and process termination"""

    @abstractmethod
    def signal_notify(self, channel, signals) -> None:
        """Deliver every future occurrence of ``signals`` into ``channel``."""
        pass

    @abstractmethod
    def signal_stop(self, channel) -> None:
        """Stop delivering signals into ``channel``."""
        pass

    @abstractmethod
    def os_exit(self, code: int) -> None:
        """Terminate the process immediately with ``code``."""
        pass


class RealSignalPlatform(ISignalPlatform):
    """Production implementation backed by the signal module.

    Python only lets the main thread change signal handlers, so signal_stop
    restores the previous handlers only when called from there. Until that
    happens, a signal arriving after the channel was closed is handed to the
    previous handler, which is reinstalled on the spot.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("graceful_daemon")
        self._lock = threading.Lock()
        # channel id -> {signal: previous handler}
        self._previous_handlers: dict[int, dict[signal.Signals, Any]] = {}

    def signal_notify(self, channel, signals) -> None:
        if threading.current_thread() is not threading.main_thread():
            self.logger.warning(
                "Signal handlers can only be installed from the main thread, "
                "OS signals will not trigger shutdown"
            )
            return

        previous: dict[signal.Signals, Any] = {}

        def signal_handler(signum: int, frame: Any) -> None:
            sig = signal.Signals(signum)
            if channel.closed:
                _forward_to_previous(sig, frame, previous.get(sig))
                return
            channel.try_send(sig)

        for sig in signals:
            try:
                previous[sig] = signal.getsignal(sig)
                signal.signal(sig, signal_handler)
            except (OSError, ValueError) as e:
                self.logger.warning(f"Unable to install handler for {_signal_name(sig)}: {e}")
                previous.pop(sig, None)

        with self._lock:
            self._previous_handlers[id(channel)] = previous
        self.logger.debug(
            f"Signal handlers registered for {', '.join(_signal_name(s) for s in previous)}"
        )

    def signal_stop(self, channel) -> None:
        if threading.current_thread() is not threading.main_thread():
            self.logger.debug("Signal handlers can only be restored from the main thread")
            return

        with self._lock:
            previous = self._previous_handlers.pop(id(channel), {})
        if not previous:
            return

        failed = []
        for sig, handler in previous.items():
            try:
                signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
            except (OSError, ValueError) as e:
                self.logger.warning(f"Unable to restore handler for {_signal_name(sig)}: {e}")
                failed.append(sig)
        if not failed:
            self.logger.debug("Signal handlers restored")

    def os_exit(self, code: int) -> None:
        logging.shutdown()
        os._exit(code)


def _forward_to_previous(sig: signal.Signals, frame: Any, handler: Any) -> None:
    """Reinstall ``handler`` for ``sig`` and let it act on the signal that just arrived"""
    if handler is None:
        handler = signal.SIG_DFL
    signal.signal(sig, handler)
    if callable(handler):
        handler(sig, frame)
    elif handler == signal.SIG_DFL:
        os.kill(os.getpid(), sig)


def _signal_name(sig) -> str:
    try:
        return signal.Signals(sig).name
    except ValueError:
        return str(sig)
