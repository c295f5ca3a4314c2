"""
Daemon configuration

A DaemonConfig starts from the documented defaults and is adjusted by option
functions passed to ``start``. The running daemon only reads it.
"""

import logging
import os
import signal
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from dotenv import load_dotenv

from signal_platform import ISignalPlatform, RealSignalPlatform

DEFAULT_LOGGER_NAME = "graceful_daemon"
DEFAULT_MAX_SIGNAL_COUNT = 0
DEFAULT_FATAL_ERRORS_CHANNEL_BUFFER_SIZE = 10
DEFAULT_SHUTDOWN_GRACE_DURATION = 0.0

ENV_SIGNALS = "GRACEFUL_DAEMON_SIGNALS"
ENV_MAX_SIGNAL_COUNT = "GRACEFUL_DAEMON_MAX_SIGNAL_COUNT"
ENV_FATAL_ERRORS_BUFFER_SIZE = "GRACEFUL_DAEMON_FATAL_ERRORS_BUFFER_SIZE"
ENV_SHUTDOWN_GRACE_SECONDS = "GRACEFUL_DAEMON_SHUTDOWN_GRACE_SECONDS"

logging.getLogger(DEFAULT_LOGGER_NAME).addHandler(logging.NullHandler())


def default_signals() -> list[signal.Signals]:
    """Interrupt, quit, abort and terminate; whichever exist on this platform"""
    names = ("SIGINT", "SIGQUIT", "SIGABRT", "SIGTERM")
    return [getattr(signal, name) for name in names if hasattr(signal, name)]


def log_signal(logger: logging.Logger, sig: signal.Signals) -> None:
    logger.warning(f"Signal received: {sig.name} (signal code {int(sig)})")


def log_fatal_error(logger: logging.Logger, err: Any) -> None:
    logger.error(f"Fatal error received: {err}")


@dataclass
class DaemonConfig:
    """Tunable policy of a daemon"""

    signals_notify: list[signal.Signals] = field(default_factory=default_signals)
    max_signal_count: int = DEFAULT_MAX_SIGNAL_COUNT  # 0 disables escalation
    fatal_errors_channel_buffer_size: int = DEFAULT_FATAL_ERRORS_CHANNEL_BUFFER_SIZE
    shutdown_timeout: float = DEFAULT_SHUTDOWN_GRACE_DURATION  # seconds, 0 is unbounded
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger(DEFAULT_LOGGER_NAME))
    platform: ISignalPlatform | None = None
    exit_fn: Callable[[int], None] | None = None
    log_signal: Callable[[logging.Logger, signal.Signals], None] = log_signal
    log_fatal_error: Callable[[logging.Logger, Any], None] = log_fatal_error

    def resolve(self) -> "DaemonConfig":
        """Fill the platform dependent fields that options left unset"""
        if self.platform is None:
            self.platform = RealSignalPlatform(self.logger)
        if self.exit_fn is None:
            self.exit_fn = self.platform.os_exit
        return self


DaemonConfigOption = Callable[[DaemonConfig], None]


def build_config(options: Sequence[DaemonConfigOption] = ()) -> DaemonConfig:
    """Apply options, in order, on top of the defaults"""
    config = DaemonConfig()
    for option in options:
        option(config)
    return config.resolve()


def _non_negative(name: str, value: int | float) -> None:
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")


def with_signals_notify(*signals: signal.Signals) -> DaemonConfigOption:
    """OS signals that trigger the graceful shutdown"""

    def option(config: DaemonConfig) -> None:
        config.signals_notify = list(signals)

    return option


def with_max_signal_count(count: int) -> DaemonConfigOption:
    """Number of signals after which the process exits without waiting for teardown.

    Zero disables escalation.
    """
    _non_negative("max signal count", count)

    def option(config: DaemonConfig) -> None:
        config.max_signal_count = count

    return option


def with_fatal_errors_channel_buffer_size(size: int) -> DaemonConfigOption:
    _non_negative("fatal errors channel buffer size", size)

    def option(config: DaemonConfig) -> None:
        config.fatal_errors_channel_buffer_size = size

    return option


def with_shutdown_grace_duration(duration: float | timedelta) -> DaemonConfigOption:
    """Timeout for the whole teardown sequence. Zero means no timeout."""
    if isinstance(duration, timedelta):
        duration = duration.total_seconds()
    _non_negative("shutdown grace duration", duration)

    def option(config: DaemonConfig) -> None:
        config.shutdown_timeout = float(duration)

    return option


def with_logger(logger: logging.Logger) -> DaemonConfigOption:
    def option(config: DaemonConfig) -> None:
        config.logger = logger

    return option


def with_exit_fn(exit_fn: Callable[[int], None]) -> DaemonConfigOption:
    def option(config: DaemonConfig) -> None:
        config.exit_fn = exit_fn

    return option


def with_log_signal(hook: Callable[[logging.Logger, signal.Signals], None]) -> DaemonConfigOption:
    def option(config: DaemonConfig) -> None:
        config.log_signal = hook

    return option


def with_log_fatal_error(hook: Callable[[logging.Logger, Any], None]) -> DaemonConfigOption:
    def option(config: DaemonConfig) -> None:
        config.log_fatal_error = hook

    return option


def with_platform(platform: ISignalPlatform) -> DaemonConfigOption:
    def option(config: DaemonConfig) -> None:
        config.platform = platform

    return option


def _parse_signal(name: str) -> signal.Signals:
    name = name.strip().upper()
    if not name.startswith("SIG"):
        name = f"SIG{name}"
    try:
        return signal.Signals[name]
    except KeyError:
        raise ValueError(f"Unknown signal name: {name}") from None


def _parse_number(key: str, raw: str, kind: type) -> Any:
    try:
        return kind(raw)
    except ValueError:
        raise ValueError(f"{key} is not a valid {kind.__name__}: {raw!r}") from None


def options_from_env(dotenv_path: str | os.PathLike | None = None) -> list[DaemonConfigOption]:
    """Build options from the environment, loading a .env file first.

    Variables that are not set keep their defaults.
    """
    load_dotenv(dotenv_path)

    options: list[DaemonConfigOption] = []

    raw = os.getenv(ENV_SIGNALS)
    if raw:
        options.append(with_signals_notify(*(_parse_signal(n) for n in raw.split(",") if n.strip())))

    raw = os.getenv(ENV_MAX_SIGNAL_COUNT)
    if raw:
        options.append(with_max_signal_count(_parse_number(ENV_MAX_SIGNAL_COUNT, raw, int)))

    raw = os.getenv(ENV_FATAL_ERRORS_BUFFER_SIZE)
    if raw:
        options.append(
            with_fatal_errors_channel_buffer_size(_parse_number(ENV_FATAL_ERRORS_BUFFER_SIZE, raw, int))
        )

    raw = os.getenv(ENV_SHUTDOWN_GRACE_SECONDS)
    if raw:
        options.append(with_shutdown_grace_duration(_parse_number(ENV_SHUTDOWN_GRACE_SECONDS, raw, float)))

    return options
