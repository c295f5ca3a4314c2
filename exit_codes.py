"""
Exit code and shutdown reason definitions.

Provides standardized exit codes that process managers and monitoring systems
can interpret to understand how the process stopped.
"""

import enum


class ShutdownReason(enum.Enum):
    """What triggered the shutdown sequence (first trigger wins)"""

    MANUAL = "manual"
    SIGNAL = "signal"
    FATAL_ERROR = "fatal_error"
    PARENT_CONTEXT_DONE = "parent_context_done"


class DaemonExitCode(enum.IntEnum):
    """Exit codes for different shutdown outcomes."""

    SUCCESS_CLEAN_SHUTDOWN = 0  # Every callback ran and none raised
    FATAL_ERROR_SHUTDOWN = 1  # Shutdown was triggered by a fatal error
    IMMEDIATE_TERMINATION = 2  # Too many signals, teardown was abandoned
    GRACE_PERIOD_EXCEEDED = 3  # Deadline hit, remaining callbacks skipped
    CALLBACK_FAILURE = 4  # At least one callback raised


def determine_exit_code(reason, result) -> DaemonExitCode:
    """Pick the exit code for a finished shutdown.

    ``reason`` is the ShutdownReason of the first trigger and ``result`` the
    SequenceResult of the run (None if the sequence never ran).
    """
    if result is not None and result.skipped:
        return DaemonExitCode.GRACE_PERIOD_EXCEEDED
    if result is not None and result.failed:
        return DaemonExitCode.CALLBACK_FAILURE
    if reason is ShutdownReason.FATAL_ERROR:
        return DaemonExitCode.FATAL_ERROR_SHUTDOWN
    return DaemonExitCode.SUCCESS_CLEAN_SHUTDOWN


def get_exit_code_description(code: DaemonExitCode) -> str:
    """Get human-readable description of exit code."""
    descriptions = {
        DaemonExitCode.SUCCESS_CLEAN_SHUTDOWN: "Shutdown completed cleanly",
        DaemonExitCode.FATAL_ERROR_SHUTDOWN: "Shutdown completed after a fatal error was reported",
        DaemonExitCode.IMMEDIATE_TERMINATION: "Maximum signal count reached, terminated without teardown",
        DaemonExitCode.GRACE_PERIOD_EXCEEDED: "Shutdown grace period exceeded, some callbacks were skipped",
        DaemonExitCode.CALLBACK_FAILURE: "One or more shutdown callbacks raised an exception",
    }
    return descriptions.get(code, f"Unknown exit code: {code}")
