"""
Tests for the real signal platform.

Handlers are installed with signal.signal patched out, and invoked directly, so
no signal is ever delivered to the test process.
"""

import signal
import threading
from unittest.mock import Mock, patch

import pytest

from event_multiplexer import Channel, EventKind, Mailbox
from signal_platform import ISignalPlatform, RealSignalPlatform


def install_handler(platform, channel, sig, previous):
    """Subscribe ``channel`` to ``sig`` and return the handler that was installed."""
    with patch("signal_platform.signal.getsignal", return_value=previous), patch(
        "signal_platform.signal.signal"
    ) as mock_signal:
        platform.signal_notify(channel, [sig])
    return mock_signal.call_args[0][1]


class TestISignalPlatform:
    """Test the abstract platform interface."""

    def test_cannot_instantiate_abstract_platform(self):
        """Test that the interface cannot be instantiated directly."""
        with pytest.raises(TypeError):
            ISignalPlatform()


class TestRealSignalPlatform:
    """Test RealSignalPlatform with the signal module patched."""

    @pytest.fixture
    def platform(self, mock_logger):
        return RealSignalPlatform(mock_logger)

    @pytest.fixture
    def channel(self):
        return Channel(EventKind.SIGNAL, Mailbox(), capacity=2)

    def debug_messages(self, mock_logger):
        return [call[0][0] for call in mock_logger.debug.call_args_list]

    @patch("signal_platform.signal.getsignal", return_value=signal.SIG_DFL)
    @patch("signal_platform.signal.signal")
    def test_signal_notify_installs_handlers(self, mock_signal, mock_getsignal, platform, channel):
        """Test that a handler is installed for every requested signal."""
        platform.signal_notify(channel, [signal.SIGTERM, signal.SIGINT])

        assert mock_signal.call_count == 2
        signals_registered = [call[0][0] for call in mock_signal.call_args_list]
        assert signal.SIGTERM in signals_registered
        assert signal.SIGINT in signals_registered

    def test_handler_sends_into_channel(self, platform, channel):
        """Test that the installed handler delivers the signal into the channel."""
        handler = install_handler(platform, channel, signal.SIGTERM, signal.SIG_DFL)

        handler(signal.SIGTERM, None)

        assert len(channel) == 1

    def test_handler_drops_when_channel_full(self, platform, channel):
        """Test that signals arriving while the channel is full are dropped."""
        handler = install_handler(platform, channel, signal.SIGINT, signal.SIG_DFL)

        for _ in range(5):
            handler(signal.SIGINT, None)

        assert len(channel) == 2

    @patch("signal_platform.signal.signal")
    def test_signal_stop_restores_previous_handlers(self, mock_signal, platform, channel, mock_logger):
        """Test that signal_stop reinstalls the handlers found at subscription."""
        previous = Mock()
        install_handler(platform, channel, signal.SIGTERM, previous)

        platform.signal_stop(channel)

        mock_signal.assert_called_once_with(signal.SIGTERM, previous)
        assert "Signal handlers restored" in self.debug_messages(mock_logger)

    @patch("signal_platform.signal.signal")
    def test_signal_stop_restores_default_for_foreign_handler(self, mock_signal, platform, channel):
        """Test that a handler not installed from Python is restored as SIG_DFL."""
        # getsignal returns None for handlers not installed from Python
        install_handler(platform, channel, signal.SIGTERM, None)

        platform.signal_stop(channel)

        mock_signal.assert_called_once_with(signal.SIGTERM, signal.SIG_DFL)

    @patch("signal_platform.signal.signal")
    def test_signal_stop_without_notify_is_noop(self, mock_signal, platform, channel):
        """Test that stopping an unknown channel changes nothing."""
        platform.signal_stop(channel)
        mock_signal.assert_not_called()

    @patch("signal_platform.signal.signal")
    def test_signal_stop_outside_main_thread_keeps_handlers(self, mock_signal, platform, channel, mock_logger):
        """Test that a stop from another thread leaves the restore to the main thread."""
        previous = Mock()
        install_handler(platform, channel, signal.SIGTERM, previous)

        thread = threading.Thread(target=platform.signal_stop, args=(channel,))
        thread.start()
        thread.join()

        mock_signal.assert_not_called()
        assert "Signal handlers restored" not in self.debug_messages(mock_logger)

        platform.signal_stop(channel)
        mock_signal.assert_called_once_with(signal.SIGTERM, previous)

    def test_failed_restore_is_not_reported_as_restored(self, platform, channel, mock_logger):
        """Test that a failed restore is logged as a warning only."""
        install_handler(platform, channel, signal.SIGTERM, signal.SIG_DFL)

        with patch("signal_platform.signal.signal", side_effect=OSError("not permitted")):
            platform.signal_stop(channel)

        mock_logger.warning.assert_called_once()
        assert "SIGTERM" in mock_logger.warning.call_args[0][0]
        assert "Signal handlers restored" not in self.debug_messages(mock_logger)

    @patch("signal_platform.signal.getsignal", return_value=signal.SIG_DFL)
    @patch("signal_platform.signal.signal", side_effect=ValueError("invalid signal value"))
    def test_failed_install_is_logged(self, mock_signal, mock_getsignal, platform, channel, mock_logger):
        """Test that a handler that cannot be installed is logged and skipped."""
        platform.signal_notify(channel, [signal.SIGTERM])

        mock_logger.warning.assert_called_once()
        assert "SIGTERM" in mock_logger.warning.call_args[0][0]

    @patch("signal_platform.signal.signal")
    def test_notify_outside_main_thread_is_skipped(self, mock_signal, platform, channel, mock_logger):
        """Test that subscribing from another thread logs a warning instead of failing."""
        thread = threading.Thread(target=platform.signal_notify, args=(channel, [signal.SIGTERM]))
        thread.start()
        thread.join()

        mock_signal.assert_not_called()
        mock_logger.warning.assert_called_once()

    @patch("signal_platform.logging.shutdown")
    @patch("signal_platform.os._exit")
    def test_os_exit(self, mock_exit, mock_logging_shutdown, platform):
        """Test that os_exit flushes logging before exiting."""
        platform.os_exit(2)

        mock_logging_shutdown.assert_called_once()
        mock_exit.assert_called_once_with(2)


class TestDeliveryAfterClose:
    """Test signals that arrive after the channel was closed."""

    @pytest.fixture
    def platform(self, mock_logger):
        return RealSignalPlatform(mock_logger)

    @pytest.fixture
    def channel(self):
        return Channel(EventKind.SIGNAL, Mailbox(), capacity=2)

    @patch("signal_platform.signal.signal")
    def test_forwards_to_previous_python_handler(self, mock_signal, platform, channel):
        """Test that the previous handler is reinstalled and called."""
        previous = Mock()
        handler = install_handler(platform, channel, signal.SIGINT, previous)
        channel.close()

        handler(signal.SIGINT, "frame")

        mock_signal.assert_called_once_with(signal.SIGINT, previous)
        previous.assert_called_once_with(signal.SIGINT, "frame")
        assert len(channel) == 0

    def test_default_int_handler_raises_keyboard_interrupt(self, platform, channel):
        """Test that Ctrl-C behaves as usual once the daemon is done."""
        handler = install_handler(platform, channel, signal.SIGINT, signal.default_int_handler)
        channel.close()

        with patch("signal_platform.signal.signal"), pytest.raises(KeyboardInterrupt):
            handler(signal.SIGINT, None)

    @patch("signal_platform.os.kill")
    @patch("signal_platform.signal.signal")
    def test_default_action_is_raised_again(self, mock_signal, mock_kill, platform, channel):
        """Test that SIG_DFL is reinstalled and the signal re-raised."""
        handler = install_handler(platform, channel, signal.SIGTERM, signal.SIG_DFL)
        channel.close()

        handler(signal.SIGTERM, None)

        mock_signal.assert_called_once_with(signal.SIGTERM, signal.SIG_DFL)
        mock_kill.assert_called_once()
        assert mock_kill.call_args[0][1] == signal.SIGTERM

    @patch("signal_platform.os.kill")
    @patch("signal_platform.signal.signal")
    def test_ignored_signal_stays_ignored(self, mock_signal, mock_kill, platform, channel):
        """Test that SIG_IGN is reinstalled without re-raising."""
        handler = install_handler(platform, channel, signal.SIGTERM, signal.SIG_IGN)
        channel.close()

        handler(signal.SIGTERM, None)

        mock_signal.assert_called_once_with(signal.SIGTERM, signal.SIG_IGN)
        mock_kill.assert_not_called()
