"""Tests for touchkio/service.py."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from touchkio.service import notify, ready, stopping


def _socket_mock(mock_socket_class):
    mock_sock = MagicMock()
    mock_socket_class.return_value.__enter__ = MagicMock(return_value=mock_sock)
    mock_socket_class.return_value.__exit__ = MagicMock(return_value=False)
    return mock_sock


def test_notify_noop_when_no_socket():
    """notify does nothing when NOTIFY_SOCKET is unset."""
    with patch.dict("os.environ", {}, clear=True):
        assert notify("READY=1") is False


@patch("touchkio.service.socket.socket")
def test_notify_sends_to_socket(mock_socket_class):
    mock_sock = _socket_mock(mock_socket_class)

    with patch.dict("os.environ", {"NOTIFY_SOCKET": "/run/user/1000/systemd/notify"}):
        assert notify("STOPPING=1") is True

    mock_sock.sendto.assert_called_once_with(b"STOPPING=1", "/run/user/1000/systemd/notify")


@patch("touchkio.service.socket.socket")
def test_notify_abstract_socket(mock_socket_class):
    """The @ prefix becomes a NUL byte for abstract sockets."""
    mock_sock = _socket_mock(mock_socket_class)

    with patch.dict("os.environ", {"NOTIFY_SOCKET": "@/org/freedesktop/systemd1/notify"}):
        notify("READY=1")

    mock_sock.sendto.assert_called_once_with(b"READY=1", "\0/org/freedesktop/systemd1/notify")


@patch("touchkio.service.socket.socket")
def test_notify_handles_os_error(mock_socket_class):
    mock_sock = _socket_mock(mock_socket_class)
    mock_sock.sendto.side_effect = OSError("Permission denied")

    with patch.dict("os.environ", {"NOTIFY_SOCKET": "/run/user/1000/systemd/notify"}):
        assert notify("READY=1") is False


@patch("touchkio.service.notify")
def test_ready_includes_status(mock_notify):
    ready("TouchKio Kiosk")
    mock_notify.assert_called_once_with("READY=1", "STATUS=TouchKio Kiosk")


@patch("touchkio.service.notify")
def test_stopping_sends_correct_message(mock_notify):
    stopping()
    mock_notify.assert_called_once_with("STOPPING=1")
