"""Tests for high-level API functions."""

from concurrent.futures import Future
from unittest.mock import Mock, patch

import pytest

from cloudflared_wrapper import create_tunnel, managed_tunnel
from cloudflared_wrapper.exceptions import DiscoveryTimeoutError
from cloudflared_wrapper.supervisor import TunnelSupervisor


def resolved(value):
    future = Future()
    future.set_result(value)
    return future


class TestCreateTunnel:
    """Test create_tunnel function."""

    def test_returns_independent_supervisors(self):
        first = create_tunnel()
        second = create_tunnel()

        assert isinstance(first, TunnelSupervisor)
        assert first is not second


class TestManagedTunnel:
    """Test managed_tunnel context manager."""

    @patch("cloudflared_wrapper.api.TunnelSupervisor")
    def test_yields_url_and_stops(self, mock_supervisor_class):
        mock_supervisor = Mock()
        mock_supervisor.start.return_value = resolved("https://a-b.trycloudflare.com")
        mock_supervisor_class.return_value = mock_supervisor

        with managed_tunnel(3000, verbose=True) as url:
            assert url == "https://a-b.trycloudflare.com"
            mock_supervisor.stop.assert_not_called()

        mock_supervisor.start.assert_called_once_with(local_port=3000, verbose=True)
        mock_supervisor.stop.assert_called_once()

    @patch("cloudflared_wrapper.api.TunnelSupervisor")
    def test_stops_on_discovery_failure(self, mock_supervisor_class):
        mock_supervisor = Mock()
        failed = Future()
        failed.set_exception(DiscoveryTimeoutError("no url"))
        mock_supervisor.start.return_value = failed
        mock_supervisor_class.return_value = mock_supervisor

        with pytest.raises(DiscoveryTimeoutError):
            with managed_tunnel(3000):
                pass

        mock_supervisor.stop.assert_called_once()

    @patch("cloudflared_wrapper.api.TunnelSupervisor")
    def test_stops_when_body_raises(self, mock_supervisor_class):
        mock_supervisor = Mock()
        mock_supervisor.start.return_value = resolved("https://a-b.trycloudflare.com")
        mock_supervisor_class.return_value = mock_supervisor

        with pytest.raises(ValueError):
            with managed_tunnel(3000):
                raise ValueError("app error")

        mock_supervisor.stop.assert_called_once()
