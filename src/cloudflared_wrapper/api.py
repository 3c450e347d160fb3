"""High-level API for cloudflared wrapper.

This module provides simple, user-friendly functions for common tunneling tasks.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from .logging import get_logger
from .supervisor import TunnelSupervisor

logger = get_logger(__name__)


def create_tunnel() -> TunnelSupervisor:
    """Create an independent tunnel supervisor.

    Each supervisor owns its own process, health monitor and counters, so
    several tunnels can run side by side.

    Example:
        >>> tunnel = create_tunnel()
        >>> url = tunnel.start(local_port=5500).result(timeout=30)
        >>> tunnel.kill_child()
    """
    return TunnelSupervisor()


@contextmanager
def managed_tunnel(
    local_port: int,
    *,
    timeout: float | None = 30.0,
    **kwargs: Any,
) -> Iterator[str]:
    """Context manager that exposes a local port and cleans up afterwards.

    Args:
        local_port: Local port to expose
        timeout: Seconds to wait for the public URL
        **kwargs: Additional TunnelConfig options

    Yields:
        str: The public URL of the tunnel

    Example:
        >>> with managed_tunnel(3000) as url:
        ...     print(f"Your app is live at: {url}")
    """
    supervisor = TunnelSupervisor()
    try:
        url = supervisor.start(local_port=local_port, **kwargs).result(timeout=timeout)
        logger.info("Tunnel created", url=url, local_port=local_port)
        yield url
    finally:
        supervisor.stop()
