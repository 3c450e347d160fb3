"""cloudflared wrapper - supervised quick tunnels with automatic recovery."""

from .api import create_tunnel, managed_tunnel
from .config import TunnelConfig
from .exceptions import (
    BinaryNotFoundError,
    CloudflaredWrapperError,
    ConfigurationError,
    DiscoveryTimeoutError,
    ProbeFailure,
    ProcessError,
)
from .health import HealthMonitor, HealthState, MonitorStatus, PeriodicTask
from .logging import get_logger, setup_logging
from .process import TunnelProcess, select_terminator
from .scanner import LineScanner, UrlExtractor
from .supervisor import TunnelSupervisor

__version__ = "0.1.0"


__all__ = [
    # High-level API
    "create_tunnel",
    "managed_tunnel",
    # Core
    "TunnelSupervisor",
    "TunnelConfig",
    "TunnelProcess",
    "select_terminator",
    "LineScanner",
    "UrlExtractor",
    # Health monitoring
    "HealthMonitor",
    "HealthState",
    "MonitorStatus",
    "PeriodicTask",
    # Exceptions
    "CloudflaredWrapperError",
    "ConfigurationError",
    "BinaryNotFoundError",
    "ProcessError",
    "DiscoveryTimeoutError",
    "ProbeFailure",
    # Logging
    "get_logger",
    "setup_logging",
]
