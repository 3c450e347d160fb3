"""Tunnel supervisor: starts cloudflared, discovers its URL, keeps it alive."""

import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from types import TracebackType
from typing import Any, Literal

from pydantic import ValidationError

from .config import TunnelConfig
from .exceptions import (
    CloudflaredWrapperError,
    ConfigurationError,
    DiscoveryTimeoutError,
    ProcessError,
)
from .health import HealthMonitor, HealthState
from .hooks import ExitCleanupRegistry
from .logging import get_logger, get_tunnel_logger
from .process import Terminator, TunnelProcess
from .scanner import LineLogSink, LineScanner, UrlExtractor

logger = get_logger(__name__)


class UrlDiscovery:
    """Feeds the output of one process into a URL extractor and settles the future"""

    def __init__(
        self,
        supervisor: "TunnelSupervisor",
        config: TunnelConfig,
        process: TunnelProcess,
        future: "Future[str]",
    ):
        self._supervisor = supervisor
        self._process = process
        self._future = future
        self._extractor = UrlExtractor(config.url_suffix, config.max_unmatched_lines)
        self._sink = LineLogSink(config.log_path) if config.verbose else None
        self._log = get_tunnel_logger(__name__, config.local_port).bind(pid=process.pid)

    def on_line(self, line: str) -> None:
        if self._sink is not None:
            self._sink.write(line)
        if self._future.done():
            return

        try:
            url = self._extractor.feed(line)
        except DiscoveryTimeoutError as e:
            self._log.error("Tunnel URL not found", error=str(e))
            self._future.set_exception(e)
            self._process.terminate()
            return

        if url is not None:
            self._log.info("Tunnel URL discovered", url=url)
            self._supervisor._url_resolved(self._process, url)
            self._future.set_result(url)

    def on_close(self) -> None:
        if self._future.done():
            return
        self._log.error("cloudflared exited before publishing a URL")
        self._future.set_exception(
            ProcessError("cloudflared exited before publishing a tunnel URL")
        )


class TunnelSupervisor:
    """Owns one cloudflared quick tunnel at a time.

    ``start`` returns a future for the public URL. With auto-recovery on,
    a health monitor keeps probing that URL and replaces the tunnel when
    it stops answering.

    Example:
        >>> supervisor = TunnelSupervisor()
        >>> url = supervisor.start(local_port=8000).result(timeout=30)
        >>> supervisor.stop()
    """

    def __init__(self, terminator: Terminator | None = None):
        self._terminator = terminator
        self._lock = threading.RLock()
        self._config: TunnelConfig | None = None
        self._process: TunnelProcess | None = None
        self._monitor: HealthMonitor | None = None
        self._url: str | None = None

    @property
    def config(self) -> TunnelConfig | None:
        return self._config

    @property
    def url(self) -> str | None:
        """Most recently discovered public URL"""
        return self._url

    @property
    def pid(self) -> int | None:
        process = self._process
        return process.pid if process is not None else None

    @property
    def health(self) -> HealthState | None:
        monitor = self._monitor
        return monitor.state if monitor is not None else None

    def is_running(self) -> bool:
        process = self._process
        return process is not None and process.is_running()

    def start(self, config: TunnelConfig | None = None, **options: Any) -> "Future[str]":
        """Start a tunnel and return a future for its public URL

        Args:
            config: Complete tunnel configuration
            **options: TunnelConfig fields, used when ``config`` is omitted

        Returns:
            Future resolving to the public URL. It fails with
            ConfigurationError, BinaryNotFoundError, ProcessError or
            DiscoveryTimeoutError.
        """
        try:
            config = self._build_config(config, options)
        except ConfigurationError as e:
            logger.error("Invalid tunnel configuration", error=str(e))
            return _failed(e)

        with self._lock:
            self._cancel_monitor()
            self._config = config
            future = self._launch(config)
            if config.auto_recovery:
                self._monitor = HealthMonitor(self, config)
                future.add_done_callback(self._monitor.arm_on_resolution)
        # Signal handlers can only be installed from the main thread, which
        # is usually the caller's
        ExitCleanupRegistry.register(self)
        return future

    def rotate(self, monitor: HealthMonitor | None = None) -> str:
        """Replace the running tunnel with a fresh one

        Args:
            monitor: Health monitor requesting the rotation. Only the
                session's current, uncancelled monitor may rotate.

        Returns:
            Public URL of the replacement tunnel

        Raises:
            ProcessError: If no tunnel session is active or ``monitor`` has
                been replaced
            DiscoveryTimeoutError: If the replacement never publishes a URL
        """
        with self._lock:
            config = self._config
            if config is None:
                raise ProcessError("No tunnel session to rotate")
            if monitor is not None and (monitor is not self._monitor or monitor.cancelled):
                raise ProcessError("Rotation requested by a replaced health monitor")
            future = self._launch(config)

        try:
            return future.result(timeout=config.discovery_timeout)
        except FutureTimeoutError as e:
            with self._lock:
                self._terminate_process()
            raise DiscoveryTimeoutError(
                f"Replacement tunnel published no URL within {config.discovery_timeout}s"
            ) from e

    def stop(self) -> None:
        """Stop health monitoring and terminate the tunnel process.

        Safe to call repeatedly and before anything was started.
        """
        with self._lock:
            self._cancel_monitor()
            self._terminate_process()
            self._config = None
        ExitCleanupRegistry.unregister(self)

    kill_child = stop

    def _build_config(self, config: TunnelConfig | None, options: dict[str, Any]) -> TunnelConfig:
        if config is None:
            try:
                config = TunnelConfig(**options)
            except ValidationError as e:
                raise ConfigurationError(f"Invalid tunnel configuration: {e}") from e
        elif options:
            raise ConfigurationError("Pass either a TunnelConfig or keyword options, not both")

        problem = config.recovery_problem()
        if problem is not None:
            raise ConfigurationError(problem)
        return config

    def _launch(self, config: TunnelConfig) -> "Future[str]":
        """Replace the current process with a new one and start URL discovery"""
        future: Future[str] = Future()
        self._terminate_process()
        self._url = None

        try:
            process = TunnelProcess.spawn(config, self._terminator)
        except CloudflaredWrapperError as e:
            future.set_exception(e)
            return future

        self._process = process
        discovery = UrlDiscovery(self, config, process, future)
        scanner = LineScanner(discovery.on_line, discovery.on_close)
        scanner.attach(process.stdout, process.stderr)
        return future

    def _url_resolved(self, process: TunnelProcess, url: str) -> None:
        with self._lock:
            if process is not self._process:
                return
            self._url = url
        ExitCleanupRegistry.register(self)

    def _cancel_monitor(self) -> None:
        if self._monitor is not None:
            self._monitor.cancel()
            self._monitor = None

    def _terminate_process(self) -> None:
        if self._process is not None:
            self._process.terminate()
            self._process = None

    def __enter__(self) -> "TunnelSupervisor":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        try:
            self.stop()
        except Exception as e:
            logger.error("Error during context exit", error=str(e))
        return False


def _failed(error: BaseException) -> "Future[str]":
    future: Future[str] = Future()
    future.set_exception(error)
    return future
