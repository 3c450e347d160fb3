"""Health monitoring and automatic rotation for quick tunnels."""

import threading
from collections.abc import Callable
from concurrent.futures import Future
from enum import Enum
from typing import TYPE_CHECKING

import requests
from pydantic import BaseModel, ConfigDict, Field

from .config import TunnelConfig
from .exceptions import CloudflaredWrapperError, ProbeFailure
from .logging import get_logger, get_tunnel_logger

if TYPE_CHECKING:
    from .supervisor import TunnelSupervisor

logger = get_logger(__name__)


class MonitorStatus(str, Enum):
    """Health monitor state enumeration."""

    IDLE = "idle"
    PROBING = "probing"
    HEALTHY = "healthy"
    FAULTING = "faulting"
    EXHAUSTED = "exhausted"


class HealthState(BaseModel):
    """Probe counters and the URL currently being watched"""

    model_config = ConfigDict(validate_assignment=True)

    url: str | None = Field(default=None, description="Currently published URL")
    overall_attempts: int = Field(default=0, ge=0)
    consecutive_faults: int = Field(default=0, ge=0)
    status: MonitorStatus = Field(default=MonitorStatus.IDLE)


class PeriodicTask:
    """Runs an action every ``interval`` seconds in a background thread.

    A run always completes before the next wait starts, so a slow action
    pauses the schedule instead of overlapping with itself. Cancelling is
    permanent and does not interrupt a run already in progress.
    """

    def __init__(self, interval: float, action: Callable[[], None], name: str = "periodic-task"):
        self.interval = interval
        self._action = action
        self._name = name
        self._cancelled = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def active(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self.cancelled

    def arm(self) -> None:
        """Start the schedule; no-op once armed or cancelled"""
        if self.cancelled or self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        self._cancelled.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _run(self) -> None:
        while not self._cancelled.wait(self.interval):
            try:
                self._action()
            except Exception:
                logger.exception("Periodic task failed", task=self._name)


def probe(url: str, timeout: float | None = None) -> int:
    """Issue one GET against the public URL and return its status code"""
    response = requests.get(url, timeout=timeout)
    try:
        return response.status_code
    finally:
        response.close()


class HealthMonitor:
    """Probes the published URL and rotates the tunnel when it goes dark.

    A non-200 answer restarts cloudflared through the supervisor and
    reports the new URL with ``on_success``. A probe that raises only
    counts as a fault. When the consecutive fault count exceeds
    ``max_fault_retries`` the monitor calls ``on_fault`` and stops for good.
    """

    def __init__(self, supervisor: "TunnelSupervisor", config: TunnelConfig):
        self._supervisor = supervisor
        self.config = config
        self.state = HealthState()
        self._task = PeriodicTask(
            config.health_check_interval,
            self.tick,
            name=f"cloudflared-health-{config.local_port}",
        )
        self._log = get_tunnel_logger(__name__, config.local_port)

    @property
    def exhausted(self) -> bool:
        return self.state.status == MonitorStatus.EXHAUSTED

    @property
    def active(self) -> bool:
        return self._task.active

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled

    def arm_on_resolution(self, future: "Future[str]") -> None:
        """Start probing once the first URL is known.

        Meant as a done-callback of the supervisor's URL future; a failed or
        cancelled discovery leaves the monitor idle.
        """
        if future.cancelled() or future.exception() is not None:
            self._log.debug("Tunnel URL not resolved, health monitor stays idle")
            return
        self.arm(future.result())

    def arm(self, url: str) -> None:
        if self._task.cancelled:
            return
        self.state.url = url
        if self.config.verbose:
            self._log.info("Starting auto fault detection and update", url=url)
        self._task.arm()

    def cancel(self) -> None:
        self._task.cancel()

    def join(self, timeout: float | None = None) -> None:
        self._task.join(timeout)

    def tick(self) -> None:
        """Run one probe cycle, rotating or giving up as needed"""
        state = self.state
        if self.exhausted:
            return

        if state.consecutive_faults > self.config.max_fault_retries:
            self._log.error(
                "Exceeded number of fault retries",
                consecutive_faults=state.consecutive_faults,
                max_fault_retries=self.config.max_fault_retries,
            )
            self._task.cancel()
            state.status = MonitorStatus.EXHAUSTED
            self._notify(self.config.on_fault)
            return

        state.status = MonitorStatus.PROBING
        try:
            self._check(state.url)
        except ProbeFailure as failure:
            if failure.status_code is None:
                self._record_fault(failure)
            else:
                self._rotate(failure)
        else:
            state.consecutive_faults = 0
            state.status = MonitorStatus.HEALTHY
        state.overall_attempts += 1

    def _check(self, url: str | None) -> None:
        if url is None:
            raise ProbeFailure("<unresolved>")
        try:
            status_code = probe(url, timeout=self.config.probe_timeout)
        except requests.RequestException as e:
            raise ProbeFailure(url) from e
        if status_code != 200:
            raise ProbeFailure(url, status_code)

    def _record_fault(self, failure: ProbeFailure) -> None:
        self.state.consecutive_faults += 1
        self.state.status = MonitorStatus.FAULTING
        if self.config.verbose:
            self._log.warning(
                "Health probe raised",
                error=str(failure.__cause__ or failure),
                consecutive_faults=self.state.consecutive_faults,
            )

    def _rotate(self, failure: ProbeFailure) -> None:
        state = self.state
        state.status = MonitorStatus.FAULTING
        self._log.warning(
            "Lost connection, rotating tunnel",
            url=failure.url,
            status_code=failure.status_code,
            consecutive_faults=state.consecutive_faults,
        )
        if self._task.cancelled:
            return

        try:
            url = self._supervisor.rotate(self)
        except CloudflaredWrapperError as e:
            self._log.error("Tunnel rotation failed", error=str(e))
            state.consecutive_faults += 1
            return

        state.url = url
        self._notify(self.config.on_success, url)
        state.consecutive_faults += 1

    def _notify(self, callback: Callable[..., object] | None, *args: object) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            self._log.exception("Tunnel callback failed")
