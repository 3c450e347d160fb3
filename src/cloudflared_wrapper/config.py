"""Tunnel session configuration."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_BINARY = "cloudflared"
DEFAULT_URL_SUFFIX = "trycloudflare.com"
DEFAULT_MAX_UNMATCHED_LINES = 11


def _noop(*args: Any) -> None:
    pass


class TunnelConfig(BaseModel):
    """Immutable settings for one tunnel session.

    The same instance is reused verbatim when the health monitor restarts
    the tunnel process.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        str_strip_whitespace=True,
    )

    local_port: int = Field(ge=1, le=65535, description="Local port to expose")
    verbose: bool = Field(
        default=False, description="Append every cloudflared line to a log file"
    )
    auto_recovery: bool = Field(
        default=False, description="Probe the public URL and rotate on failure"
    )
    health_check_interval_ms: int = Field(
        default=3000, ge=1, description="Milliseconds between health probes"
    )
    max_fault_retries: int = Field(
        default=10, ge=0, description="Consecutive faults tolerated before giving up"
    )
    on_success: Callable[[str], Any] = Field(
        default=_noop, description="Called with every rotated URL"
    )
    on_fault: Callable[[], Any] | None = Field(
        default=None, description="Called once when fault retries are exhausted"
    )

    binary_path: str = Field(default=DEFAULT_BINARY, min_length=1)
    local_host: str = Field(default="localhost", min_length=1)
    url_suffix: str = Field(default=DEFAULT_URL_SUFFIX, min_length=1)
    max_unmatched_lines: int = Field(default=DEFAULT_MAX_UNMATCHED_LINES, ge=1)
    log_dir: Path = Field(default=Path("."), description="Directory for verbose logs")
    discovery_timeout: float | None = Field(
        default=30.0, gt=0, description="Seconds a rotation waits for a new URL"
    )
    probe_timeout: float | None = Field(
        default=None, gt=0, description="Seconds before a health probe gives up"
    )

    @field_validator("url_suffix")
    @classmethod
    def normalize_suffix(cls, v: str) -> str:
        """Store the suffix lowercase without a leading dot"""
        suffix = v.lower().lstrip(".")
        if not suffix:
            raise ValueError("URL suffix cannot be empty")
        return suffix

    @property
    def local_url(self) -> str:
        return f"http://{self.local_host}:{self.local_port}"

    @property
    def command(self) -> list[str]:
        """cloudflared quick-tunnel command line for this port"""
        return [self.binary_path, "tunnel", "--url", self.local_url]

    @property
    def log_path(self) -> Path:
        return self.log_dir / f"cloudflared.{self.local_port}.log"

    @property
    def health_check_interval(self) -> float:
        """Probe interval in seconds"""
        return self.health_check_interval_ms / 1000

    def recovery_problem(self) -> str | None:
        """Describe why auto-recovery cannot run with these notifiers.

        Returns:
            None when auto-recovery is disabled or fully wired
        """
        if not self.auto_recovery:
            return None
        if not callable(self.on_success) or not callable(self.on_fault):
            return (
                "To automatically update the dynamic tunnel link on disconnect "
                "set auto_recovery=True together with on_success and on_fault "
                "callbacks"
            )
        return None
