"""Process management for the cloudflared binary."""

import os
import shutil
import signal
import subprocess
import sys
from typing import IO, Protocol

from .config import TunnelConfig
from .exceptions import BinaryNotFoundError, ProcessError
from .logging import get_logger

logger = get_logger(__name__)

GRACEFUL_TIMEOUT = 5.0


class Terminator(Protocol):
    """Strategy that delivers the termination signal to a process tree."""

    def __call__(self, process: "subprocess.Popen[str]") -> None: ...


class DirectTerminator:
    """Signal only the child itself"""

    def __call__(self, process: "subprocess.Popen[str]") -> None:
        process.terminate()


class ProcessGroupTerminator:
    """SIGTERM the child's whole process group so no descendants survive"""

    def __call__(self, process: "subprocess.Popen[str]") -> None:
        try:
            os.killpg(process.pid, signal.SIGTERM)
        except OSError as e:
            logger.debug("Process group signal failed, signalling child", pid=process.pid, error=str(e))
            process.terminate()


class TaskkillTerminator:
    """Kill the process tree with taskkill on Windows"""

    def __call__(self, process: "subprocess.Popen[str]") -> None:
        try:
            subprocess.run(
                ["taskkill", "/PID", str(process.pid), "/T", "/F"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=True,
            )
        except (OSError, subprocess.CalledProcessError) as e:
            logger.debug("taskkill failed, signalling child", pid=process.pid, error=str(e))
            process.terminate()


def select_terminator(platform: str | None = None) -> Terminator:
    """Pick the termination strategy for the running platform"""
    platform = platform or sys.platform
    if platform == "win32":
        return TaskkillTerminator()
    if hasattr(os, "killpg"):
        return ProcessGroupTerminator()
    return DirectTerminator()


class TunnelProcess:
    """One running cloudflared quick-tunnel process"""

    def __init__(self, process: "subprocess.Popen[str]", terminator: Terminator | None = None):
        self._process = process
        self._terminator = terminator or select_terminator()
        self._terminated = False

    @classmethod
    def spawn(cls, config: TunnelConfig, terminator: Terminator | None = None) -> "TunnelProcess":
        """Launch cloudflared for the configured local port

        Args:
            config: Tunnel session configuration
            terminator: Termination strategy, chosen per platform if omitted

        Returns:
            Handle for the started process

        Raises:
            BinaryNotFoundError: If the binary cannot be found
            ProcessError: If the process fails to start
        """
        binary = shutil.which(config.binary_path)
        if binary is None:
            raise BinaryNotFoundError(f"Binary not found: {config.binary_path}")

        command = [binary, *config.command[1:]]
        kwargs: dict = {}
        if os.name == "posix":
            kwargs["start_new_session"] = True
        elif sys.platform == "win32":
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP

        logger.info("Starting cloudflared process", command=command)
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                **kwargs,
            )
        except OSError as e:
            logger.error("Failed to start cloudflared process", error=str(e))
            raise ProcessError(f"Failed to start cloudflared process: {e}") from e

        logger.info("cloudflared process started", pid=process.pid)
        return cls(process, terminator)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def stdout(self) -> IO[str] | None:
        return self._process.stdout

    @property
    def stderr(self) -> IO[str] | None:
        return self._process.stderr

    def is_running(self) -> bool:
        """Check if process is currently running"""
        return self._process.poll() is None

    def terminate(self) -> None:
        """Stop the process and its descendants.

        Safe to call repeatedly. Errors are logged, never raised.
        """
        if self._terminated:
            return
        self._terminated = True

        if self._process.poll() is not None:
            logger.debug("Process already exited", pid=self.pid)
            return

        logger.info("Stopping cloudflared process", pid=self.pid)
        try:
            self._terminator(self._process)
            try:
                self._process.wait(timeout=GRACEFUL_TIMEOUT)
                logger.info("cloudflared process terminated gracefully", pid=self.pid)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Process did not terminate gracefully, force killing", pid=self.pid
                )
                self._process.kill()
                self._process.wait(timeout=GRACEFUL_TIMEOUT)
        except Exception as e:
            logger.error("Error stopping process", pid=self.pid, error=str(e))
