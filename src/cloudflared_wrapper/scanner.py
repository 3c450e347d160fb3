"""Line-oriented parsing of cloudflared output."""

import re
import threading
from collections.abc import Callable
from pathlib import Path
from typing import IO
from urllib.parse import urlsplit

from .config import DEFAULT_MAX_UNMATCHED_LINES, DEFAULT_URL_SUFFIX
from .exceptions import DiscoveryTimeoutError
from .logging import get_logger

logger = get_logger(__name__)

URL_PATTERN = re.compile(r"https?://[^\s)]+", re.IGNORECASE)


class UrlExtractor:
    """Finds the first public tunnel URL in a stream of output lines.

    Lines without a URL on the expected domain count toward a ceiling.
    Once the ceiling is reached the next line fails the discovery.
    """

    def __init__(
        self,
        suffix: str = DEFAULT_URL_SUFFIX,
        max_unmatched_lines: int = DEFAULT_MAX_UNMATCHED_LINES,
    ):
        self.suffix = suffix.lower().lstrip(".")
        self.max_unmatched_lines = max_unmatched_lines
        self.unmatched_lines = 0
        self.url: str | None = None

    @property
    def resolved(self) -> bool:
        return self.url is not None

    def feed(self, line: str) -> str | None:
        """Inspect one line of output.

        Args:
            line: Output line without its trailing newline

        Returns:
            The tunnel URL if this line resolved it, otherwise None

        Raises:
            DiscoveryTimeoutError: If too many lines went by without a URL
        """
        if self.resolved:
            return None

        if self.unmatched_lines >= self.max_unmatched_lines:
            raise DiscoveryTimeoutError(
                f"No {self.suffix} URL after {self.unmatched_lines} lines of output. "
                "To automatically update the dynamic tunnel link on disconnect "
                "set auto_recovery=True with on_success and on_fault callbacks, "
                "or handle this failure explicitly"
            )

        match = URL_PATTERN.search(line)
        if match:
            candidate = match.group(0).strip()
            if self.is_qualifying(candidate):
                self.url = candidate
                return candidate
            logger.debug("Ignoring URL on foreign host", url=candidate)

        self.unmatched_lines += 1
        return None

    def is_qualifying(self, url: str) -> bool:
        """Check that the URL host belongs to the tunnel provider domain"""
        try:
            host = urlsplit(url).hostname
        except ValueError:
            return False
        if not host:
            return False
        return host == self.suffix or host.endswith("." + self.suffix)


class LineLogSink:
    """Append-only log file for raw cloudflared output."""

    def __init__(self, path: Path):
        self.path = path

    def write(self, line: str) -> None:
        """Append a line; failures are logged and otherwise ignored"""
        try:
            with open(self.path, "a", encoding="utf-8", errors="replace") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.error("Error appending to tunnel log", path=str(self.path), error=str(e))


class LineScanner:
    """Reads several text streams and funnels their lines into one callback.

    Each stream gets its own reader thread. Lines keep their order within
    a stream, and the callback never runs concurrently with itself.
    """

    def __init__(
        self,
        on_line: Callable[[str], None],
        on_close: Callable[[], None] | None = None,
    ):
        self._on_line = on_line
        self._on_close = on_close
        self._lock = threading.Lock()
        self._threads: list[threading.Thread] = []
        self._open_streams = 0

    def attach(self, *streams: IO[str] | None) -> None:
        """Start reading the given streams in background threads"""
        readable = [stream for stream in streams if stream is not None]
        with self._lock:
            self._open_streams += len(readable)
        for index, stream in enumerate(readable):
            thread = threading.Thread(
                target=self._read,
                args=(stream,),
                name=f"cloudflared-reader-{index}",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

    def join(self, timeout: float | None = None) -> None:
        for thread in self._threads:
            thread.join(timeout)

    def _read(self, stream: IO[str]) -> None:
        try:
            for raw_line in iter(stream.readline, ""):
                with self._lock:
                    self._on_line(raw_line.rstrip("\r\n"))
        except (OSError, ValueError) as e:
            # Pipe closed underneath us while the process was torn down
            logger.debug("Stopped reading tunnel output", error=str(e))
        except Exception:
            logger.exception("Line handler failed")
        finally:
            self._stream_closed()

    def _stream_closed(self) -> None:
        with self._lock:
            self._open_streams -= 1
            if self._open_streams == 0 and self._on_close is not None:
                self._on_close()
