"""Shared pytest fixtures for cloudflared wrapper tests."""

import io
import time
from collections.abc import Callable, Iterable
from unittest.mock import Mock

import pytest

from cloudflared_wrapper.hooks import ExitCleanupRegistry

NOISE = [
    "2024-05-01T10:00:00Z INF Thank you for trying Cloudflare Tunnel.",
    "2024-05-01T10:00:00Z INF Requesting new quick Tunnel on trycloudflare.com...",
    "2024-05-01T10:00:01Z INF +--------------------------------------------+",
    "2024-05-01T10:00:01Z INF |  Your quick Tunnel has been created!       |",
    "2024-05-01T10:00:01Z INF +--------------------------------------------+",
]


def make_process(
    stdout_lines: Iterable[str] = (),
    stderr_lines: Iterable[str] = (),
    pid: int = 12345,
) -> Mock:
    """Create a fake Popen object whose pipes replay the given lines.

    ``poll`` reports the process as running until ``wait`` is called.
    """
    process = Mock()
    process.pid = pid
    process.poll.return_value = None
    process.stdout = io.StringIO("".join(line + "\n" for line in stdout_lines))
    process.stderr = io.StringIO("".join(line + "\n" for line in stderr_lines))

    def _wait(timeout=None):
        process.poll.return_value = -15
        return -15

    process.wait.side_effect = _wait
    return process


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll until predicate holds or the timeout expires"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def mock_popen(monkeypatch):
    """Mock subprocess.Popen and pretend cloudflared is on PATH.

    Returns:
        Mock: Mocked Popen class, configure ``side_effect`` with fake processes
    """
    popen = Mock()
    monkeypatch.setattr("cloudflared_wrapper.process.subprocess.Popen", popen)
    monkeypatch.setattr(
        "cloudflared_wrapper.process.shutil.which", lambda name: f"/usr/local/bin/{name}"
    )
    return popen


@pytest.fixture
def terminator():
    """Termination strategy that never signals a real process"""
    return Mock()


@pytest.fixture(autouse=True)
def isolate_cleanup_hooks(monkeypatch):
    """Keep tests from installing real signal handlers and excepthooks"""
    monkeypatch.setattr(ExitCleanupRegistry, "install", classmethod(lambda cls: None))
    yield
    ExitCleanupRegistry._active.clear()


@pytest.fixture
def noise_lines():
    """cloudflared banner lines that carry no tunnel URL"""
    return list(NOISE)


@pytest.fixture
def fake_process():
    """Factory for fake cloudflared processes, see make_process"""
    return make_process


@pytest.fixture(name="wait_until")
def wait_until_fixture():
    """Polling helper for assertions on background threads"""
    return wait_until
