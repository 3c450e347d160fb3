"""Process-level cleanup hooks.

Makes sure no cloudflared child outlives the host program, whether it
exits normally, is interrupted by a signal, or dies on an uncaught
exception.
"""

import atexit
import os
import signal
import sys
import threading
import weakref
from types import FrameType, TracebackType
from typing import Any, Protocol

from .logging import get_logger

logger = get_logger(__name__)

CLEANUP_SIGNALS = ("SIGINT", "SIGTERM")


class Stoppable(Protocol):
    def stop(self) -> None: ...


class ExitCleanupRegistry:
    """Tracks live supervisors and stops them when the interpreter goes down"""

    _active: "weakref.WeakSet[Any]" = weakref.WeakSet()
    _lock = threading.RLock()
    _exit_hooks_installed = False
    _signals_installed = False
    _previous_handlers: dict[int, Any] = {}
    _previous_excepthook: Any = None
    _previous_thread_excepthook: Any = None

    @classmethod
    def register(cls, supervisor: Stoppable) -> None:
        """Register a supervisor and make sure the hooks are in place"""
        with cls._lock:
            cls._active.add(supervisor)
        cls.install()

    @classmethod
    def unregister(cls, supervisor: Stoppable) -> None:
        with cls._lock:
            cls._active.discard(supervisor)

    @classmethod
    def get_active_count(cls) -> int:
        with cls._lock:
            return len(cls._active)

    @classmethod
    def cleanup_all(cls) -> None:
        """Stop every registered supervisor"""
        with cls._lock:
            supervisors = list(cls._active)

        for supervisor in supervisors:
            try:
                supervisor.stop()
            except Exception as e:
                logger.error("Failed to stop tunnel during cleanup", error=str(e))

    @classmethod
    def install(cls) -> None:
        """Install atexit, exception and signal hooks once"""
        with cls._lock:
            if not cls._exit_hooks_installed:
                atexit.register(cls.cleanup_all)
                cls._previous_excepthook = sys.excepthook
                sys.excepthook = cls._handle_uncaught
                cls._previous_thread_excepthook = threading.excepthook
                threading.excepthook = cls._handle_thread_uncaught
                cls._exit_hooks_installed = True

            if not cls._signals_installed:
                # signal.signal only works from the main thread; retried on
                # the next registration otherwise
                if threading.current_thread() is not threading.main_thread():
                    logger.debug("Deferring signal handlers to the main thread")
                    return
                for name in CLEANUP_SIGNALS:
                    signum = getattr(signal, name, None)
                    if signum is None:
                        continue
                    cls._previous_handlers[signum] = signal.getsignal(signum)
                    signal.signal(signum, cls._handle_signal)
                cls._signals_installed = True

    @classmethod
    def _handle_signal(cls, signum: int, frame: FrameType | None) -> None:
        logger.info("Received signal, stopping tunnels", signal=signum)
        cls.cleanup_all()

        previous = cls._previous_handlers.get(signum)
        if callable(previous):
            previous(signum, frame)
        elif previous == signal.SIG_DFL:
            signal.signal(signum, signal.SIG_DFL)
            os.kill(os.getpid(), signum)

    @classmethod
    def _handle_uncaught(
        cls,
        exc_type: type[BaseException],
        exc_val: BaseException,
        exc_tb: TracebackType | None,
    ) -> None:
        cls.cleanup_all()
        previous = cls._previous_excepthook or sys.__excepthook__
        previous(exc_type, exc_val, exc_tb)

    @classmethod
    def _handle_thread_uncaught(cls, args: "threading.ExceptHookArgs") -> None:
        # Exceptions in worker threads bypass sys.excepthook
        cls.cleanup_all()
        previous = cls._previous_thread_excepthook or threading.__excepthook__
        previous(args)
