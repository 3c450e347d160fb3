"""Entry point for ``python -m cloudflared_wrapper``."""

import argparse
import sys
import threading
from concurrent.futures import TimeoutError as FutureTimeoutError

from .exceptions import CloudflaredWrapperError
from .logging import setup_logging
from .supervisor import TunnelSupervisor


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cloudflared-wrapper",
        description="Expose a local port through a cloudflared quick tunnel.",
    )
    parser.add_argument("port", type=int, help="local port to expose")
    parser.add_argument("--verbose", action="store_true", help="write cloudflared output to a log file")
    parser.add_argument("--auto-recovery", action="store_true", help="restart the tunnel when it goes down")
    parser.add_argument("--interval-ms", type=int, default=3000, help="milliseconds between health probes")
    parser.add_argument("--max-fault-retries", type=int, default=10)
    parser.add_argument("--timeout", type=float, default=30.0, help="seconds to wait for the URL")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--json-logs", action="store_true")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Start a tunnel, print its URL and keep it up until interrupted."""
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level, json_format=args.json_logs)

    done = threading.Event()

    def on_success(url: str) -> None:
        print(url, flush=True)

    def on_fault() -> None:
        print("tunnel could not be recovered", file=sys.stderr, flush=True)
        done.set()

    supervisor = TunnelSupervisor()
    future = supervisor.start(
        local_port=args.port,
        verbose=args.verbose,
        auto_recovery=args.auto_recovery,
        health_check_interval_ms=args.interval_ms,
        max_fault_retries=args.max_fault_retries,
        on_success=on_success,
        on_fault=on_fault,
    )
    try:
        url = future.result(timeout=args.timeout)
    except (CloudflaredWrapperError, FutureTimeoutError) as e:
        print(f"cloudflared failed: {e}", file=sys.stderr)
        supervisor.stop()
        return 1

    print(f"tunnel ready at {url}", flush=True)
    try:
        while not done.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    finally:
        supervisor.stop()
    return 0 if not done.is_set() else 1


if __name__ == "__main__":
    sys.exit(main())
