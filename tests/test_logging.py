"""Test logging configuration."""

import logging
import sys

import structlog
from structlog.testing import LogCapture

from cloudflared_wrapper.logging import get_tunnel_logger, setup_logging


class TestLogging:
    """Test the logging setup tunnels depend on."""

    def setup_method(self) -> None:
        structlog.reset_defaults()
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    def teardown_method(self) -> None:
        """Leave logging unconfigured for the rest of the suite."""
        structlog.reset_defaults()
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    def test_console_output_goes_to_stderr(self) -> None:
        """Tunnel URLs own stdout, diagnostics go to stderr."""
        setup_logging(level="DEBUG")

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert handlers[0].stream is sys.stderr
        assert logging.getLogger().level == logging.DEBUG

    def test_tunnel_logger_binds_port(self) -> None:
        cap = LogCapture()
        structlog.configure(processors=[cap])

        get_tunnel_logger("test_module", 5500).info(
            "Tunnel URL discovered", url="https://a.trycloudflare.com"
        )
        get_tunnel_logger("test_module", 5501).info("Lost connection, rotating tunnel")

        assert [entry["local_port"] for entry in cap.entries] == [5500, 5501]
        assert cap.entries[0]["url"] == "https://a.trycloudflare.com"

    def test_json_format_renders_json(self) -> None:
        setup_logging(json_format=True)

        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
