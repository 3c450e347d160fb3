"""Custom exceptions for cloudflared wrapper."""


class CloudflaredWrapperError(Exception):
    """Base exception for all cloudflared wrapper errors."""
    pass


class ConfigurationError(CloudflaredWrapperError):
    """Raised when tunnel configuration is invalid."""
    pass


class BinaryNotFoundError(CloudflaredWrapperError):
    """Raised when the cloudflared binary is not found on PATH."""
    pass


class ProcessError(CloudflaredWrapperError):
    """Raised when cloudflared process operations fail."""
    pass


class DiscoveryTimeoutError(CloudflaredWrapperError):
    """Raised when no public URL shows up in the tunnel output."""
    pass


class ProbeFailure(CloudflaredWrapperError):
    """Raised when a health probe against the public URL fails."""

    def __init__(self, url: str, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        if status_code is None:
            message = f"Health probe failed for {url}"
        else:
            message = f"Health probe for {url} returned HTTP {status_code}"
        super().__init__(message)
