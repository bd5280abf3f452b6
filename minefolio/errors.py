"""
Error taxonomy for the feed layer.

Read paths recover from every error here; only cron endpoints surface them.
"""
from typing import Optional


class MinefolioError(Exception):
    """Base class for feed layer errors."""


class UpstreamError(MinefolioError):
    """An external API was unreachable or answered with a non-success status."""

    def __init__(
        self,
        source: str,
        message: str,
        status_code: Optional[int] = None,
    ):
        self.source = source
        self.status_code = status_code
        detail = f"{source}: {message}"
        if status_code is not None:
            detail = f"{detail} (HTTP {status_code})"
        super().__init__(detail)


# Name used by the error taxonomy in the design docs
UpstreamUnavailable = UpstreamError


class InvalidCronAuth(MinefolioError):
    """Cron request did not carry the expected bearer token."""


class MalformedCachedPayload(MinefolioError):
    """A cached value could not be decoded into the expected shape."""

    def __init__(self, cache_key: str, reason: str):
        self.cache_key = cache_key
        super().__init__(f"Malformed cached payload for {cache_key}: {reason}")
