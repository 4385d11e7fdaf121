"""ADSYNC — Engine Error Taxonomy.

Every failure the engine surfaces carries a stable ``code`` so the
reporting layer can tell "re-authenticate" apart from "data may be delayed".
"""

from typing import Optional


class EngineError(Exception):
    """Base class for all engine errors."""

    code = "engine_error"


class PlatformError(EngineError):
    """Raised when an advertising platform call fails."""

    code = "platform_error"

    def __init__(
        self,
        message: str,
        platform: str = "",
        status_code: int = 0,
        error_code: int = 0,
    ):
        self.platform = platform
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class PlatformAuthError(PlatformError):
    """Expired or invalid credential. Never retried."""

    code = "platform_auth"


class PlatformRateLimitError(PlatformError):
    """Platform throttled the request."""

    code = "platform_rate_limited"

    def __init__(
        self,
        message: str,
        platform: str = "",
        status_code: int = 0,
        error_code: int = 0,
        retry_after: Optional[float] = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, platform, status_code, error_code)


class PlatformTransientError(PlatformError):
    """Network failure, 5xx, a malformed response body, or an expired fetch deadline."""

    code = "platform_unavailable"


class ValidationError(EngineError):
    """Malformed input or a storage key that breaks an invariant. Fatal."""

    code = "validation_error"


class StoreError(EngineError):
    """Read or write failure on the cache or summary store."""

    code = "store_error"
