import re
from typing import Optional, Dict, Any


class CloudScopeException(Exception):
    """Base exception for all CloudScope errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class ProviderScanError(CloudScopeException):
    """
    Raised when one provider adapter fails (inventory listing, cost query or timeout).
    Automatically sanitizes the cause so internal cloud details don't leak to users.
    """
    def __init__(self, provider: str, cause: Any, details: Optional[Dict[str, Any]] = None):
        self.provider = provider
        self.cause = cause
        message = f"{provider} scan failed: {self._sanitize(str(cause) or type(cause).__name__)}"
        super().__init__(message, code="provider_scan_error", status_code=502, details=details)

    @staticmethod
    def _sanitize(msg: str) -> str:
        """Remove sensitive tokens and request IDs from error messages."""
        # Remove UUIDs (likely Request IDs)
        msg = re.sub(r'[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}', '[REDACTED_ID]', msg, flags=re.IGNORECASE)
        msg = re.sub(r'(?i)(access_key|secret_key|client_secret|token|password|signature)=[^&\s]+', r'\1=[REDACTED]', msg)
        if "AccessDenied" in msg or "AuthorizationFailed" in msg or "PermissionDenied" in msg:
            return "Permission denied: ensure the credentials have read access to inventory and billing APIs."
        if "Throttling" in msg or "RequestLimitExceeded" in msg or "TooManyRequests" in msg:
            return "Cloud provider rate limit exceeded."
        return msg


class PersistenceError(CloudScopeException):
    """Raised when scan history cannot be written. Independent of scan success."""
    def __init__(self, message: str, code: str = "persistence_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)


class TrendQueryError(CloudScopeException):
    """Raised when the trend aggregate query fails."""
    def __init__(self, message: str, code: str = "trend_query_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)


class ConfigurationError(CloudScopeException):
    """Raised when required credentials or configuration are missing."""
    def __init__(
        self,
        message: str,
        code: str = "config_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, code=code, status_code=status_code, details=details)


class ScanInProgressError(CloudScopeException):
    """Raised when a scan for the same provider set is already running."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="scan_in_progress", status_code=409, details=details)


class AuthError(CloudScopeException):
    """Raised when authentication or authorization fails."""
    def __init__(self, message: str, code: str = "auth_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=401, details=details)
