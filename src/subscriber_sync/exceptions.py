"""
Exception taxonomy for the sync and usage-metering engine
Standardized error payload format: { code, message, status_code, details?, run_id? }
"""
from typing import Any, Dict, Optional

from .logging_config import get_run_id


class ErrorResponse:
    """
    Standard error payload format

    Schema: { code, message, status_code, details?, run_id? }
    """

    @staticmethod
    def create(
        message: str,
        code: str,
        status_code: int,
        run_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> dict:
        """
        Create standardized error payload

        Args:
            message: Human-readable error message
            code: Error code (e.g., "BAD_REQUEST", "RECONNECT_REQUIRED")
            status_code: HTTP-equivalent status code
            run_id: Sync run ID from context (auto-fetched if None)
            details: Optional additional error details

        Returns:
            Dictionary with error details
        """
        if run_id is None:
            run_id = get_run_id()

        response = {
            "code": code,
            "message": message,
            "status_code": status_code,
        }
        if run_id:
            response["run_id"] = run_id
        if details:
            response["details"] = details
        return response


class SyncEngineError(Exception):
    """Base class for every error surfaced by the engine"""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return ErrorResponse.create(
            message=self.message,
            code=self.code,
            status_code=self.status_code,
            details=self.details,
        )


class NotFoundError(SyncEngineError):
    """Referenced entity does not exist"""
    code = "NOT_FOUND"
    status_code = 404


class BadRequestError(SyncEngineError):
    """Caller-correctable problem (no lists selected, stale list selection)"""
    code = "BAD_REQUEST"
    status_code = 400


class ReconnectRequiredError(SyncEngineError):
    """OAuth refresh exhausted; the user must reconnect the account"""
    code = "RECONNECT_REQUIRED"
    status_code = 401


class InternalError(SyncEngineError):
    """Anything unexpected, including a run where every publication failed"""
    code = "INTERNAL_ERROR"
    status_code = 500


class ConfigurationError(InternalError):
    """Unsupported ESP type, missing credential material, unsupported auth scheme"""
    code = "CONFIGURATION_ERROR"


class ConnectorError(SyncEngineError):
    """Failure reported by an ESP connector"""
    code = "PROVIDER_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str,
        remote_status: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        if remote_status is not None:
            details.setdefault("remote_status", remote_status)
        super().__init__(message, details)
        self.remote_status = remote_status


class InvalidCredentialError(ConnectorError):
    """Provider rejected the API key or access token"""
    code = "INVALID_CREDENTIAL"


class ListNotFoundError(ConnectorError):
    """Provider does not know the requested list"""
    code = "LIST_NOT_FOUND"


class RemoteProviderError(ConnectorError):
    """Transient provider-side failure (rate limit, 5xx, network)"""
    code = "PROVIDER_ERROR"


class RateLimitedError(RemoteProviderError):
    """Provider rate limit hit; retry later"""
    code = "RATE_LIMITED"


class ProviderServerError(RemoteProviderError):
    """Provider returned a 5xx response"""
    code = "PROVIDER_SERVER_ERROR"


class ProviderNetworkError(RemoteProviderError):
    """Provider could not be reached"""
    code = "NETWORK_ERROR"
