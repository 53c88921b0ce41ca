"""
Centralized Exceptions
Error taxonomy and structured error handling for the live price service.
"""

import re
from typing import Dict, Any, Optional
from fastapi import HTTPException, status


class CryptoVisionError(Exception):
    """Base exception for the CryptoVision live price service."""

    def __init__(self, message: str, error_code: str = "UNKNOWN", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(CryptoVisionError):
    """Input validation error (e.g. a symbol the upstream cannot subscribe to)."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class SubscriptionRejectedError(CryptoVisionError):
    """Upstream rejected the subscription handshake."""

    def __init__(self, message: str = "Subscription rejected", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "SUBSCRIPTION_REJECTED", details)


class ConfigurationError(CryptoVisionError):
    """Configuration error."""

    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIG_ERROR", details)


# Error mapping to HTTP responses
ERROR_TO_HTTP_STATUS = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    SubscriptionRejectedError: status.HTTP_502_BAD_GATEWAY,
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def create_http_exception(error: CryptoVisionError) -> HTTPException:
    """Convert CryptoVisionError to HTTPException with proper status code."""
    status_code = ERROR_TO_HTTP_STATUS.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail={
            "error": error.error_code,
            "message": error.message,
            "details": error.details
        }
    )


def sanitize_error_message(message: str) -> str:
    """Sanitize error messages to prevent information leakage."""
    sensitive_patterns = [
        "password", "secret", "token", "private",
        "api_key", "access_token", "refresh_token"
    ]

    sanitized = message
    for pattern in sensitive_patterns:
        sanitized = re.sub(re.escape(pattern), "***", sanitized, flags=re.IGNORECASE)

    return sanitized

