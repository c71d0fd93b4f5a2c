"""
Error taxonomy for the execution bridge

Trading-domain failures are recovered locally and surfaced as result values.
Only programmer misuse (calling trade operations before initialize) propagates.
"""

import asyncio
from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """Error categories"""
    CONFIG = "config"           # Missing/invalid credentials or settings
    VALIDATION = "validation"   # Safety-limit violation, rejected pre-network
    NETWORK = "network"         # Exchange unreachable, timed out or rejected
    STATE = "state"             # Unknown position id and similar lookups
    MISUSE = "misuse"           # Programmer error, the only kind that propagates


class BridgeError(Exception):
    """Base class for all bridge errors"""

    category = ErrorCategory.STATE

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    @property
    def safe_message(self) -> str:
        """Message safe to return to callers and log sinks"""
        return self.message


class ConfigError(BridgeError):
    """Missing or invalid configuration / credentials"""
    category = ErrorCategory.CONFIG


class ValidationError(BridgeError):
    """Order violates a safety limit"""
    category = ErrorCategory.VALIDATION


class NetworkError(BridgeError):
    """Exchange unreachable or request timed out"""
    category = ErrorCategory.NETWORK


class ExchangeAPIError(NetworkError):
    """Exchange rejected the request. Carries the provider message only, never the raw body."""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[int] = None):
        super().__init__(message, {"status": status, "code": code})
        self.status = status
        self.code = code


class StateError(BridgeError):
    """Operation refers to state that does not exist"""
    category = ErrorCategory.STATE


class ClientNotInitializedError(BridgeError, RuntimeError):
    """Exchange client used before initialize()"""
    category = ErrorCategory.MISUSE

    def __init__(self, message: str = "Exchange client not initialized - call initialize() first"):
        super().__init__(message)


class BridgeNotInitializedError(BridgeError, RuntimeError):
    """Execution bridge used before initialize()"""
    category = ErrorCategory.MISUSE

    def __init__(self, message: str = "Execution bridge not initialized - call initialize() first"):
        super().__init__(message)


def safe_error_message(error: BaseException) -> str:
    """
    Project an exception onto a sanitized message

    Bridge errors carry messages that were built to be safe. Anything else
    (library exceptions, which may embed URLs, headers or response bodies)
    is reduced to its type name.
    """
    if isinstance(error, BridgeError):
        return error.safe_message
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return "Request timed out"
    return f"Unexpected error: {type(error).__name__}"
