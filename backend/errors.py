"""Exception types raised while talking to the upstream order API."""

from __future__ import annotations

from typing import Optional


class OrdersError(Exception):
    """Base exception for upstream order errors."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.code = code or "ORDERS_ERROR"
        self.details = details or {}


class TransportError(OrdersError):
    """Network failure or non-success HTTP status from the order API."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(message, code=code or "TRANSPORT_ERROR", details=details)

    @property
    def status_code(self) -> Optional[int]:
        return self.details.get("status_code")


class FetchTimeoutError(TransportError):
    """The request exceeded its deadline."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, code="TIMEOUT", details=details)


class ParseError(OrdersError):
    """The response body was not the expected orders payload."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message, code="PARSE_ERROR", details=details)


class ConfigurationError(OrdersError):
    def __init__(self, message: str):
        super().__init__(message, code="CONFIGURATION_ERROR")


__all__ = [
    "OrdersError",
    "TransportError",
    "FetchTimeoutError",
    "ParseError",
    "ConfigurationError",
]
