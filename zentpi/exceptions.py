"""
zentpi library exceptions.

This module defines all custom exceptions used throughout the library.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .api.types import ZenErrorCode


class ZenError(Exception):
    """Base exception for Zen protocol errors"""
    pass


class ZenTimeoutError(ZenError):
    """Raised when a command gets no valid response after all of its retries"""
    pass


class ZenResponseError(ZenError):
    """Raised when receiving an invalid or unexpected response"""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class ZenProtocolError(ZenError):
    """Raised when the controller answers with one of its known error codes"""

    def __init__(self, error_code: "ZenErrorCode"):
        super().__init__(error_code.name)
        self.error_code = error_code


class ZenConnectionError(ZenError):
    """Raised when a request could not be handed to the network"""
    pass


class ZenConfigurationError(ZenError):
    """Raised when configuration is invalid"""
    pass
