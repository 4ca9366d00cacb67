"""
Custom exceptions for the feed relay.

Exception hierarchy:
- RelayError (base)
  - ConfigurationError: Invalid configuration
  - TransportContextError: Transport context could not be created (fatal)
  - ChannelError: Local channel creation or attach failure
  - FrameError: Oversized or malformed inbound frame
"""

from __future__ import annotations

from typing import Any, Optional


class RelayError(Exception):
    """Base exception for all relay errors."""

    def __init__(
        self,
        message: str,
        *,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.component:
            parts.append(f"[component={self.component}]")
        if self.details:
            parts.append(f"[details={self.details}]")
        return " ".join(parts)


class ConfigurationError(RelayError):
    """Raised when configuration is invalid."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.field = field
        self.value = value
        details = details or {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component=component, details=details)


class TransportContextError(RelayError):
    """
    Raised when the transport context cannot be created.

    This is the only environment-fatal error: it ends the process. Failing to
    reach the remote endpoint is never reported through this class.
    """


class ChannelError(RelayError):
    """Raised when one attempt to create or attach the local channel fails."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        errno: Optional[int] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.path = path
        self.errno = errno
        details = details or {}
        if path:
            details["path"] = path
        if errno is not None:
            details["errno"] = errno
        super().__init__(message, component=component, details=details)


class FrameError(RelayError):
    """Raised when an inbound frame is oversized or cannot be parsed."""

    def __init__(
        self,
        message: str,
        *,
        frame_size: Optional[int] = None,
        reason: Optional[str] = None,
        component: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.frame_size = frame_size
        self.reason = reason
        details = details or {}
        if frame_size is not None:
            details["frame_size"] = frame_size
        if reason:
            details["reason"] = reason
        # Frame contents stay out of details to avoid log spam
        super().__init__(message, component=component, details=details)
