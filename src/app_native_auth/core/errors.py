"""Exception types raised by the app-native authentication core.

Only lightweight, **data-carrying** exceptions live here so that web/CLI layers
can transform them into HTTP responses or user-friendly messages.  Every
exception exposes :meth:`AuthFlowError.to_payload`, which never includes
secrets (credentials, codes or tokens).
"""

from __future__ import annotations

from typing import Any, Final

# Response bodies are echoed into payloads; keep them short.
_BODY_PREVIEW: Final[int] = 200


class AuthFlowError(RuntimeError):
    """Base class for every error raised by the flow core."""

    error_code: str = "auth_flow_error"

    def to_payload(self) -> dict[str, Any]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {"error": self.error_code, "message": str(self)}


class ConfigError(AuthFlowError, ValueError):
    """Raised when the client configuration is incomplete or malformed."""

    error_code = "invalid_config"


class TransportError(AuthFlowError):
    """The identity server answered with a non-2xx status."""

    error_code = "transport_error"

    def __init__(self, status_code: int, raw_body: str, *, url: str | None = None) -> None:
        super().__init__(f"HTTP {status_code}: {raw_body[:_BODY_PREVIEW]}")
        self.status_code: int = status_code
        self.raw_body: str = raw_body
        self.url: str | None = url

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["status_code"] = self.status_code
        return payload


class NetworkError(AuthFlowError):
    """No response could be obtained from the identity server."""

    error_code = "network_error"


class MalformedTokenError(AuthFlowError, ValueError):
    """A bearer token could not be split or decoded."""

    error_code = "malformed_token"


class ProtocolError(AuthFlowError):
    """A server response carried no usable advancement signal.

    ``kind`` distinguishes a response with nothing to act on
    (``no_advancement``) from a flow reported as completed that did not carry
    an authorization code (``completed_without_code``).
    """

    error_code = "protocol_error"

    NO_ADVANCEMENT: Final[str] = "no_advancement"
    COMPLETED_WITHOUT_CODE: Final[str] = "completed_without_code"

    def __init__(self, kind: str, message: str | None = None) -> None:
        super().__init__(message or kind.replace("_", " "))
        self.kind: str = kind

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["kind"] = self.kind
        return payload


class InvalidSelectionError(AuthFlowError):
    """The requested authenticator or step is not valid in the current state."""

    error_code = "invalid_selection"


class InvalidInputError(AuthFlowError, ValueError):
    """A required step field was missing or blank."""

    error_code = "invalid_input"

    def __init__(self, field: str, message: str | None = None) -> None:
        super().__init__(message or f"{field} is required")
        self.field: str = field

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["field"] = self.field
        return payload


class BusyError(AuthFlowError):
    """Another network operation of the same flow is still outstanding."""

    error_code = "busy"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "A request is already in progress.")


class CooldownActiveError(AuthFlowError):
    """A one-time code resend was requested before the cooldown elapsed."""

    error_code = "cooldown_active"

    def __init__(self, remaining: int) -> None:
        super().__init__(f"You can resend the code in {remaining} seconds.")
        self.remaining: int = remaining

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["remaining"] = self.remaining
        return payload


class TokenExchangeFailedError(AuthFlowError):
    """Swapping the authorization code for tokens failed (never retried)."""

    error_code = "token_exchange_failed"

    def __init__(self, status: int | None, body: str) -> None:
        label = status if status is not None else "network"
        super().__init__(f"Token exchange failed: {label} - {body[:_BODY_PREVIEW]}")
        self.status: int | None = status
        self.body: str = body

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["status"] = self.status
        return payload
