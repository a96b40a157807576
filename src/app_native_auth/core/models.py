"""Typed records used by the app-native authentication core."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping

from app_native_auth.core.clock import Clock, default_clock

if TYPE_CHECKING:  # pragma: no cover
    from app_native_auth.core.error_classifier import FailureClassification


class StepKind(str, Enum):
    """Exhaustive set of flow states."""

    INIT = "init"
    SELECT = "select"
    AUTHENTICATE = "authenticate"
    TOTP = "totp"
    SMS_OTP = "sms-otp"
    EMAIL_OTP = "email-otp"
    GENERIC_OTP = "generic-otp"
    PASSKEY = "passkey"

    @property
    def is_delivery(self) -> bool:
        """True for steps whose code is sent out-of-band by the server."""
        return self in (StepKind.SMS_OTP, StepKind.EMAIL_OTP)

    @property
    def is_resendable(self) -> bool:
        return self in (StepKind.SMS_OTP, StepKind.EMAIL_OTP, StepKind.GENERIC_OTP)

    @property
    def is_code_entry(self) -> bool:
        return self in (
            StepKind.TOTP,
            StepKind.SMS_OTP,
            StepKind.EMAIL_OTP,
            StepKind.GENERIC_OTP,
        )


@dataclass(frozen=True, slots=True)
class AuthenticatorDescriptor:
    """A server-advertised way of completing the next step."""

    authenticator_id: str
    display_name: str
    provider_name: str = ""
    required_params: tuple[str, ...] = ()
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "AuthenticatorDescriptor":
        """Build a descriptor from the server's ``authenticators[]`` entry."""
        return cls(
            authenticator_id=str(data.get("authenticatorId", "")),
            display_name=str(data.get("authenticator", "")),
            provider_name=str(data.get("idp", "")),
            required_params=tuple(str(p) for p in data.get("requiredParams") or ()),
            metadata=dict(data.get("metadata") or {}),
        )

    @property
    def challenge_data(self) -> str | None:
        """WebAuthn challenge offered by a passkey prompt, if any."""
        additional = self.metadata.get("additionalData") or {}
        challenge = additional.get("challengeData") if isinstance(additional, Mapping) else None
        return str(challenge) if challenge else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "authenticator_id": self.authenticator_id,
            "display_name": self.display_name,
            "provider_name": self.provider_name,
            "required_params": list(self.required_params),
        }


@dataclass(slots=True)
class FlowState:
    """Mutable state of the single in-progress login attempt.

    Owned exclusively by :class:`~app_native_auth.core.orchestrator.FlowOrchestrator`.
    """

    flow_id: str | None = None
    started_at: float | None = None
    current_step: StepKind = StepKind.INIT
    selected_authenticator_id: str | None = None
    available_authenticators: tuple[AuthenticatorDescriptor, ...] = ()

    @property
    def selected_authenticator(self) -> AuthenticatorDescriptor | None:
        return self.find(self.selected_authenticator_id)

    def find(self, authenticator_id: str | None) -> AuthenticatorDescriptor | None:
        if authenticator_id is None:
            return None
        for descriptor in self.available_authenticators:
            if descriptor.authenticator_id == authenticator_id:
                return descriptor
        return None

    def elapsed(self, *, clock: Clock = default_clock) -> int | None:
        """Whole seconds since the flow started, ``None`` before ``start()``."""
        if self.started_at is None:
            return None
        return int(clock() - self.started_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "flow_id": self.flow_id,
            "started_at": self.started_at,
            "current_step": self.current_step.value,
            "selected_authenticator_id": self.selected_authenticator_id,
            "available_authenticators": [a.to_dict() for a in self.available_authenticators],
        }


def _as_seconds(value: Any) -> int | None:
    """Lenient ``expires_in`` parsing; servers send ints, floats or strings."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


@dataclass(frozen=True, slots=True)
class TokenSet:
    """Tokens obtained once, at flow completion."""

    access_token: str
    id_token: str
    refresh_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None
    scope: str | None = None

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "TokenSet":
        return cls(
            access_token=str(data.get("access_token") or ""),
            id_token=str(data.get("id_token") or ""),
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type"),
            expires_in=_as_seconds(data.get("expires_in")),
            scope=data.get("scope"),
        )


@dataclass(frozen=True, slots=True)
class DecodedToken:
    """Header and payload of a bearer token; the signature stays opaque."""

    header: Mapping[str, Any]
    payload: Mapping[str, Any]
    signature: str


@dataclass(frozen=True, slots=True)
class StepOutcome:
    """Result of one orchestrator entry call.

    ``error`` is set when the identity server rejected the request; ``tokens``
    when the flow completed.  ``step`` is the state the flow is in afterwards.
    """

    step: StepKind
    tokens: TokenSet | None = None
    error: FailureClassification | None = None
    message: str | None = None
    passkey_challenge: str | None = None

    @property
    def completed(self) -> bool:
        return self.tokens is not None
