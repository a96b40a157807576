"""Authenticator classification.

Identity servers describe the next step with free-form authenticator names
(``"TOTP"``, ``"SMS OTP"``, ``"Username & Password"``…) and opaque ids.  The
rules below map such a descriptor to a :class:`StepKind`.  They are evaluated
**in order** and the first match wins; a descriptor named ``"TOTP"`` also
contains ``"otp"`` and must therefore be caught by the TOTP rule before any
OTP rule sees it.

The well-known ids are base64-looking strings issued by the server.  They are
compared literally and never decoded.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Final

from app_native_auth.core.models import AuthenticatorDescriptor, StepKind

BASIC_AUTHENTICATOR_ID: Final[str] = "QmFzaWNBdXRoZW50aWNhdG9yOkxPQ0FM"
TOTP_AUTHENTICATOR_IDS: Final[frozenset[str]] = frozenset({"dG90cDpMT0NBTA", "dG90cDpMT0NBTA=="})
SMS_OTP_AUTHENTICATOR_IDS: Final[frozenset[str]] = frozenset({"c21zLW90cC1hdXRoZW50aWNhdG9yOkxPQ0FM"})
EMAIL_OTP_AUTHENTICATOR_IDS: Final[frozenset[str]] = frozenset(
    {"ZW1haWwtb3RwLWF1dGhlbnRpY2F0b3I6TE9DQUw"}
)
PASSKEY_AUTHENTICATOR_IDS: Final[frozenset[str]] = frozenset(
    {"RklET0F1dGhlbnRpY2F0b3I6TE9DQUw", "RklET0F1dGhlbnRpY2F0b3I6TE9DQUw="}
)
GOOGLE_AUTHENTICATOR_ID: Final[str] = "R29vZ2xlT0lEQ0F1dGhlbnRpY2F0b3I6R29vZ2xl"

_DISPLAY_NAMES: Final[dict[str, str]] = {
    BASIC_AUTHENTICATOR_ID: "Username & Password",
    "dG90cDpMT0NBTA": "TOTP (Authenticator App)",
    "dG90cDpMT0NBTA==": "TOTP (Authenticator App)",
    "c21zLW90cC1hdXRoZW50aWNhdG9yOkxPQ0FM": "SMS OTP",
    "ZW1haWwtb3RwLWF1dGhlbnRpY2F0b3I6TE9DQUw": "Email OTP",
    "RklET0F1dGhlbnRpY2F0b3I6TE9DQUw": "Passkey/FIDO",
    "RklET0F1dGhlbnRpY2F0b3I6TE9DQUw=": "Passkey/FIDO",
    GOOGLE_AUTHENTICATOR_ID: "Google Sign-In",
}

_DESCRIPTIONS: Final[dict[StepKind, str]] = {
    StepKind.AUTHENTICATE: "Use your username and password",
    StepKind.TOTP: "Use your authenticator app",
    StepKind.SMS_OTP: "Receive code via SMS",
    StepKind.EMAIL_OTP: "Receive code via email",
    StepKind.PASSKEY: "Use biometric or security key",
}


@dataclass(frozen=True, slots=True)
class ClassificationRule:
    """One ``(predicate → step kind)`` entry of the ordered rule list."""

    name: str
    step: StepKind
    matches: Callable[[str, str], bool]


def _has_all(*words: str) -> Callable[[str, str], bool]:
    return lambda name, _id: all(w in name for w in words)


def _name_or_id(words: tuple[str, ...], ids: frozenset[str]) -> Callable[[str, str], bool]:
    return lambda name, auth_id: any(w in name for w in words) or auth_id in ids


def _all_or_id(words: tuple[str, ...], ids: frozenset[str]) -> Callable[[str, str], bool]:
    return lambda name, auth_id: all(w in name for w in words) or auth_id in ids


RULES: Final[tuple[ClassificationRule, ...]] = (
    ClassificationRule("username-password", StepKind.AUTHENTICATE, _has_all("username", "password")),
    ClassificationRule("totp", StepKind.TOTP, _name_or_id(("totp", "two-factor"), TOTP_AUTHENTICATOR_IDS)),
    ClassificationRule("sms-otp", StepKind.SMS_OTP, _all_or_id(("sms", "otp"), SMS_OTP_AUTHENTICATOR_IDS)),
    ClassificationRule(
        "email-otp", StepKind.EMAIL_OTP, _all_or_id(("email", "otp"), EMAIL_OTP_AUTHENTICATOR_IDS)
    ),
    ClassificationRule("passkey", StepKind.PASSKEY, _name_or_id(("passkey", "fido"), PASSKEY_AUTHENTICATOR_IDS)),
)


def classify(descriptor: AuthenticatorDescriptor) -> StepKind:
    """Return the step kind required to complete *descriptor*.

    Anything not matched by :data:`RULES` is treated as a single code-field
    authenticator (:attr:`StepKind.GENERIC_OTP`).
    """
    name = descriptor.display_name.lower()
    auth_id = descriptor.authenticator_id
    for rule in RULES:
        if rule.matches(name, auth_id):
            return rule.step
    return StepKind.GENERIC_OTP


def display_name_for(authenticator_id: str) -> str:
    """Human-readable name for a well-known authenticator id (else the id)."""
    return _DISPLAY_NAMES.get(authenticator_id, authenticator_id)


def describe_step(step: StepKind) -> str:
    return _DESCRIPTIONS.get(step, "Complete authentication")
