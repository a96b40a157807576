"""Map transport failures to user-facing categories.

A step submission can fail for reasons the user can fix (wrong code, wrong
password) or for reasons that invalidate the whole flow (the server forgot
it).  :func:`classify_failure` decides which, and whether the orchestrator
should schedule a restart.  Checks run in a fixed order: 401 and 403 first,
then the authentication-failure marker, then 400, then the flow-expired marker
and 500.  A 400 never restarts the flow, whatever its body says.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Final

from app_native_auth.core.errors import NetworkError, TransportError
from app_native_auth.core.models import StepKind

FLOW_EXPIRED_MARKERS: Final[tuple[str, ...]] = ("Unknown authentication flow status", "ABA-65003")
AUTH_FAILURE_MARKERS: Final[tuple[str, ...]] = ("ABA-60002", "Authentication failure")
CODE_EXPIRED_MARKERS: Final[tuple[str, ...]] = ("expired", "timeout")


class FailureCategory(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    MALFORMED_REQUEST = "malformed_request"
    FLOW_EXPIRED = "flow_expired"
    CODE_EXPIRED = "code_expired"
    CONNECTIVITY = "connectivity"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class FailureClassification:
    category: FailureCategory
    message: str
    should_restart: bool = False
    status_code: int | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "category": self.category.value,
            "message": self.message,
            "should_restart": self.should_restart,
            "status_code": self.status_code,
        }


def _code_label(step: StepKind | None) -> str:
    if step is StepKind.TOTP:
        return "TOTP code"
    if step is StepKind.SMS_OTP:
        return "SMS OTP code"
    if step is StepKind.EMAIL_OTP:
        return "email OTP code"
    return "code"


def _invalid_message(step: StepKind | None) -> str:
    if step is None or step in (StepKind.AUTHENTICATE, StepKind.INIT, StepKind.SELECT):
        return "Invalid username or password. Please try again."
    if step is StepKind.PASSKEY:
        return "Passkey authentication was rejected. Please try again."
    if step is StepKind.TOTP:
        return "Invalid TOTP code. Please check your authenticator app and try again."
    return f"Invalid {_code_label(step)}. Please check the code and try again."


def _malformed_message(step: StepKind | None) -> str:
    if step is None or step in (StepKind.AUTHENTICATE, StepKind.INIT, StepKind.SELECT):
        return "Invalid request. Please check your configuration."
    if step is StepKind.PASSKEY:
        return "Passkey authentication failed. Please ensure your device supports passkeys."
    return f"Invalid {_code_label(step)} format. Please enter the correct code."


def classify_failure(
    exc: BaseException,
    step: StepKind | None = None,
) -> FailureClassification:
    """Return the user-facing category for *exc* raised while in *step*."""
    if isinstance(exc, NetworkError):
        return FailureClassification(
            FailureCategory.CONNECTIVITY,
            "Network error. Please check your connection and the server URL.",
        )
    if not isinstance(exc, TransportError):
        return FailureClassification(FailureCategory.UNKNOWN, "Authentication failed. Please try again.")

    status = exc.status_code
    body = exc.raw_body or ""

    if status == 401:
        return FailureClassification(FailureCategory.INVALID_CREDENTIALS, _invalid_message(step), status_code=status)
    if status == 403:
        return FailureClassification(
            FailureCategory.ACCOUNT_LOCKED,
            "Account may be locked or disabled. Please contact administrator.",
            status_code=status,
        )
    if any(marker in body for marker in AUTH_FAILURE_MARKERS):
        return FailureClassification(
            FailureCategory.INVALID_CREDENTIALS,
            f"Invalid or expired {_code_label(step)}. Please try again.",
            status_code=status,
        )
    if status == 400:
        return FailureClassification(FailureCategory.MALFORMED_REQUEST, _malformed_message(step), status_code=status)
    if any(marker in body for marker in FLOW_EXPIRED_MARKERS):
        return FailureClassification(
            FailureCategory.FLOW_EXPIRED,
            "Authentication session expired. Please start login again.",
            should_restart=True,
            status_code=status,
        )
    if status == 500:
        return FailureClassification(
            FailureCategory.FLOW_EXPIRED,
            "Server error occurred. The authentication flow may have expired. Please restart login.",
            should_restart=True,
            status_code=status,
        )
    if any(marker in body for marker in CODE_EXPIRED_MARKERS):
        return FailureClassification(
            FailureCategory.CODE_EXPIRED,
            f"The {_code_label(step)} has expired. Please request a new code and try again.",
            status_code=status,
        )
    return FailureClassification(
        FailureCategory.UNKNOWN,
        f"Authentication failed (HTTP {status}). Please try again.",
        status_code=status,
    )
