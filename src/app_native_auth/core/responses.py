"""Normalisation of identity-server flow responses.

The authorize/authn endpoints answer with several JSON layouts:

* flow in progress: ``{"flowId", "flowStatus", "nextStep": {"stepType",
  "authenticators": [...]}}``
* flow completed: the authorization code in ``authData.code``, ``authCode``
  or ``code`` (checked in that order)
* legacy: a top-level ``authenticators`` list

:func:`normalize_response` folds every layout into exactly one
:data:`FlowDecision` variant so the orchestrator never branches on raw shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final, Mapping, Union

from app_native_auth.core.models import AuthenticatorDescriptor

COMPLETED_STATUSES: Final[frozenset[str]] = frozenset(
    {"SUCCESS_COMPLETED", "SUCCESSFUL_COMPLETED", "COMPLETED"}
)


@dataclass(frozen=True, slots=True)
class Completed:
    """The flow finished and carries an authorization code."""

    code: str
    flow_id: str | None = None


@dataclass(frozen=True, slots=True)
class CompletedWithoutCode:
    """The server reported completion but sent no authorization code."""

    flow_status: str
    flow_id: str | None = None


@dataclass(frozen=True, slots=True)
class NextStep:
    """The server asks for another step and offers >= 1 authenticators."""

    step_type: str
    authenticators: tuple[AuthenticatorDescriptor, ...]
    flow_id: str | None = None


@dataclass(frozen=True, slots=True)
class NoAdvancement:
    """Nothing to act on (expected only right after an OTP dispatch)."""

    flow_id: str | None = None
    flow_status: str | None = None


FlowDecision = Union[Completed, CompletedWithoutCode, NextStep, NoAdvancement]


def extract_code(response: Mapping[str, Any]) -> str | None:
    """Return the authorization code from any of its three locations."""
    auth_data = response.get("authData")
    if isinstance(auth_data, Mapping) and auth_data.get("code"):
        return str(auth_data["code"])
    for key in ("authCode", "code"):
        if response.get(key):
            return str(response[key])
    return None


def _descriptors(items: Any) -> tuple[AuthenticatorDescriptor, ...]:
    if not isinstance(items, list):
        return ()
    return tuple(AuthenticatorDescriptor.from_json(i) for i in items if isinstance(i, Mapping))


def normalize_response(response: Mapping[str, Any]) -> FlowDecision:
    """Fold a raw server response into a single :data:`FlowDecision`."""
    flow_id = response.get("flowId") or None
    flow_status = response.get("flowStatus") or None

    code = extract_code(response)
    if code:
        return Completed(code=code, flow_id=flow_id)
    if flow_status in COMPLETED_STATUSES:
        return CompletedWithoutCode(flow_status=flow_status, flow_id=flow_id)

    next_step = response.get("nextStep")
    if isinstance(next_step, Mapping):
        authenticators = _descriptors(next_step.get("authenticators"))
        if authenticators:
            return NextStep(
                step_type=str(next_step.get("stepType") or ""),
                authenticators=authenticators,
                flow_id=flow_id,
            )

    legacy = _descriptors(response.get("authenticators"))
    if legacy:
        return NextStep(step_type="LEGACY", authenticators=legacy, flow_id=flow_id)

    return NoAdvancement(flow_id=flow_id, flow_status=flow_status)
