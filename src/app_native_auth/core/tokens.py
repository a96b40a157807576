"""Bearer token decoding and claim inspection.

Tokens are split into their three dot-separated segments.  Header and payload
are base64url-encoded JSON objects; the signature segment is kept as the raw
string.  **No cryptographic verification is performed** – the helpers here are
for displaying what the identity server issued, not for trusting it.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Final, Mapping

from app_native_auth.core.clock import Clock, default_clock
from app_native_auth.core.errors import MalformedTokenError
from app_native_auth.core.models import DecodedToken, TokenSet

_LOG = logging.getLogger("app-native-auth.core.tokens")

NOT_AVAILABLE: Final[str] = "N/A"
AUTH_METHOD: Final[str] = "App-Native Authentication"


def _b64d(segment: str) -> bytes:
    """Decode base64-URL data that may lack padding."""
    pad_len = (-len(segment)) % 4
    return base64.urlsafe_b64decode(segment + "=" * pad_len)


def _decode_segment(segment: str, label: str) -> dict[str, Any]:
    try:
        data = json.loads(_b64d(segment).decode("utf-8"))
    except (ValueError, binascii.Error) as exc:  # JSONDecodeError / UnicodeDecodeError are ValueErrors
        raise MalformedTokenError(f"Token {label} cannot be decoded") from exc
    if not isinstance(data, dict):
        raise MalformedTokenError(f"Token {label} is not a JSON object")
    return data


def decode_token(token: str) -> DecodedToken:
    """Split *token* and decode its header and payload.

    Raises
    ------
    MalformedTokenError
        If the token does not have exactly three segments or a segment is not
        base64url-encoded JSON.
    """
    parts = token.split(".") if token else []
    if len(parts) != 3:
        raise MalformedTokenError(f"Invalid token format: expected 3 segments, got {len(parts)}")
    header_part, payload_part, signature = parts
    return DecodedToken(
        header=_decode_segment(header_part, "header"),
        payload=_decode_segment(payload_part, "payload"),
        signature=signature,
    )


def _epoch(payload: Mapping[str, Any], claim: str = "exp") -> float | None:
    value = payload.get(claim)
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def is_expired(payload: Mapping[str, Any], *, clock: Clock = default_clock) -> bool:
    """True when the ``exp`` claim lies strictly in the past."""
    exp = _epoch(payload)
    if exp is None:
        return False
    return exp < math.floor(clock())


def minutes_until_expiry(payload: Mapping[str, Any], *, clock: Clock = default_clock) -> int | None:
    """Whole minutes left before ``exp``; ``0`` once expired, ``None`` without ``exp``."""
    exp = _epoch(payload)
    if exp is None:
        return None
    remaining = exp - math.floor(clock())
    if remaining <= 0:
        return 0
    return int(remaining // 60)


def format_timestamp(value: Any) -> str:
    """Render an epoch-seconds claim as ISO-8601 UTC, else :data:`NOT_AVAILABLE`."""
    if value is None or isinstance(value, bool):
        return NOT_AVAILABLE
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc).isoformat()
    except (TypeError, ValueError, OverflowError, OSError):
        return NOT_AVAILABLE


@dataclass(frozen=True, slots=True)
class SessionStats:
    """Login time, session age and expiry derived from an access token."""

    login_time: str = NOT_AVAILABLE
    session_minutes: int = 0
    token_expiry: str = NOT_AVAILABLE
    auth_method: str = AUTH_METHOD

    def to_dict(self) -> dict[str, Any]:
        return {
            "login_time": self.login_time,
            "session_minutes": self.session_minutes,
            "token_expiry": self.token_expiry,
            "auth_method": self.auth_method,
        }


def session_stats(payload: Mapping[str, Any], *, clock: Clock = default_clock) -> SessionStats:
    """Summarise the session described by an access-token *payload*.

    ``session_minutes`` counts whole minutes since ``iat`` and stays ``0``
    when the claim is missing or lies in the future.

    >>> session_stats({"iat": 100, "exp": 3700}, clock=lambda: 250.0).session_minutes
    2
    """
    iat = _epoch(payload, "iat")
    exp = _epoch(payload, "exp")
    minutes = 0
    if iat:
        minutes = max(0, int((math.floor(clock()) - iat) // 60))
    return SessionStats(
        login_time=format_timestamp(iat) if iat else NOT_AVAILABLE,
        session_minutes=minutes,
        token_expiry=format_timestamp(exp) if exp else NOT_AVAILABLE,
    )


@dataclass(frozen=True, slots=True)
class CommonClaims:
    """Stable projection of the claims most consumers display."""

    subject: Any = NOT_AVAILABLE
    issuer: Any = NOT_AVAILABLE
    audience: Any = NOT_AVAILABLE
    issued_at: str = NOT_AVAILABLE
    expires_at: str = NOT_AVAILABLE
    not_before: str = NOT_AVAILABLE
    jwt_id: Any = NOT_AVAILABLE
    scope: Any = NOT_AVAILABLE
    email: Any = NOT_AVAILABLE
    username: Any = NOT_AVAILABLE
    name: Any = NOT_AVAILABLE
    roles: list[Any] = field(default_factory=list)
    groups: list[Any] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "issuer": self.issuer,
            "audience": self.audience,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "not_before": self.not_before,
            "jwt_id": self.jwt_id,
            "scope": self.scope,
            "email": self.email,
            "username": self.username,
            "name": self.name,
            "roles": list(self.roles),
            "groups": list(self.groups),
        }


def _first(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, "", [], {}):
            return value
    return NOT_AVAILABLE


def _as_list(value: Any) -> list[Any]:
    if value in (None, "", NOT_AVAILABLE):
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def extract_common_claims(payload: Mapping[str, Any]) -> CommonClaims:
    """Project the common claims of *payload*; absent claims become ``"N/A"``."""
    realm_access = payload.get("realm_access")
    realm_roles = realm_access.get("roles") if isinstance(realm_access, Mapping) else None
    roles = payload.get("roles") or realm_roles
    return CommonClaims(
        subject=_first(payload, "sub"),
        issuer=_first(payload, "iss"),
        audience=_first(payload, "aud"),
        issued_at=format_timestamp(payload.get("iat")) if payload.get("iat") else NOT_AVAILABLE,
        expires_at=format_timestamp(payload.get("exp")) if payload.get("exp") else NOT_AVAILABLE,
        not_before=format_timestamp(payload.get("nbf")) if payload.get("nbf") else NOT_AVAILABLE,
        jwt_id=_first(payload, "jti"),
        scope=_first(payload, "scope"),
        email=_first(payload, "email"),
        username=_first(payload, "username", "preferred_username"),
        name=_first(payload, "name"),
        roles=_as_list(roles),
        groups=_as_list(payload.get("groups")),
    )


@dataclass(frozen=True, slots=True)
class TokenInspection:
    """Everything a token screen shows for one token; ``error`` when undecodable."""

    decoded: DecodedToken | None = None
    error: str | None = None
    expired: bool | None = None
    minutes_left: int | None = None
    claims: CommonClaims | None = None

    @property
    def algorithm(self) -> str:
        return str(self.decoded.header.get("alg", NOT_AVAILABLE)) if self.decoded else NOT_AVAILABLE

    @property
    def token_type(self) -> str:
        return str(self.decoded.header.get("typ", NOT_AVAILABLE)) if self.decoded else NOT_AVAILABLE

    @property
    def key_id(self) -> str | None:
        if self.decoded is None or "kid" not in self.decoded.header:
            return None
        return str(self.decoded.header["kid"])

    def to_dict(self) -> dict[str, Any]:
        if self.decoded is None:
            return {"error": self.error}
        return {
            "header": dict(self.decoded.header),
            "payload": dict(self.decoded.payload),
            "algorithm": self.algorithm,
            "token_type": self.token_type,
            "key_id": self.key_id,
            "expired": self.expired,
            "minutes_left": self.minutes_left,
            "claims": self.claims.to_dict() if self.claims else None,
        }


def inspect_token(token: str, *, clock: Clock = default_clock) -> TokenInspection:
    """Decode *token* for display; a decode failure is captured, not raised."""
    try:
        decoded = decode_token(token)
    except MalformedTokenError as exc:
        return TokenInspection(error=str(exc))
    return TokenInspection(
        decoded=decoded,
        expired=is_expired(decoded.payload, clock=clock),
        minutes_left=minutes_until_expiry(decoded.payload, clock=clock),
        claims=extract_common_claims(decoded.payload),
    )


def inspect_token_set(tokens: TokenSet, *, clock: Clock = default_clock) -> dict[str, TokenInspection]:
    """Inspect the access and ID tokens independently of each other."""
    result: dict[str, TokenInspection] = {}
    for label, token in (("access_token", tokens.access_token), ("id_token", tokens.id_token)):
        inspection = inspect_token(token, clock=clock)
        if inspection.error:
            _LOG.warning("Failed to decode %s: %s", label, inspection.error)
        result[label] = inspection
    return result
