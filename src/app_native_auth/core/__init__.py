"""App-native authentication core package.

This namespace hosts the reusable, **HTTP-agnostic** building blocks of the
login flow: the state machine and everything it depends on.

Sub-modules
-----------
clock
    Test-friendly time and sleep abstractions.
config
    Client configuration (client id, callback URL, server base URL).
models
    Flow state, authenticator descriptors, token records.
classifier
    Ordered rules mapping authenticators to step kinds.
responses
    Normalisation of raw server responses into flow decisions.
transport
    Async HTTP client for the identity server endpoints.
error_classifier
    User-facing categorisation of transport failures.
cooldown
    Resend cooldown countdown.
orchestrator
    The flow state machine.
tokens
    Bearer token decoding and claim inspection.
errors
    Exception types used by the core.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, Sleeper, default_clock, default_sleep  # noqa: F401
from .config import AuthConfig  # noqa: F401
from .models import (  # noqa: F401
    AuthenticatorDescriptor,
    DecodedToken,
    FlowState,
    StepKind,
    StepOutcome,
    TokenSet,
)
from .classifier import classify  # noqa: F401
from .responses import normalize_response  # noqa: F401
from .transport import IdentityServerClient  # noqa: F401
from .error_classifier import FailureCategory, FailureClassification, classify_failure  # noqa: F401
from .cooldown import ResendCooldown  # noqa: F401
from .orchestrator import FlowOrchestrator  # noqa: F401
from .tokens import decode_token, extract_common_claims, inspect_token_set, session_stats  # noqa: F401
from .errors import (  # noqa: F401
    AuthFlowError,
    BusyError,
    ConfigError,
    CooldownActiveError,
    InvalidInputError,
    InvalidSelectionError,
    MalformedTokenError,
    NetworkError,
    ProtocolError,
    TokenExchangeFailedError,
    TransportError,
)
from .log_utils import get_flow_logger  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "Sleeper",
    "default_clock",
    "default_sleep",
    # config
    "AuthConfig",
    # models
    "AuthenticatorDescriptor",
    "DecodedToken",
    "FlowState",
    "StepKind",
    "StepOutcome",
    "TokenSet",
    # flow
    "classify",
    "normalize_response",
    "IdentityServerClient",
    "FailureCategory",
    "FailureClassification",
    "classify_failure",
    "ResendCooldown",
    "FlowOrchestrator",
    # tokens
    "decode_token",
    "extract_common_claims",
    "inspect_token_set",
    "session_stats",
    # errors
    "AuthFlowError",
    "BusyError",
    "ConfigError",
    "CooldownActiveError",
    "InvalidInputError",
    "InvalidSelectionError",
    "MalformedTokenError",
    "NetworkError",
    "ProtocolError",
    "TokenExchangeFailedError",
    "TransportError",
    # logging helpers
    "get_flow_logger",
]
