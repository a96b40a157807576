from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app_native_auth.core.config import AuthConfig
    from app_native_auth.core.models import TokenSet
    from app_native_auth.core.orchestrator import FlowOrchestrator


@dataclass
class AuthAppContext:
    """
    State shared by the HTTP routes of one process: the client configuration,
    the single flow orchestrator and the tokens of the last completed flow.
    Tokens stay server-side; routes only expose decoded claims.
    """

    config: AuthConfig
    orchestrator: FlowOrchestrator
    tokens: TokenSet | None = None
