"""JSON endpoints driving the app-native authentication flow.

Handlers are intentionally thin:

1. Parse and validate HTTP-layer parameters.
2. Delegate flow logic to ``FlowOrchestrator``.
3. Return a ``JSONResponse`` describing the resulting step.

The base path is configurable (default: ``/auth``) so that reverse-proxies can
mount the application under arbitrary prefixes.

SECURITY NOTE
-------------
• No raw secrets (passwords, one-time codes, authorization codes, tokens) are
  ever logged or echoed back.  Completed flows keep their tokens server-side
  and only the decoded claims leave the process.
• Correlation IDs, if present in ``request.state.correlation_id``, are handed
  to the orchestrator so that its log lines can be matched to requests.

This module is HTTP-only and MUST remain free from flow logic.
"""

from __future__ import annotations

import logging
from json import JSONDecodeError
from typing import Any, Awaitable, Callable

from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from app_native_auth.core.errors import (
    AuthFlowError,
    BusyError,
    CooldownActiveError,
    InvalidInputError,
    InvalidSelectionError,
    MalformedTokenError,
    NetworkError,
    ProtocolError,
    TokenExchangeFailedError,
    TransportError,
)
from app_native_auth.core.models import StepKind, StepOutcome, TokenSet
from app_native_auth.core.tokens import decode_token, inspect_token, inspect_token_set, session_stats
from app_native_auth.servers.context import AuthAppContext
from app_native_auth.servers.correlation import correlation_id_of

_LOG = logging.getLogger("app-native-auth.auth.routes")

_STATUS_BY_ERROR: tuple[tuple[type[AuthFlowError], int], ...] = (
    (InvalidInputError, 400),
    (InvalidSelectionError, 400),
    (MalformedTokenError, 400),
    (BusyError, 409),
    (CooldownActiveError, 429),
    (TokenExchangeFailedError, 502),
    (ProtocolError, 502),
    (TransportError, 502),
    (NetworkError, 502),
)

Handler = Callable[[Request], Awaitable[Response]]


def error_response(exc: AuthFlowError) -> JSONResponse:
    """Map a core exception to its JSON error response."""
    status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
    return JSONResponse(exc.to_payload(), status_code=status)


def _token_summary(tokens: TokenSet) -> dict[str, Any]:
    return {
        "token_type": tokens.token_type,
        "expires_in": tokens.expires_in,
        "scope": tokens.scope,
        "has_refresh_token": tokens.refresh_token is not None,
    }


async def _json_body(request: Request) -> dict[str, Any]:
    if not await request.body():
        return {}
    try:
        payload = await request.json()
    except (JSONDecodeError, UnicodeDecodeError):
        raise InvalidInputError("body", "Request body must be a JSON object") from None
    if not isinstance(payload, dict):
        raise InvalidInputError("body", "Request body must be a JSON object")
    return payload


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def build_auth_routes(ctx: AuthAppContext, *, base_path: str = "/auth") -> list[Route]:
    """Return the flow endpoints bound to *ctx* under *base_path*."""
    orchestrator = ctx.orchestrator

    def _outcome(outcome: StepOutcome) -> JSONResponse:
        body: dict[str, Any] = {
            "step": outcome.step.value,
            "message": outcome.message,
            "error": outcome.error.to_dict() if outcome.error else None,
            "completed": outcome.completed,
            "state": orchestrator.state.to_dict(),
        }
        if outcome.passkey_challenge:
            body["passkey_challenge"] = outcome.passkey_challenge
        if outcome.tokens is not None:
            ctx.tokens = outcome.tokens
            body["tokens"] = _token_summary(outcome.tokens)
            body["claims"] = {
                label: inspection.to_dict()
                for label, inspection in inspect_token_set(outcome.tokens).items()
            }
        return JSONResponse(body)

    def _guarded(handler: Handler) -> Handler:
        async def _wrapper(request: Request) -> Response:
            orchestrator.correlation_id = correlation_id_of(request)
            try:
                return await handler(request)
            except AuthFlowError as exc:
                _LOG.info(
                    "Request rejected error=%s correlation_id=%s",
                    exc.error_code,
                    correlation_id_of(request) or "-",
                )
                return error_response(exc)

        return _wrapper

    # ----- POST /auth/start ----------------------------------------------- #
    async def _start(request: Request) -> Response:
        outcome = await orchestrator.start()
        _LOG.info(
            "Flow started step=%s correlation_id=%s",
            outcome.step.value,
            correlation_id_of(request) or "-",
        )
        return _outcome(outcome)

    # ----- POST /auth/select ---------------------------------------------- #
    async def _select(request: Request) -> Response:
        payload = await _json_body(request)
        authenticator_id = payload.get("authenticator_id")
        if not isinstance(authenticator_id, str) or not authenticator_id:
            raise InvalidInputError("authenticator_id")
        return _outcome(await orchestrator.select_authenticator(authenticator_id))

    # ----- POST /auth/submit ---------------------------------------------- #
    async def _submit(request: Request) -> Response:
        payload = await _json_body(request)
        try:
            step = StepKind(payload.get("step") or orchestrator.current_step)
        except ValueError:
            raise InvalidInputError("step", f"Unknown step: {payload.get('step')!r}") from None
        values = payload.get("values") or {}
        if not isinstance(values, dict):
            raise InvalidInputError("values", "values must be an object")
        for name, value in values.items():
            if not isinstance(value, str):
                raise InvalidInputError(str(name), f"{name} must be a string")
        return _outcome(await orchestrator.submit(step, dict(values)))

    # ----- POST /auth/resend ---------------------------------------------- #
    async def _resend(request: Request) -> Response:
        return _outcome(await orchestrator.resend_current_challenge())

    # ----- POST /auth/reset ----------------------------------------------- #
    async def _reset(request: Request) -> Response:
        orchestrator.reset_to_init()
        return JSONResponse({"step": orchestrator.current_step.value, "state": orchestrator.state.to_dict()})

    # ----- GET /auth/state ------------------------------------------------ #
    async def _state(request: Request) -> Response:
        state = orchestrator.state
        return JSONResponse(
            {
                "state": state.to_dict(),
                "elapsed": orchestrator.elapsed,
                "busy": orchestrator.busy,
                "resend_available_in": orchestrator.cooldown.remaining,
                "restart_pending": orchestrator.restart_pending,
                "authenticated": ctx.tokens is not None,
            }
        )

    # ----- GET /auth/session ---------------------------------------------- #
    async def _session(request: Request) -> Response:
        if ctx.tokens is None:
            raise InvalidInputError("token", "No completed flow")
        payload = decode_token(ctx.tokens.access_token).payload
        return JSONResponse(session_stats(payload, clock=orchestrator.clock).to_dict())

    # ----- POST /auth/logout ---------------------------------------------- #
    async def _logout(request: Request) -> Response:
        payload = await _json_body(request)
        id_token = payload.get("id_token") or (ctx.tokens.id_token if ctx.tokens else None)
        if not id_token:
            raise InvalidInputError("id_token", "No ID token available for logout")
        try:
            await orchestrator.logout(str(id_token))
        finally:
            ctx.tokens = None
        return Response(status_code=204)

    # ----- POST /auth/tokens/inspect -------------------------------------- #
    async def _inspect(request: Request) -> Response:
        payload = await _json_body(request)
        if payload.get("token"):
            return JSONResponse(inspect_token(str(payload["token"])).to_dict())
        if payload.get("access_token") or payload.get("id_token"):
            tokens = TokenSet(
                access_token=str(payload.get("access_token") or ""),
                id_token=str(payload.get("id_token") or ""),
            )
        elif ctx.tokens is not None:
            tokens = ctx.tokens
        else:
            raise InvalidInputError("token", "No token supplied and no completed flow")
        return JSONResponse({label: i.to_dict() for label, i in inspect_token_set(tokens).items()})

    return [
        Route(f"{base_path}/start", _guarded(_start), methods=["POST"]),
        Route(f"{base_path}/select", _guarded(_select), methods=["POST"]),
        Route(f"{base_path}/submit", _guarded(_submit), methods=["POST"]),
        Route(f"{base_path}/resend", _guarded(_resend), methods=["POST"]),
        Route(f"{base_path}/reset", _guarded(_reset), methods=["POST"]),
        Route(f"{base_path}/state", _guarded(_state), methods=["GET"]),
        Route(f"{base_path}/session", _guarded(_session), methods=["GET"]),
        Route(f"{base_path}/logout", _guarded(_logout), methods=["POST"]),
        Route(f"{base_path}/tokens/inspect", _guarded(_inspect), methods=["POST"]),
    ]
