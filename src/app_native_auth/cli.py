"""app-native-login

Interactive terminal client for the app-native authentication flow.

Walks the user through every step the identity server asks for (username and
password, authenticator selection, TOTP/SMS/email codes) and prints the
decoded token claims on success.

Configuration comes from the ``APP_AUTH_*`` environment variables; command
line flags override them.  Passwords and codes are read without echo and are
never printed.

Example
-------
    app-native-login --base-url https://localhost:9443 --client-id my-app \
        --callback-url myapp://callback
    app-native-login decode eyJhbGciOi...
"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import sys
from typing import Any, Callable, Sequence, TextIO

from app_native_auth.core.classifier import describe_step
from app_native_auth.core.clock import Clock, default_clock
from app_native_auth.core.config import (
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_RESEND_COOLDOWN,
    DEFAULT_RESTART_DELAY,
    AuthConfig,
)
from app_native_auth.core.errors import (
    AuthFlowError,
    ConfigError,
    CooldownActiveError,
    InvalidInputError,
    MalformedTokenError,
)
from app_native_auth.core.models import StepKind, StepOutcome, TokenSet
from app_native_auth.core.orchestrator import DEFAULT_CODE_PARAMS, FlowOrchestrator
from app_native_auth.core.tokens import decode_token, inspect_token, inspect_token_set, session_stats
from app_native_auth.utils.environment import ENV_PREFIX, env_float, env_int, env_str
from app_native_auth.utils.logging import setup_logging

Prompt = Callable[[str], str]


# --------------------------------------------------------------------------- #
# Config helpers
# --------------------------------------------------------------------------- #
def _config_from_args(args: argparse.Namespace) -> AuthConfig:
    if args.env_only:
        return AuthConfig.from_env()

    def pick(flag: str | None, key: str) -> str:
        return flag or env_str(key, prefix=ENV_PREFIX) or ""

    config = AuthConfig(
        client_id=pick(args.client_id, "CLIENT_ID"),
        client_secret=pick(args.client_secret, "CLIENT_SECRET") or None,
        callback_url=pick(args.callback_url, "CALLBACK_URL"),
        base_url=pick(args.base_url, "BASE_URL"),
        resend_cooldown=env_int("RESEND_COOLDOWN", DEFAULT_RESEND_COOLDOWN),
        restart_delay=env_float("RESTART_DELAY", DEFAULT_RESTART_DELAY),
        http_timeout=env_float("HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
    )
    return config.validate()


# --------------------------------------------------------------------------- #
# Output helpers
# --------------------------------------------------------------------------- #
def _print_claims(tokens: TokenSet, out: TextIO) -> None:
    for label, inspection in inspect_token_set(tokens).items():
        print(f"\n== {label} ==", file=out)
        if inspection.error:
            print(f"  could not decode: {inspection.error}", file=out)
            continue
        print(f"  algorithm : {inspection.algorithm}", file=out)
        print(f"  expired   : {inspection.expired}", file=out)
        print(f"  minutes   : {inspection.minutes_left}", file=out)
        for key, value in (inspection.claims.to_dict() if inspection.claims else {}).items():
            print(f"  {key:<10}: {value}", file=out)


def _print_session(tokens: TokenSet, out: TextIO, *, clock: Clock = default_clock) -> None:
    try:
        stats = session_stats(decode_token(tokens.access_token).payload, clock=clock)
    except MalformedTokenError:
        return
    print("\n== session ==", file=out)
    print(f"  login time : {stats.login_time}", file=out)
    print(f"  duration   : {stats.session_minutes} minutes", file=out)
    print(f"  expires    : {stats.token_expiry}", file=out)
    print(f"  method     : {stats.auth_method}", file=out)


# --------------------------------------------------------------------------- #
# Interactive flow
# --------------------------------------------------------------------------- #
def _values_for(step: StepKind, orchestrator: FlowOrchestrator, ask: Prompt, secret: Prompt) -> dict[str, str]:
    if step is StepKind.AUTHENTICATE:
        return {"username": ask("Username: "), "password": secret("Password: ")}
    descriptor = orchestrator.state.selected_authenticator
    name = descriptor.required_params[0] if descriptor and descriptor.required_params else DEFAULT_CODE_PARAMS[step]
    hint = " (or 'r' to resend)" if step.is_resendable else ""
    return {name: secret(f"{describe_step(step)}. Code{hint}: ")}


async def run_login(
    orchestrator: FlowOrchestrator,
    *,
    ask: Prompt = input,
    secret: Prompt = getpass.getpass,
    out: TextIO = sys.stdout,
) -> TokenSet | None:
    """Drive one flow to completion; ``None`` when it cannot be completed."""
    outcome: StepOutcome = await orchestrator.start()
    passkey_tried = False
    while not outcome.completed:
        if outcome.message:
            print(outcome.message, file=out)
        if outcome.error is not None:
            if outcome.error.should_restart:
                await orchestrator.wait_for_restart()
                outcome = await orchestrator.start()
                continue
            if outcome.step is StepKind.INIT:
                return None

        step = outcome.step
        if step is StepKind.INIT:
            return None
        if step is StepKind.SELECT:
            offered = orchestrator.state.available_authenticators
            for index, descriptor in enumerate(offered, start=1):
                print(f"  {index}. {descriptor.display_name}", file=out)
            choice = ask("Choose an authenticator: ").strip()
            if not choice.isdigit() or not 1 <= int(choice) <= len(offered):
                print("Invalid choice.", file=out)
                continue
            outcome = await orchestrator.select_authenticator(offered[int(choice) - 1].authenticator_id)
            continue
        if step is StepKind.PASSKEY:
            if outcome.passkey_challenge is None and not passkey_tried:
                passkey_tried = True
                outcome = await orchestrator.submit(StepKind.PASSKEY, {})
                continue
            return None

        values = _values_for(step, orchestrator, ask, secret)
        if step.is_resendable and list(values.values()) == ["r"]:
            try:
                outcome = await orchestrator.resend_current_challenge()
            except CooldownActiveError as exc:
                print(str(exc), file=out)
            continue
        try:
            outcome = await orchestrator.submit(step, values)
        except InvalidInputError as exc:
            print(str(exc), file=out)

    print("Authentication successful.", file=out)
    return outcome.tokens


async def _login(args: argparse.Namespace) -> int:
    config = _config_from_args(args)
    orchestrator = FlowOrchestrator(config)
    try:
        tokens = await run_login(orchestrator)
    finally:
        orchestrator.reset_to_init()
        await orchestrator.client.aclose()
    if tokens is None:
        print("Authentication was not completed.", file=sys.stderr)
        return 1
    _print_claims(tokens, sys.stdout)
    _print_session(tokens, sys.stdout)
    return 0


def _decode(args: argparse.Namespace) -> int:
    inspection = inspect_token(args.token)
    print(json.dumps(inspection.to_dict(), indent=2, default=str))
    return 1 if inspection.error else 0


# --------------------------------------------------------------------------- #
# Entry point
# --------------------------------------------------------------------------- #
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="app-native-login",
        description="Log in against an identity server using the app-native authentication API.",
    )
    parser.add_argument("--base-url", help="Identity server base URL (APP_AUTH_BASE_URL)")
    parser.add_argument("--client-id", help="OAuth client id (APP_AUTH_CLIENT_ID)")
    parser.add_argument("--client-secret", help="Client secret for confidential clients (APP_AUTH_CLIENT_SECRET)")
    parser.add_argument("--callback-url", help="Registered redirect URI (APP_AUTH_CALLBACK_URL)")
    parser.add_argument("--env-only", action="store_true", help="Ignore flags and read configuration from env only")
    parser.add_argument("--log-level", default=None, help="Logging level (APP_AUTH_LOG_LEVEL)")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("login", help="Run the interactive login flow (default)")
    decode = sub.add_parser("decode", help="Decode a bearer token without verifying it")
    decode.add_argument("token", help="Token to decode")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    if args.command == "decode":
        return _decode(args)
    try:
        return asyncio.run(_login(args))
    except ConfigError as exc:
        parser.error(str(exc))
    except AuthFlowError as exc:
        payload: dict[str, Any] = exc.to_payload()
        print(f"Authentication failed: {payload['message']}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    return 1


if __name__ == "__main__":
    sys.exit(main())
