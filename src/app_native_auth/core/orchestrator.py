"""FlowOrchestrator – the app-native authentication state machine.

The orchestrator owns the single :class:`FlowState` of a login attempt and is
the only component that mutates it.  Public coroutines map one-to-one to user
actions:

``start()``
    ask the identity server for a new flow
``select_authenticator(id)``
    pick one of several offered authenticators
``submit(step, values)``
    send credentials or a one-time code for the current step
``resend_current_challenge()``
    ask for another out-of-band code once the cooldown elapsed
``reset_to_init()``
    throw the flow away (user "start over" or automatic recovery)

Every server response goes through :func:`normalize_response` and one
transition rule (:meth:`FlowOrchestrator._apply_decision`).  Transport and
network failures of step submissions are classified and returned in
:class:`StepOutcome` instead of being raised; flow-expiry failures schedule
:meth:`reset_to_init` after :attr:`restart_delay` seconds.

Only one network operation may be outstanding; concurrent entry calls raise
:class:`BusyError`.  Secrets (passwords, codes, tokens) are never logged.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from typing import Any, AsyncIterator, Final, Mapping, MutableMapping

from app_native_auth.core.classifier import classify, describe_step
from app_native_auth.core.clock import Clock, Sleeper, default_clock, default_sleep
from app_native_auth.core.config import AuthConfig
from app_native_auth.core.cooldown import ResendCooldown
from app_native_auth.core.error_classifier import FailureClassification, classify_failure
from app_native_auth.core.errors import (
    BusyError,
    CooldownActiveError,
    InvalidInputError,
    InvalidSelectionError,
    NetworkError,
    ProtocolError,
    TokenExchangeFailedError,
    TransportError,
)
from app_native_auth.core.log_utils import get_flow_logger
from app_native_auth.core.models import (
    AuthenticatorDescriptor,
    FlowState,
    StepKind,
    StepOutcome,
    TokenSet,
)
from app_native_auth.core.responses import (
    Completed,
    CompletedWithoutCode,
    FlowDecision,
    NextStep,
    NoAdvancement,
    normalize_response,
)
from app_native_auth.core.transport import IdentityServerClient

_LOGGER_NAME: Final[str] = "app-native-auth.core.orchestrator"

# Parameter names used when an authenticator does not declare its own.
DEFAULT_CODE_PARAMS: Final[dict[StepKind, str]] = {
    StepKind.TOTP: "token",
    StepKind.SMS_OTP: "OTPcode",
    StepKind.EMAIL_OTP: "OTPcode",
    StepKind.GENERIC_OTP: "code",
}

_RECOVERABLE: Final = (TransportError, NetworkError)


class _Superseded(Exception):
    """The flow was reset while a request was outstanding."""


class FlowOrchestrator:
    """Drive one app-native authentication flow against the identity server."""

    def __init__(
        self,
        config: AuthConfig,
        *,
        client: IdentityServerClient | None = None,
        clock: Clock = default_clock,
        sleep: Sleeper = default_sleep,
        cooldown: ResendCooldown | None = None,
        restart_delay: float | None = None,
    ) -> None:
        self.config = config
        self.client = client or IdentityServerClient(config)
        self.cooldown = cooldown or ResendCooldown(config.resend_cooldown, sleep=sleep)
        self.restart_delay = config.restart_delay if restart_delay is None else restart_delay
        self.correlation_id: str | None = None
        self.last_failure: FailureClassification | None = None
        self._clock = clock
        self._sleep = sleep
        self._state = FlowState()
        self._busy = False
        self._generation = 0
        self._restart_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------ #
    # Read-only views                                                    #
    # ------------------------------------------------------------------ #
    @property
    def state(self) -> FlowState:
        """A copy of the current flow state."""
        return dataclasses.replace(self._state)

    @property
    def current_step(self) -> StepKind:
        return self._state.current_step

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def elapsed(self) -> int | None:
        """Whole seconds since the current flow started."""
        return self._state.elapsed(clock=self._clock)

    @property
    def restart_pending(self) -> bool:
        return self._restart_task is not None and not self._restart_task.done()

    async def wait_for_restart(self) -> None:
        """Suspend until a scheduled automatic restart (if any) has run."""
        task = self._restart_task
        if task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #
    async def start(self) -> StepOutcome:
        """Begin a new flow and interpret the server's first answer."""
        async with self._in_flight():
            self.reset_to_init()
            generation = self._generation
            self._state.started_at = self._clock()
            self._log().info("Initializing authentication flow")
            try:
                response = await self.client.init()
                self._ensure_current(generation)
                return await self._apply(response, generation)
            except _RECOVERABLE as exc:
                return self._failure(exc, generation)
            except _Superseded:
                return self._superseded_outcome()

    async def select_authenticator(self, authenticator_id: str) -> StepOutcome:
        """Choose one of the authenticators offered in the ``select`` state."""
        async with self._in_flight():
            generation = self._generation
            if self._state.current_step is not StepKind.SELECT:
                raise InvalidSelectionError("No authenticator selection is pending.")
            descriptor = self._state.find(authenticator_id)
            if descriptor is None:
                raise InvalidSelectionError(f"Unknown authenticator: {authenticator_id}")

            step = classify(descriptor)
            self._state.selected_authenticator_id = descriptor.authenticator_id
            self._state.current_step = step
            self._log().info("Selected authenticator %s", descriptor.display_name)
            try:
                if step.is_delivery:
                    return await self._deliver(generation)
                if step is StepKind.PASSKEY:
                    return await self._passkey(generation)
            except _RECOVERABLE as exc:
                return self._failure(exc, generation)
            except _Superseded:
                return self._superseded_outcome()
            return StepOutcome(step=step, message=describe_step(step))

    async def submit(self, step: StepKind | str, values: Mapping[str, str]) -> StepOutcome:
        """Send *values* for the current *step*.

        Required fields are checked locally first; a blank field raises
        :class:`InvalidInputError` and no request is made.  When *values* is a
        mutable mapping it is cleared after the server accepted it.
        """
        step = StepKind(step)
        async with self._in_flight():
            generation = self._generation
            if step in (StepKind.INIT, StepKind.SELECT) or step is not self._state.current_step:
                raise InvalidSelectionError(
                    f"Cannot submit {step.value!r} while the flow is at {self._state.current_step.value!r}."
                )
            descriptor = self._state.selected_authenticator
            if descriptor is None or not self._state.flow_id:
                raise InvalidSelectionError("No authenticator is selected for this flow.")

            try:
                if step is StepKind.PASSKEY:
                    return await self._passkey(generation)
                params = self._collect_params(step, descriptor, values)
                self._log().info("Submitting %s step", step.value)
                response = await self.client.continue_flow(
                    self._state.flow_id, descriptor.authenticator_id, params
                )
                self._ensure_current(generation)
                outcome = await self._apply(response, generation)
            except _RECOVERABLE as exc:
                return self._failure(exc, generation)
            except _Superseded:
                return self._superseded_outcome()

            if isinstance(values, MutableMapping):
                values.clear()
            return outcome

    async def resend_current_challenge(self) -> StepOutcome:
        """Ask the server to dispatch a new one-time code."""
        async with self._in_flight():
            generation = self._generation
            if not self._state.current_step.is_resendable or self._state.selected_authenticator is None:
                raise InvalidSelectionError("The current step has no code to resend.")
            if self.cooldown.active:
                raise CooldownActiveError(self.cooldown.remaining)
            try:
                return await self._deliver(generation, resend=True)
            except _RECOVERABLE as exc:
                return self._failure(exc, generation)
            except _Superseded:
                return self._superseded_outcome()

    def reset_to_init(self) -> None:
        """Discard the flow state and every timer; back to ``init``."""
        self._generation += 1
        self.cooldown.cancel()
        task, self._restart_task = self._restart_task, None
        if task is not None and not task.done():
            task.cancel()
        if self._state.flow_id or self._state.current_step is not StepKind.INIT:
            self._log().info("Resetting authentication state")
        self._state = FlowState()
        self.last_failure = None

    async def logout(self, id_token: str) -> None:
        """End the server-side session; local state is reset even on failure."""
        async with self._in_flight():
            try:
                await self.client.logout(id_token)
            except _RECOVERABLE as exc:
                self._log().warning("Logout failed: %s", exc)
                raise
            finally:
                self.reset_to_init()

    # ------------------------------------------------------------------ #
    # Transition rule                                                    #
    # ------------------------------------------------------------------ #
    async def _apply(self, response: Mapping[str, Any], generation: int) -> StepOutcome:
        return await self._apply_decision(normalize_response(response), generation)

    async def _apply_decision(self, decision: FlowDecision, generation: int) -> StepOutcome:
        if decision.flow_id:
            self._state.flow_id = decision.flow_id

        if isinstance(decision, Completed):
            tokens = await self._exchange(decision.code, generation)
            return StepOutcome(step=StepKind.INIT, tokens=tokens, message="Authentication completed.")

        if isinstance(decision, CompletedWithoutCode):
            self._log().warning("Flow completed (%s) without an authorization code", decision.flow_status)
            raise ProtocolError(
                ProtocolError.COMPLETED_WITHOUT_CODE,
                "Authentication completed but no authorization code was received. Please try again.",
            )

        if isinstance(decision, NextStep):
            return await self._enter_next_step(decision.authenticators, generation)

        self._log().warning("Response carried no advancement signal (status=%s)", decision.flow_status)
        raise ProtocolError(
            ProtocolError.NO_ADVANCEMENT,
            "The identity server did not advance the authentication flow.",
        )

    async def _enter_next_step(
        self,
        authenticators: tuple[AuthenticatorDescriptor, ...],
        generation: int,
    ) -> StepOutcome:
        previous_id = self._state.selected_authenticator_id
        previous_step = self._state.current_step
        self._state.available_authenticators = authenticators

        if len(authenticators) > 1:
            self.cooldown.cancel()
            self._state.selected_authenticator_id = None
            self._state.current_step = StepKind.SELECT
            self._log().info("Server offered %d authenticators", len(authenticators))
            return StepOutcome(step=StepKind.SELECT, message="Choose how you want to sign in.")

        descriptor = authenticators[0]
        step = classify(descriptor)
        # The server re-prompts for the same authenticator after a code was
        # dispatched or rejected; that is not a new step.
        same_step = descriptor.authenticator_id == previous_id and step is previous_step
        self._state.selected_authenticator_id = descriptor.authenticator_id
        self._state.current_step = step
        if same_step:
            return StepOutcome(step=step)

        self.cooldown.cancel()
        self._log().info("Advanced to %s step", step.value)
        if step.is_delivery:
            return await self._deliver(generation)
        return StepOutcome(step=step, message=describe_step(step))

    # ------------------------------------------------------------------ #
    # Step helpers                                                       #
    # ------------------------------------------------------------------ #
    async def _deliver(self, generation: int, *, resend: bool = False) -> StepOutcome:
        """Ask the server to send a one-time code for the selected authenticator."""
        descriptor = self._require_selection()
        self._log().info("%s one-time code via %s", "Resending" if resend else "Sending", descriptor.display_name)

        response = await self.client.continue_flow(self._state.flow_id, descriptor.authenticator_id, {})
        self._ensure_current(generation)
        self.cooldown.start()

        decision = normalize_response(response)
        if isinstance(decision, NoAdvancement):
            if decision.flow_id:
                self._state.flow_id = decision.flow_id
            return StepOutcome(step=self._state.current_step, message=self._dispatched_message(descriptor))
        outcome = await self._apply_decision(decision, generation)
        if outcome.message is None and outcome.step is self._state.current_step:
            return dataclasses.replace(outcome, message=self._dispatched_message(descriptor))
        return outcome

    async def _passkey(self, generation: int) -> StepOutcome:
        """Request the passkey challenge; the ceremony itself is not supported."""
        descriptor = self._require_selection()
        self._log().info("Requesting passkey challenge")

        response = await self.client.continue_flow(self._state.flow_id, descriptor.authenticator_id, {})
        self._ensure_current(generation)
        decision = normalize_response(response)
        if isinstance(decision, NextStep) and decision.authenticators[0].challenge_data:
            offered = decision.authenticators[0]
            if decision.flow_id:
                self._state.flow_id = decision.flow_id
            self._state.available_authenticators = decision.authenticators
            self._state.selected_authenticator_id = offered.authenticator_id
            self._log().warning("Passkey challenge received; WebAuthn ceremony is not supported")
            return StepOutcome(
                step=StepKind.PASSKEY,
                passkey_challenge=offered.challenge_data,
                message=(
                    "Passkey challenge received, but this client cannot complete the "
                    "biometric/security-key ceremony. Start over to choose another method."
                ),
            )
        return await self._apply_decision(decision, generation)

    async def _exchange(self, code: str, generation: int) -> TokenSet:
        self._log().info("Flow completed; exchanging authorization code")
        try:
            tokens = await self.client.exchange_token(code)
        except TransportError as exc:
            self._log().error("Token exchange failed with HTTP %s", exc.status_code)
            raise TokenExchangeFailedError(exc.status_code, exc.raw_body) from exc
        except NetworkError as exc:
            self._log().error("Token exchange failed: %s", exc)
            raise TokenExchangeFailedError(None, str(exc)) from exc
        if not tokens.access_token:
            raise TokenExchangeFailedError(None, "Token response missing access_token")
        if generation == self._generation:
            # Success leaves the state machine: the flow is discarded.
            self.reset_to_init()
        return tokens

    def _collect_params(
        self,
        step: StepKind,
        descriptor: AuthenticatorDescriptor,
        values: Mapping[str, str],
    ) -> dict[str, str]:
        if step is StepKind.AUTHENTICATE:
            username = (values.get("username") or "").strip()
            password = (values.get("password") or "").strip()
            if not username or not password:
                raise InvalidInputError(
                    "username" if not username else "password",
                    "Please enter both username and password",
                )
            return {"username": username, "password": password}

        name = descriptor.required_params[0] if descriptor.required_params else DEFAULT_CODE_PARAMS[step]
        code = (values.get(name) or values.get("code") or "").strip()
        if not code:
            raise InvalidInputError(name, "Please enter the authentication code")
        return {name: code}

    # ------------------------------------------------------------------ #
    # Failure handling                                                   #
    # ------------------------------------------------------------------ #
    def _failure(self, exc: TransportError | NetworkError, generation: int) -> StepOutcome:
        classification = classify_failure(exc, self._state.current_step)
        self.last_failure = classification
        self._log().warning(
            "Step failed: category=%s restart=%s",
            classification.category.value,
            classification.should_restart,
        )
        if classification.should_restart and generation == self._generation:
            self._schedule_restart()
        return StepOutcome(
            step=self._state.current_step,
            error=classification,
            message=classification.message,
        )

    def _schedule_restart(self) -> None:
        if self._restart_task is not None and not self._restart_task.done():
            self._restart_task.cancel()
        self._restart_task = asyncio.get_running_loop().create_task(self._restart_after_delay())

    async def _restart_after_delay(self) -> None:
        await self._sleep(self.restart_delay)
        self._restart_task = None
        self.reset_to_init()

    # ------------------------------------------------------------------ #
    # Plumbing                                                           #
    # ------------------------------------------------------------------ #
    @contextlib.asynccontextmanager
    async def _in_flight(self) -> AsyncIterator[None]:
        if self._busy:
            raise BusyError()
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    def _require_selection(self) -> AuthenticatorDescriptor:
        descriptor = self._state.selected_authenticator
        if descriptor is None or not self._state.flow_id:
            raise InvalidSelectionError("No authenticator is selected for this flow.")
        return descriptor

    def _ensure_current(self, generation: int) -> None:
        if generation != self._generation:
            raise _Superseded()

    def _superseded_outcome(self) -> StepOutcome:
        self._log().info("Discarded a response for a flow that was reset")
        return StepOutcome(step=self._state.current_step, message="The flow was reset.")

    @staticmethod
    def _dispatched_message(descriptor: AuthenticatorDescriptor) -> str:
        channel = "mobile number" if "sms" in descriptor.display_name.lower() else "email"
        return f"A verification code has been sent to your {channel}. Please enter it below."

    def _log(self) -> logging.LoggerAdapter:
        return get_flow_logger(
            base_logger_name=_LOGGER_NAME,
            flow_id=self._state.flow_id,
            step=self._state.current_step.value,
            correlation_id=self.correlation_id,
        )
