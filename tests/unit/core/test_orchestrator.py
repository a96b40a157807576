"""Unit tests for FlowOrchestrator state transitions.

Coverage:
* start → authenticate → completed flow with token exchange
* Local validation of blank credentials (no network call)
* Single SMS OTP next step: direct transition with exactly one delivery call
* Resend cooldown enforcement and release
* Multiple authenticators → select; TOTP parameter naming
* Flow-expired failures schedule an automatic reset
* Busy guard and stale responses after reset
* Protocol errors, token exchange failures and logout
"""

from __future__ import annotations

import anyio
import httpx
import pytest
from anyio import wait_all_tasks_blocked

from app_native_auth.core.classifier import (
    BASIC_AUTHENTICATOR_ID,
    PASSKEY_AUTHENTICATOR_IDS,
)
from app_native_auth.core.error_classifier import FailureCategory
from app_native_auth.core.errors import (
    BusyError,
    CooldownActiveError,
    InvalidInputError,
    InvalidSelectionError,
    ProtocolError,
    TokenExchangeFailedError,
    TransportError,
)
from app_native_auth.core.models import StepKind

# --------------------------------------------------------------------------- #
# Constants                                                                   #
# --------------------------------------------------------------------------- #
FLOW_ID = "4a1f0c77-7b1e-4a6a-9b52-1d3f6d1f9e21"
SMS_ID = "c21zLW90cC1hdXRoZW50aWNhdG9yOkxPQ0FM"
EMAIL_ID = "ZW1haWwtb3RwLWF1dGhlbnRpY2F0b3I6TE9DQUw"
TOTP_ID = "dG90cDpMT0NBTA"
PASSKEY_ID = sorted(PASSKEY_AUTHENTICATOR_IDS)[0]

AUTHORIZE = "/oauth2/authorize"
AUTHN = "/oauth2/authn"
TOKEN = "/oauth2/token"
LOGOUT = "/oidc/logout"

BASIC = {
    "authenticatorId": BASIC_AUTHENTICATOR_ID,
    "authenticator": "Username & Password",
    "idp": "LOCAL",
    "requiredParams": ["username", "password"],
}
SMS = {"authenticatorId": SMS_ID, "authenticator": "SMS OTP", "idp": "LOCAL", "requiredParams": ["OTPcode"]}
EMAIL = {"authenticatorId": EMAIL_ID, "authenticator": "Email OTP", "idp": "LOCAL", "requiredParams": ["OTPcode"]}
TOTP = {"authenticatorId": TOTP_ID, "authenticator": "TOTP", "idp": "LOCAL", "requiredParams": ["token"]}
PASSKEY = {"authenticatorId": PASSKEY_ID, "authenticator": "Passkey", "idp": "LOCAL"}


# --------------------------------------------------------------------------- #
# Helpers                                                                     #
# --------------------------------------------------------------------------- #
def next_step(*authenticators: dict) -> dict:
    return {
        "flowId": FLOW_ID,
        "flowStatus": "INCOMPLETE",
        "nextStep": {"stepType": "AUTHENTICATOR_PROMPT", "authenticators": list(authenticators)},
    }


def completed(code: str = "auth-code-1") -> dict:
    return {"flowStatus": "SUCCESS_COMPLETED", "authData": {"code": code}}


def token_response(make_jwt) -> dict:
    return {
        "access_token": make_jwt({"sub": "alice", "exp": 1_700_003_600}),
        "id_token": make_jwt({"sub": "alice", "email": "alice@example.com"}),
        "token_type": "Bearer",
        "expires_in": 3600,
    }


async def started_at_authenticate(orchestrator, identity_server):
    identity_server.reply(AUTHORIZE, next_step(BASIC))
    outcome = await orchestrator.start()
    assert outcome.step is StepKind.AUTHENTICATE
    return outcome


async def started_at_select(orchestrator, identity_server, *authenticators):
    identity_server.reply(AUTHORIZE, next_step(*authenticators))
    outcome = await orchestrator.start()
    assert outcome.step is StepKind.SELECT
    return outcome


# --------------------------------------------------------------------------- #
# Happy paths                                                                 #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_start_posts_authorize_form_and_enters_authenticate(orchestrator, identity_server):
    await started_at_authenticate(orchestrator, identity_server)

    (request,) = identity_server.calls(AUTHORIZE)
    assert str(request.url) == "https://is.example.com/oauth2/authorize"
    assert request.headers["accept"] == "application/json"
    assert identity_server.form_body(request) == {
        "client_id": "app-client",
        "response_type": "code",
        "redirect_uri": "myapp://callback",
        "scope": "openid address email groups phone profile roles",
        "response_mode": "direct",
    }
    state = orchestrator.state
    assert state.flow_id == FLOW_ID
    assert state.selected_authenticator_id == BASIC_AUTHENTICATOR_ID
    assert state.started_at == 1_700_000_000.0


@pytest.mark.anyio
async def test_credentials_complete_flow_and_exchange_code(orchestrator, identity_server, make_jwt):
    await started_at_authenticate(orchestrator, identity_server)
    identity_server.reply(AUTHN, completed())
    identity_server.reply(TOKEN, token_response(make_jwt))

    values = {"username": " alice ", "password": "secret"}
    outcome = await orchestrator.submit(StepKind.AUTHENTICATE, values)

    assert outcome.completed
    assert outcome.tokens.token_type == "Bearer"
    assert values == {}
    (authn,) = identity_server.calls(AUTHN)
    assert identity_server.json_body(authn) == {
        "flowId": FLOW_ID,
        "selectedAuthenticator": {
            "authenticatorId": BASIC_AUTHENTICATOR_ID,
            "params": {"username": "alice", "password": "secret"},
        },
    }
    (token,) = identity_server.calls(TOKEN)
    form = identity_server.form_body(token)
    assert form["grant_type"] == "authorization_code"
    assert form["code"] == "auth-code-1"
    assert "client_secret" not in form
    # a completed flow leaves no state behind
    assert orchestrator.current_step is StepKind.INIT
    assert orchestrator.state.flow_id is None


@pytest.mark.anyio
async def test_blank_username_fails_locally(orchestrator, identity_server):
    await started_at_authenticate(orchestrator, identity_server)

    with pytest.raises(InvalidInputError) as excinfo:
        await orchestrator.submit(StepKind.AUTHENTICATE, {"username": "   ", "password": "x"})

    assert excinfo.value.field == "username"
    assert identity_server.calls(AUTHN) == []
    assert orchestrator.current_step is StepKind.AUTHENTICATE


@pytest.mark.anyio
async def test_single_sms_step_delivers_code_once(orchestrator, identity_server):
    await started_at_authenticate(orchestrator, identity_server)
    identity_server.reply(AUTHN, next_step(SMS))
    identity_server.reply(AUTHN, next_step(SMS))

    outcome = await orchestrator.submit(StepKind.AUTHENTICATE, {"username": "alice", "password": "secret"})

    assert outcome.step is StepKind.SMS_OTP
    assert "mobile number" in outcome.message
    credentials, delivery = identity_server.calls(AUTHN)
    assert identity_server.json_body(delivery)["selectedAuthenticator"] == {
        "authenticatorId": SMS_ID,
        "params": {},
    }
    assert orchestrator.cooldown.active


@pytest.mark.anyio
async def test_resend_respects_cooldown(orchestrator, identity_server, manual_sleep):
    await started_at_authenticate(orchestrator, identity_server)
    identity_server.reply(AUTHN, next_step(SMS))
    identity_server.reply(AUTHN, next_step(SMS))
    await orchestrator.submit(StepKind.AUTHENTICATE, {"username": "alice", "password": "secret"})

    with pytest.raises(CooldownActiveError) as excinfo:
        await orchestrator.resend_current_challenge()
    assert excinfo.value.remaining == 60
    assert len(identity_server.calls(AUTHN)) == 2

    manual_sleep.release()
    await orchestrator.cooldown.wait()
    assert orchestrator.cooldown.remaining == 0

    identity_server.reply(AUTHN, {"flowId": FLOW_ID, "flowStatus": "INCOMPLETE"})
    outcome = await orchestrator.resend_current_challenge()

    assert outcome.error is None
    assert outcome.step is StepKind.SMS_OTP
    assert len(identity_server.calls(AUTHN)) == 3


@pytest.mark.anyio
async def test_sms_code_uses_declared_parameter(orchestrator, identity_server, make_jwt):
    await started_at_authenticate(orchestrator, identity_server)
    identity_server.reply(AUTHN, next_step(SMS))
    identity_server.reply(AUTHN, next_step(SMS))
    await orchestrator.submit(StepKind.AUTHENTICATE, {"username": "alice", "password": "secret"})
    identity_server.reply(AUTHN, completed())
    identity_server.reply(TOKEN, token_response(make_jwt))

    outcome = await orchestrator.submit(StepKind.SMS_OTP, {"code": " 123456 "})

    assert outcome.completed
    params = identity_server.json_body(identity_server.calls(AUTHN)[-1])["selectedAuthenticator"]["params"]
    assert params == {"OTPcode": "123456"}
    assert not orchestrator.cooldown.active


@pytest.mark.anyio
async def test_multiple_authenticators_require_selection(orchestrator, identity_server):
    await started_at_select(orchestrator, identity_server, TOTP, SMS)

    assert orchestrator.state.selected_authenticator_id is None
    with pytest.raises(InvalidSelectionError):
        await orchestrator.select_authenticator("does-not-exist")

    outcome = await orchestrator.select_authenticator(TOTP_ID)

    assert outcome.step is StepKind.TOTP
    assert identity_server.calls(AUTHN) == []


@pytest.mark.anyio
async def test_totp_defaults_to_token_parameter(orchestrator, identity_server, make_jwt):
    bare_totp = {"authenticatorId": TOTP_ID, "authenticator": "TOTP Authenticator"}
    await started_at_select(orchestrator, identity_server, bare_totp, SMS)
    await orchestrator.select_authenticator(TOTP_ID)
    identity_server.reply(AUTHN, completed())
    identity_server.reply(TOKEN, token_response(make_jwt))

    await orchestrator.submit("totp", {"code": "654321"})

    params = identity_server.json_body(identity_server.calls(AUTHN)[0])["selectedAuthenticator"]["params"]
    assert params == {"token": "654321"}


@pytest.mark.anyio
async def test_generic_otp_uses_code_parameter_and_can_resend(orchestrator, identity_server):
    magic = {"authenticatorId": "bWFnaWM", "authenticator": "Magic Link"}
    await started_at_select(orchestrator, identity_server, magic, TOTP)

    outcome = await orchestrator.select_authenticator("bWFnaWM")
    assert outcome.step is StepKind.GENERIC_OTP
    assert identity_server.calls(AUTHN) == []

    identity_server.reply(AUTHN, {"flowId": FLOW_ID, "flowStatus": "INCOMPLETE"})
    resent = await orchestrator.resend_current_challenge()
    assert resent.error is None
    assert orchestrator.cooldown.active

    identity_server.reply(AUTHN, status=401, text="")
    await orchestrator.submit(StepKind.GENERIC_OTP, {"code": "42"})
    params = identity_server.json_body(identity_server.calls(AUTHN)[-1])["selectedAuthenticator"]["params"]
    assert params == {"code": "42"}


@pytest.mark.anyio
async def test_selecting_email_otp_triggers_delivery(orchestrator, identity_server):
    await started_at_select(orchestrator, identity_server, EMAIL, TOTP)
    identity_server.reply(AUTHN, {"flowId": FLOW_ID, "flowStatus": "INCOMPLETE"})

    outcome = await orchestrator.select_authenticator(EMAIL_ID)

    assert outcome.step is StepKind.EMAIL_OTP
    assert "email" in outcome.message
    assert len(identity_server.calls(AUTHN)) == 1
    assert orchestrator.cooldown.active


@pytest.mark.anyio
async def test_select_outside_select_state_is_rejected(orchestrator, identity_server):
    await started_at_authenticate(orchestrator, identity_server)

    with pytest.raises(InvalidSelectionError):
        await orchestrator.select_authenticator(BASIC_AUTHENTICATOR_ID)


@pytest.mark.anyio
async def test_submit_for_other_step_is_rejected(orchestrator, identity_server):
    await started_at_authenticate(orchestrator, identity_server)

    with pytest.raises(InvalidSelectionError):
        await orchestrator.submit(StepKind.TOTP, {"token": "123456"})


@pytest.mark.anyio
async def test_passkey_challenge_is_reported_not_completed(orchestrator, identity_server):
    await started_at_select(orchestrator, identity_server, PASSKEY, TOTP)
    challenge = {**PASSKEY, "metadata": {"additionalData": {"challengeData": "Y2hhbGxlbmdl"}}}
    identity_server.reply(AUTHN, next_step(challenge))

    outcome = await orchestrator.select_authenticator(PASSKEY_ID)

    assert outcome.step is StepKind.PASSKEY
    assert outcome.passkey_challenge == "Y2hhbGxlbmdl"
    assert not outcome.completed


# --------------------------------------------------------------------------- #
# Failures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_server_error_schedules_reset(orchestrator, identity_server, manual_sleep):
    await started_at_authenticate(orchestrator, identity_server)
    identity_server.reply(AUTHN, status=500, text="Internal Server Error")

    outcome = await orchestrator.submit(StepKind.AUTHENTICATE, {"username": "alice", "password": "bad"})

    assert outcome.error.category is FailureCategory.FLOW_EXPIRED
    assert outcome.error.should_restart
    assert orchestrator.current_step is StepKind.AUTHENTICATE
    assert orchestrator.restart_pending

    manual_sleep.release()
    await orchestrator.wait_for_restart()

    assert manual_sleep.calls == [2.0]
    assert orchestrator.current_step is StepKind.INIT
    assert orchestrator.state.flow_id is None


@pytest.mark.anyio
async def test_unknown_flow_status_marker_schedules_reset(orchestrator, identity_server):
    await started_at_authenticate(orchestrator, identity_server)
    identity_server.reply(AUTHN, status=409, text='{"code":"ABA-65003","message":"Unknown authentication flow status"}')

    outcome = await orchestrator.submit(StepKind.AUTHENTICATE, {"username": "alice", "password": "x"})

    assert outcome.error.category is FailureCategory.FLOW_EXPIRED
    assert orchestrator.restart_pending


@pytest.mark.anyio
async def test_bad_request_with_flow_marker_keeps_flow(orchestrator, identity_server):
    await started_at_authenticate(orchestrator, identity_server)
    identity_server.reply(AUTHN, status=400, text='{"code":"ABA-65003","message":"Unknown authentication flow status"}')

    outcome = await orchestrator.submit(StepKind.AUTHENTICATE, {"username": "alice", "password": "x"})

    assert outcome.error.category is FailureCategory.MALFORMED_REQUEST
    assert not outcome.error.should_restart
    assert not orchestrator.restart_pending
    assert orchestrator.current_step is StepKind.AUTHENTICATE


@pytest.mark.anyio
async def test_wrong_password_keeps_step(orchestrator, identity_server):
    await started_at_authenticate(orchestrator, identity_server)
    identity_server.reply(AUTHN, status=401, text="Unauthorized")

    outcome = await orchestrator.submit(StepKind.AUTHENTICATE, {"username": "alice", "password": "bad"})

    assert outcome.error.category is FailureCategory.INVALID_CREDENTIALS
    assert not orchestrator.restart_pending
    assert orchestrator.current_step is StepKind.AUTHENTICATE
    assert orchestrator.last_failure == outcome.error


@pytest.mark.anyio
async def test_network_error_on_start_is_classified(orchestrator, identity_server):
    identity_server.fail(AUTHORIZE, httpx.ConnectError("connection refused"))

    outcome = await orchestrator.start()

    assert outcome.error.category is FailureCategory.CONNECTIVITY
    assert outcome.step is StepKind.INIT
    assert not orchestrator.busy


@pytest.mark.anyio
async def test_response_without_advancement_is_protocol_error(orchestrator, identity_server):
    await started_at_authenticate(orchestrator, identity_server)
    identity_server.reply(AUTHN, {"flowId": FLOW_ID, "flowStatus": "INCOMPLETE"})

    with pytest.raises(ProtocolError) as excinfo:
        await orchestrator.submit(StepKind.AUTHENTICATE, {"username": "alice", "password": "secret"})

    assert excinfo.value.kind == ProtocolError.NO_ADVANCEMENT


@pytest.mark.anyio
async def test_completion_without_code_is_protocol_error(orchestrator, identity_server):
    await started_at_authenticate(orchestrator, identity_server)
    identity_server.reply(AUTHN, {"flowStatus": "SUCCESS_COMPLETED"})

    with pytest.raises(ProtocolError) as excinfo:
        await orchestrator.submit(StepKind.AUTHENTICATE, {"username": "alice", "password": "secret"})

    assert excinfo.value.kind == ProtocolError.COMPLETED_WITHOUT_CODE
    assert identity_server.calls(TOKEN) == []


@pytest.mark.anyio
async def test_token_exchange_failure_is_raised(orchestrator, identity_server):
    await started_at_authenticate(orchestrator, identity_server)
    identity_server.reply(AUTHN, completed())
    identity_server.reply(TOKEN, status=400, text='{"error":"invalid_grant"}')

    with pytest.raises(TokenExchangeFailedError) as excinfo:
        await orchestrator.submit(StepKind.AUTHENTICATE, {"username": "alice", "password": "secret"})

    assert excinfo.value.status == 400
    assert "invalid_grant" in excinfo.value.body
    assert len(identity_server.calls(TOKEN)) == 1
    assert not orchestrator.busy


# --------------------------------------------------------------------------- #
# Concurrency                                                                 #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_concurrent_call_raises_busy(orchestrator, identity_server):
    identity_server.gate = anyio.Event()
    identity_server.reply(AUTHORIZE, next_step(BASIC))

    async with anyio.create_task_group() as tg:
        tg.start_soon(orchestrator.start)
        await wait_all_tasks_blocked()
        assert orchestrator.busy
        with pytest.raises(BusyError):
            await orchestrator.start()
        identity_server.gate.set()

    assert orchestrator.current_step is StepKind.AUTHENTICATE
    assert len(identity_server.calls(AUTHORIZE)) == 1


@pytest.mark.anyio
async def test_response_after_reset_is_discarded(orchestrator, identity_server):
    await started_at_authenticate(orchestrator, identity_server)
    identity_server.gate = anyio.Event()
    identity_server.reply(AUTHN, next_step(TOTP))
    results = []

    async def _submit():
        results.append(
            await orchestrator.submit(StepKind.AUTHENTICATE, {"username": "alice", "password": "secret"})
        )

    async with anyio.create_task_group() as tg:
        tg.start_soon(_submit)
        await wait_all_tasks_blocked()
        orchestrator.reset_to_init()
        identity_server.gate.set()

    assert results[0].step is StepKind.INIT
    assert orchestrator.current_step is StepKind.INIT
    assert orchestrator.state.flow_id is None


# --------------------------------------------------------------------------- #
# Logout                                                                      #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_logout_posts_id_token_hint(orchestrator, identity_server):
    identity_server.reply(LOGOUT, text="", status=200)

    await orchestrator.logout("id-token-value")

    (request,) = identity_server.calls(LOGOUT)
    assert identity_server.form_body(request) == {
        "id_token_hint": "id-token-value",
        "response_mode": "direct",
    }


@pytest.mark.anyio
async def test_logout_failure_still_resets(orchestrator, identity_server):
    await started_at_authenticate(orchestrator, identity_server)
    identity_server.reply(LOGOUT, status=500, text="boom")

    with pytest.raises(TransportError):
        await orchestrator.logout("id-token-value")

    assert orchestrator.current_step is StepKind.INIT
