"""
AuthStateMachine unit tests

Covers:
- Sign-in / sign-up transitions and error classification
- Verification resend cooldown (no-op while running, timer countdown)
- Provider snapshot merge (verification done elsewhere, remote sign-out)
- Password reset and the one-shot verification callback
- Sign-out releasing the conversation
"""

import asyncio

import pytest

from cbt_companion.models.auth_state import (
    Anonymous,
    AuthStateKind,
    Authenticated,
    AwaitingCredentials,
    AwaitingVerification,
    CredentialsMode,
    ResetStage,
    ResettingPassword,
    VerificationFailed,
    VerificationSucceeded,
)
from cbt_companion.models.errors import (
    AuthFlowError,
    ErrorKind,
    IdentityErrorCode,
    PASSWORD_MISMATCH_MESSAGE,
    WEAK_PASSWORD_MESSAGE,
)
from cbt_companion.services.auth_state_machine import (
    PASSWORD_RESET_CONFIRMATION,
    AuthStateMachine,
)

EMAIL = "user@example.com"
PASSWORD = "secret123"


async def wait_for(predicate, timeout: float = 1.0):
    """Poll until predicate() holds"""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


@pytest.fixture
def slow_auth(identity, conversation):
    """Cooldown that never ticks during a test"""
    return AuthStateMachine(
        identity=identity,
        conversation=conversation,
        cooldown_seconds=60,
        tick_interval=10.0
    )


# ==================== Startup ====================

class TestStartup:
    """Initial snapshot handling"""

    def test_initial_state(self, auth):
        """Machine starts ANONYMOUS and not ready"""
        assert auth.state == Anonymous()
        assert auth.ready is False
        assert auth.busy is False

    @pytest.mark.asyncio
    async def test_start_without_session(self, auth):
        """No restored session: ANONYMOUS and ready"""
        await auth.start()

        assert auth.state.kind == AuthStateKind.ANONYMOUS
        assert auth.ready is True

    @pytest.mark.asyncio
    async def test_start_restores_verified_account(self, identity, auth):
        """Restored verified session goes straight to AUTHENTICATED"""
        identity.current = identity.add_account(EMAIL, PASSWORD, verified=True)

        await auth.start()

        assert isinstance(auth.state, Authenticated)
        assert auth.state.account.email == EMAIL

    @pytest.mark.asyncio
    async def test_start_survives_provider_failure(self, identity, auth):
        """A failing reload still marks the machine ready"""
        identity.fail("reload_account", IdentityErrorCode.NETWORK)

        await auth.start()

        assert auth.state.kind == AuthStateKind.ANONYMOUS
        assert auth.ready is True

    @pytest.mark.asyncio
    async def test_failed_operation_does_not_mark_ready(self, identity, auth):
        """Only an account snapshot makes the machine ready"""
        identity.add_account(EMAIL, PASSWORD)

        with pytest.raises(AuthFlowError):
            await auth.start_sign_in(EMAIL, "wrong-password")
        auth.begin_password_reset()
        with pytest.raises(AuthFlowError):
            await auth.request_password_reset("nobody@example.com")

        assert auth.ready is False

    def test_single_listener(self, identity, auth):
        """The provider accepts only one snapshot listener"""
        with pytest.raises(RuntimeError):
            AuthStateMachine(identity=identity)


# ==================== Sign-in ====================

class TestSignIn:
    """start_sign_in()"""

    @pytest.mark.asyncio
    async def test_verified_account_authenticates(self, identity, auth):
        identity.add_account(EMAIL, PASSWORD, verified=True)

        state = await auth.start_sign_in(EMAIL, PASSWORD)

        assert isinstance(state, Authenticated)
        assert auth.account.email_verified is True

    @pytest.mark.asyncio
    async def test_unverified_account_awaits_verification(self, identity, auth):
        identity.add_account(EMAIL, PASSWORD, verified=False)

        state = await auth.start_sign_in(EMAIL, PASSWORD)

        assert isinstance(state, AwaitingVerification)
        assert state.cooldown_seconds == 0
        assert state.can_resend is True

    @pytest.mark.asyncio
    async def test_sign_in_from_login_form(self, identity, auth):
        """AWAITING_CREDENTIALS is a valid starting point"""
        identity.add_account(EMAIL, PASSWORD, verified=True)
        auth.show_credentials(CredentialsMode.LOGIN)

        state = await auth.start_sign_in(EMAIL, PASSWORD)

        assert isinstance(state, Authenticated)

    @pytest.mark.asyncio
    async def test_wrong_password_rejected(self, identity, auth):
        """Rejected credentials leave the state unchanged"""
        identity.add_account(EMAIL, PASSWORD)
        auth.show_credentials(CredentialsMode.LOGIN)

        with pytest.raises(AuthFlowError) as exc_info:
            await auth.start_sign_in(EMAIL, "wrong-password")

        assert exc_info.value.kind == ErrorKind.CREDENTIAL_REJECTED
        assert auth.state == AwaitingCredentials(mode=CredentialsMode.LOGIN)
        assert auth.busy is False

    @pytest.mark.asyncio
    async def test_unknown_user_reported_as_rejected(self, auth):
        """Sign-in does not reveal whether the account exists"""
        with pytest.raises(AuthFlowError) as exc_info:
            await auth.start_sign_in("nobody@example.com", PASSWORD)

        assert exc_info.value.kind == ErrorKind.CREDENTIAL_REJECTED

    @pytest.mark.asyncio
    async def test_empty_fields_fail_locally(self, identity, auth):
        with pytest.raises(AuthFlowError) as exc_info:
            await auth.start_sign_in("  ", PASSWORD)

        assert exc_info.value.kind == ErrorKind.VALIDATION
        assert identity.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code,kind", [
        (IdentityErrorCode.TOO_MANY_REQUESTS, ErrorKind.RATE_LIMITED),
        (IdentityErrorCode.NETWORK, ErrorKind.NETWORK),
        (IdentityErrorCode.UNKNOWN, ErrorKind.UNKNOWN),
    ])
    async def test_provider_failures_classified(self, identity, auth, code, kind):
        identity.add_account(EMAIL, PASSWORD)
        identity.fail("sign_in", code)

        with pytest.raises(AuthFlowError) as exc_info:
            await auth.start_sign_in(EMAIL, PASSWORD)

        assert exc_info.value.kind == kind
        assert auth.state.kind == AuthStateKind.ANONYMOUS

    @pytest.mark.asyncio
    async def test_rejected_while_authenticated(self, identity, auth):
        identity.add_account(EMAIL, PASSWORD, verified=True)
        await auth.start_sign_in(EMAIL, PASSWORD)

        with pytest.raises(AuthFlowError) as exc_info:
            await auth.start_sign_in(EMAIL, PASSWORD)

        assert exc_info.value.kind == ErrorKind.INVALID_TRANSITION

    @pytest.mark.asyncio
    async def test_concurrent_operation_rejected(self, identity, auth):
        """A second provider operation while one is in flight is rejected"""
        identity.add_account(EMAIL, PASSWORD)
        release = asyncio.Event()
        original_sign_in = identity.sign_in

        async def slow_sign_in(email, password):
            await release.wait()
            return await original_sign_in(email, password)

        identity.sign_in = slow_sign_in
        first = asyncio.create_task(auth.start_sign_in(EMAIL, PASSWORD))
        await wait_for(lambda: auth.busy)

        with pytest.raises(AuthFlowError) as exc_info:
            await auth.start_sign_in(EMAIL, PASSWORD)
        assert exc_info.value.kind == ErrorKind.INVALID_TRANSITION

        release.set()
        state = await first
        assert isinstance(state, AwaitingVerification)
        assert auth.busy is False


# ==================== Sign-up ====================

class TestSignUp:
    """start_sign_up()"""

    @pytest.mark.asyncio
    async def test_password_mismatch_makes_no_provider_call(self, identity, auth):
        auth.show_credentials(CredentialsMode.SIGNUP)

        with pytest.raises(AuthFlowError) as exc_info:
            await auth.start_sign_up(EMAIL, PASSWORD, "different")

        assert exc_info.value.kind == ErrorKind.VALIDATION
        assert exc_info.value.message == PASSWORD_MISMATCH_MESSAGE
        assert identity.calls == []
        assert auth.state == AwaitingCredentials(mode=CredentialsMode.SIGNUP)

    @pytest.mark.asyncio
    async def test_success_sends_verification_email(self, identity, auth):
        auth.show_credentials(CredentialsMode.SIGNUP)

        state = await auth.start_sign_up(EMAIL, PASSWORD, PASSWORD)

        assert isinstance(state, AwaitingVerification)
        assert state.account.email == EMAIL
        assert state.account.email_verified is False
        assert state.cooldown_seconds == 0
        assert identity.verification_emails == [EMAIL]

    @pytest.mark.asyncio
    async def test_email_failure_still_advances(self, identity, auth):
        """The verification email is best-effort"""
        identity.fail("send_verification_email", IdentityErrorCode.NETWORK)

        state = await auth.start_sign_up(EMAIL, PASSWORD, PASSWORD)

        assert isinstance(state, AwaitingVerification)
        assert EMAIL in identity.accounts
        assert identity.verification_emails == []

    @pytest.mark.asyncio
    async def test_email_in_use(self, identity, auth):
        identity.add_account(EMAIL, PASSWORD)
        auth.show_credentials(CredentialsMode.SIGNUP)

        with pytest.raises(AuthFlowError) as exc_info:
            await auth.start_sign_up(EMAIL, PASSWORD, PASSWORD)

        assert exc_info.value.kind == ErrorKind.ALREADY_EXISTS
        assert auth.state == AwaitingCredentials(mode=CredentialsMode.SIGNUP)

    @pytest.mark.asyncio
    async def test_weak_password(self, auth):
        with pytest.raises(AuthFlowError) as exc_info:
            await auth.start_sign_up(EMAIL, "123", "123")

        assert exc_info.value.kind == ErrorKind.VALIDATION
        assert exc_info.value.message == WEAK_PASSWORD_MESSAGE


# ==================== Resend cooldown ====================

class TestResendVerification:
    """resend_verification() and the cooldown timer"""

    @pytest.mark.asyncio
    async def test_resend_starts_cooldown(self, identity, slow_auth):
        await slow_auth.start_sign_up(EMAIL, PASSWORD, PASSWORD)

        state = await slow_auth.resend_verification()

        assert state.cooldown_seconds == 60
        assert state.can_resend is False
        assert identity.verification_emails == [EMAIL, EMAIL]
        await slow_auth.close()

    @pytest.mark.asyncio
    async def test_resend_during_cooldown_is_noop(self, identity, slow_auth):
        """Rapid double submission sends exactly one email"""
        await slow_auth.start_sign_up(EMAIL, PASSWORD, PASSWORD)
        identity.verification_emails.clear()

        await slow_auth.resend_verification()
        state = await slow_auth.resend_verification()

        assert state.cooldown_seconds == 60
        assert identity.verification_emails == [EMAIL]
        await slow_auth.close()

    @pytest.mark.asyncio
    async def test_concurrent_resend_sends_once(self, identity, slow_auth):
        await slow_auth.start_sign_up(EMAIL, PASSWORD, PASSWORD)
        identity.verification_emails.clear()

        results = await asyncio.gather(
            slow_auth.resend_verification(),
            slow_auth.resend_verification(),
            return_exceptions=True
        )

        assert identity.verification_emails == [EMAIL]
        assert not any(isinstance(r, Exception) for r in results)
        await slow_auth.close()

    @pytest.mark.asyncio
    async def test_cooldown_counts_down_to_zero(self, identity, auth):
        await auth.start_sign_up(EMAIL, PASSWORD, PASSWORD)
        state = await auth.resend_verification()
        assert state.cooldown_seconds == 3

        await wait_for(lambda: auth.state.cooldown_seconds == 0)

        assert auth.state.can_resend is True
        state = await auth.resend_verification()
        assert state.cooldown_seconds == 3
        assert identity.verification_emails.count(EMAIL) == 3
        await auth.close()

    @pytest.mark.asyncio
    async def test_failed_resend_frees_cooldown(self, identity, slow_auth):
        await slow_auth.start_sign_up(EMAIL, PASSWORD, PASSWORD)
        identity.fail("send_verification_email", IdentityErrorCode.TOO_MANY_REQUESTS)

        with pytest.raises(AuthFlowError) as exc_info:
            await slow_auth.resend_verification()

        assert exc_info.value.kind == ErrorKind.RATE_LIMITED
        assert slow_auth.state.cooldown_seconds == 0
        assert slow_auth.busy is False

    @pytest.mark.asyncio
    async def test_resend_outside_verification(self, auth):
        with pytest.raises(AuthFlowError) as exc_info:
            await auth.resend_verification()

        assert exc_info.value.kind == ErrorKind.INVALID_TRANSITION

    @pytest.mark.asyncio
    async def test_timer_cancelled_on_leaving_state(self, identity, slow_auth):
        """Verification elsewhere stops the cooldown timer"""
        await slow_auth.start_sign_up(EMAIL, PASSWORD, PASSWORD)
        await slow_auth.resend_verification()
        task = slow_auth._cooldown_task
        assert task is not None

        identity.verify_elsewhere(EMAIL)
        await wait_for(task.done)

        assert isinstance(slow_auth.state, Authenticated)
        assert slow_auth._cooldown_task is None


# ==================== Snapshot merge ====================

class TestSnapshotMerge:
    """Provider-pushed account snapshots"""

    @pytest.mark.asyncio
    async def test_verified_elsewhere_auto_advances(self, identity, auth):
        identity.add_account(EMAIL, PASSWORD)
        await auth.start_sign_in(EMAIL, PASSWORD)
        assert isinstance(auth.state, AwaitingVerification)

        identity.verify_elsewhere(EMAIL)

        assert isinstance(auth.state, Authenticated)
        assert auth.state.account.email_verified is True

    @pytest.mark.asyncio
    async def test_unverified_snapshot_keeps_cooldown(self, identity, slow_auth):
        auth = slow_auth
        identity.add_account(EMAIL, PASSWORD)
        await auth.start_sign_in(EMAIL, PASSWORD)
        await auth.resend_verification()

        await identity.reload_account()

        assert isinstance(auth.state, AwaitingVerification)
        assert auth.state.cooldown_seconds == 60
        await auth.close()

    @pytest.mark.asyncio
    async def test_refresh_picks_up_verification(self, identity, auth):
        identity.add_account(EMAIL, PASSWORD)
        await auth.start_sign_in(EMAIL, PASSWORD)
        identity.accounts[EMAIL]["verified"] = True

        state = await auth.refresh_account()

        assert isinstance(state, Authenticated)

    @pytest.mark.asyncio
    async def test_refresh_failure_classified(self, identity, auth):
        identity.fail("reload_account", IdentityErrorCode.NETWORK)

        with pytest.raises(AuthFlowError) as exc_info:
            await auth.refresh_account()

        assert exc_info.value.kind == ErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_snapshot_ignored_on_forms(self, identity, auth):
        """A snapshot does not discard an unrelated form"""
        auth.begin_password_reset()
        account = identity.add_account(EMAIL, PASSWORD, verified=True)

        identity._set_current(account)

        assert auth.state == ResettingPassword(stage=ResetStage.AWAITING_INPUT)

    @pytest.mark.asyncio
    async def test_remote_sign_out_releases_conversation(self, identity, auth, conversation):
        identity.add_account(EMAIL, PASSWORD, verified=True)
        await auth.start_sign_in(EMAIL, PASSWORD)
        await conversation.initialize()

        identity._set_current(None)
        await wait_for(lambda: not conversation.is_initialized)

        assert auth.state == Anonymous()

    @pytest.mark.asyncio
    async def test_close_waits_for_remote_release(self, identity, auth, conversation):
        identity.add_account(EMAIL, PASSWORD, verified=True)
        await auth.start_sign_in(EMAIL, PASSWORD)
        await conversation.initialize()

        identity._set_current(None)
        await auth.close()

        assert conversation.is_initialized is False
        assert auth._background_tasks == set()


# ==================== Password reset ====================

class TestPasswordReset:
    """begin_password_reset() / request_password_reset()"""

    @pytest.mark.asyncio
    async def test_request_sent(self, identity, auth):
        identity.add_account(EMAIL, PASSWORD)
        auth.begin_password_reset()

        state = await auth.request_password_reset(EMAIL)

        assert state.stage == ResetStage.REQUEST_SENT
        assert state.confirmation == PASSWORD_RESET_CONFIRMATION
        assert identity.reset_emails == [EMAIL]

    @pytest.mark.asyncio
    async def test_unknown_email(self, auth):
        auth.begin_password_reset()

        with pytest.raises(AuthFlowError) as exc_info:
            await auth.request_password_reset("nobody@example.com")

        assert exc_info.value.kind == ErrorKind.NOT_FOUND
        assert auth.state == ResettingPassword(stage=ResetStage.AWAITING_INPUT)

    @pytest.mark.asyncio
    async def test_requires_reset_form(self, auth):
        with pytest.raises(AuthFlowError) as exc_info:
            await auth.request_password_reset(EMAIL)

        assert exc_info.value.kind == ErrorKind.INVALID_TRANSITION

    @pytest.mark.asyncio
    async def test_return_to_login(self, identity, auth):
        identity.add_account(EMAIL, PASSWORD)
        auth.begin_password_reset()
        await auth.request_password_reset(EMAIL)

        assert auth.return_to_login() == Anonymous()

    @pytest.mark.parametrize("mode", [CredentialsMode.LOGIN, CredentialsMode.SIGNUP])
    def test_return_to_login_from_credentials_form(self, auth, mode):
        auth.show_credentials(mode)

        assert auth.return_to_login() == Anonymous()

    def test_return_to_login_from_anonymous_rejected(self, auth):
        with pytest.raises(AuthFlowError) as exc_info:
            auth.return_to_login()

        assert exc_info.value.kind == ErrorKind.INVALID_TRANSITION


# ==================== Verification callback ====================

class TestVerificationCallback:
    """complete_email_verification()"""

    @pytest.mark.asyncio
    async def test_valid_code_succeeds(self, identity, auth):
        identity.add_account(EMAIL, PASSWORD)
        code = identity.issue_code(EMAIL)

        state = await auth.complete_email_verification(code)

        assert state == VerificationSucceeded()
        assert identity.accounts[EMAIL]["verified"] is True

    @pytest.mark.asyncio
    async def test_bad_code_fails(self, identity, auth):
        """A bad code ends in VERIFICATION_FAILED instead of raising"""
        state = await auth.complete_email_verification("bogus")

        assert isinstance(state, VerificationFailed)
        assert state.error_kind == ErrorKind.CODE_INVALID_OR_EXPIRED.value
        assert state.message

    @pytest.mark.asyncio
    async def test_one_shot(self, identity, auth):
        """A second call does not re-apply the code"""
        identity.add_account(EMAIL, PASSWORD)
        code = identity.issue_code(EMAIL)
        await auth.complete_email_verification(code)

        state = await auth.complete_email_verification(code)

        assert state == VerificationSucceeded()
        assert identity.calls.count("apply_verification_code") == 1

    @pytest.mark.asyncio
    async def test_only_exit_is_return_to_login(self, identity, auth):
        await auth.complete_email_verification("bogus")

        with pytest.raises(AuthFlowError):
            auth.show_credentials(CredentialsMode.LOGIN)

        assert auth.return_to_login() == Anonymous()

    @pytest.mark.asyncio
    async def test_rejected_when_authenticated(self, identity, auth):
        identity.add_account(EMAIL, PASSWORD, verified=True)
        await auth.start_sign_in(EMAIL, PASSWORD)

        with pytest.raises(AuthFlowError) as exc_info:
            await auth.complete_email_verification("code-1")

        assert exc_info.value.kind == ErrorKind.INVALID_TRANSITION

    @pytest.mark.asyncio
    async def test_empty_code(self, auth):
        with pytest.raises(AuthFlowError) as exc_info:
            await auth.complete_email_verification("")

        assert exc_info.value.kind == ErrorKind.VALIDATION


# ==================== State listeners ====================

class TestStateListeners:
    """add_listener()"""

    @pytest.mark.asyncio
    async def test_listener_sees_each_change(self, identity, auth):
        states = []
        auth.add_listener(states.append)
        identity.add_account(EMAIL, PASSWORD)

        auth.show_credentials(CredentialsMode.LOGIN)
        await auth.start_sign_in(EMAIL, PASSWORD)
        identity.verify_elsewhere(EMAIL)

        assert [s.kind for s in states] == [
            AuthStateKind.AWAITING_CREDENTIALS,
            AuthStateKind.AWAITING_VERIFICATION,
            AuthStateKind.AUTHENTICATED,
        ]
        assert states[-1] == auth.state

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_block_transition(self, identity, auth):
        def broken(state):
            raise ValueError("listener bug")

        states = []
        auth.add_listener(broken)
        auth.add_listener(states.append)
        identity.add_account(EMAIL, PASSWORD, verified=True)

        state = await auth.start_sign_in(EMAIL, PASSWORD)

        assert isinstance(state, Authenticated)
        assert states[-1] == state

    def test_unchanged_state_not_reported(self, auth):
        states = []
        auth.show_credentials(CredentialsMode.LOGIN)
        auth.add_listener(states.append)

        auth.show_credentials(CredentialsMode.LOGIN)

        assert states == []


# ==================== Sign-out ====================

class TestSignOut:
    """sign_out()"""

    @pytest.mark.asyncio
    async def test_sign_out_releases_conversation(self, identity, backend, auth, conversation):
        identity.add_account(EMAIL, PASSWORD, verified=True)
        await auth.start_sign_in(EMAIL, PASSWORD)
        await conversation.initialize()

        state = await auth.sign_out()

        assert state == Anonymous()
        assert auth.account is None
        assert conversation.is_initialized is False
        assert backend.closed == backend.sessions

    @pytest.mark.asyncio
    async def test_provider_failure_still_signs_out(self, identity, auth, conversation):
        identity.add_account(EMAIL, PASSWORD, verified=True)
        await auth.start_sign_in(EMAIL, PASSWORD)
        await conversation.initialize()
        identity.fail("sign_out", IdentityErrorCode.NETWORK)

        state = await auth.sign_out()

        assert state == Anonymous()
        assert conversation.is_initialized is False

    @pytest.mark.asyncio
    async def test_sign_out_from_verification_gate(self, identity, auth):
        identity.add_account(EMAIL, PASSWORD)
        await auth.start_sign_in(EMAIL, PASSWORD)

        assert await auth.sign_out() == Anonymous()

    @pytest.mark.asyncio
    async def test_sign_out_when_anonymous(self, auth):
        with pytest.raises(AuthFlowError) as exc_info:
            await auth.sign_out()

        assert exc_info.value.kind == ErrorKind.INVALID_TRANSITION

    def test_to_dict(self, auth):
        assert auth.to_dict() == {
            "state": {"kind": "anonymous"},
            "busy": False,
            "ready": False,
        }
