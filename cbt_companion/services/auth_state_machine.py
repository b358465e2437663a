"""
Auth State Machine - account lifecycle and email verification gate

Responsibilities:
1. Sign-in / sign-up / sign-out transitions
2. Verification email resend with a 60 second cooldown timer
3. Password reset requests
4. One-shot verification callback (apply code → succeeded / failed)
5. Merging account snapshots pushed by the identity provider

Every collaborator failure is translated into an AuthFlowError at the
operation boundary and leaves the state unchanged (except the best-effort
verification email on sign-up). The machine never retries.

Verification status is provider-authoritative: each pushed snapshot is
re-evaluated, so an account verified elsewhere moves AWAITING_VERIFICATION
to AUTHENTICATED without user action.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Callable, List, Optional, Set, Tuple

from ..models.account import Account
from ..models.auth_state import (
    Anonymous,
    AuthState,
    AuthStateKind,
    Authenticated,
    AwaitingCredentials,
    AwaitingVerification,
    CredentialsMode,
    ResetStage,
    ResettingPassword,
    VerificationFailed,
    VerificationSucceeded,
    VerifyingCallback,
)
from ..models.errors import (
    AuthFlowError,
    ErrorKind,
    IdentityError,
    MISSING_FIELDS_MESSAGE,
    PASSWORD_MISMATCH_MESSAGE,
    classify_identity_error,
)
from .conversation_controller import ConversationController
from .identity_client import IdentityClient

logger = logging.getLogger(__name__)

StateListener = Callable[[AuthState], None]

PASSWORD_RESET_CONFIRMATION = (
    "تم إرسال رابط إعادة تعيين كلمة المرور إلى بريدك الإلكتروني. "
    "يرجى التحقق من صندوق الوارد."
)

_CREDENTIAL_ENTRY = (AuthStateKind.ANONYMOUS, AuthStateKind.AWAITING_CREDENTIALS)
_SIGNED_IN = (AuthStateKind.AUTHENTICATED, AuthStateKind.AWAITING_VERIFICATION)
_CALLBACK_IN_PROGRESS = (
    AuthStateKind.VERIFYING_CALLBACK,
    AuthStateKind.VERIFICATION_SUCCEEDED,
    AuthStateKind.VERIFICATION_FAILED,
)
_RETURNABLE = (
    AuthStateKind.AWAITING_CREDENTIALS,
    AuthStateKind.RESETTING_PASSWORD,
    AuthStateKind.VERIFICATION_SUCCEEDED,
    AuthStateKind.VERIFICATION_FAILED,
)


def state_for_account(account: Account) -> AuthState:
    """Where a signed-in account belongs"""
    if account.email_verified:
        return Authenticated(account=account)
    return AwaitingVerification(account=account, cooldown_seconds=0)


class AuthStateMachine:
    """
    Authentication state machine

    Attributes:
        identity: Identity provider collaborator
        conversation: Conversation released on sign-out (optional)
        cooldown_seconds: Resend cooldown length
        tick_interval: Seconds between cooldown decrements
    """

    def __init__(
        self,
        identity: IdentityClient,
        conversation: Optional[ConversationController] = None,
        cooldown_seconds: int = 60,
        tick_interval: float = 1.0
    ):
        self.identity = identity
        self.conversation = conversation
        self.cooldown_seconds = cooldown_seconds
        self.tick_interval = tick_interval

        self._state: AuthState = Anonymous()
        self._account: Optional[Account] = None
        self._ready = False
        self._busy = False
        self._signing_out = False

        self._cooldown_task: Optional[asyncio.Task] = None
        self._background_tasks: Set[asyncio.Task] = set()
        self._listeners: List[StateListener] = []

        identity.on_account_snapshot_changed(self._on_snapshot)
        logger.info("AuthStateMachine initialized")

    # ===== Observers =====

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def account(self) -> Optional[Account]:
        """Latest account snapshot pushed by the provider"""
        return self._account

    @property
    def ready(self) -> bool:
        """True once the first account snapshot has been applied"""
        return self._ready

    @property
    def busy(self) -> bool:
        """True while a provider call is in flight"""
        return self._busy

    def add_listener(self, callback: StateListener) -> None:
        """
        Observe state changes

        Args:
            callback: Called with the new AuthState after every change
        """
        self._listeners.append(callback)

    def to_dict(self) -> dict:
        return {
            "state": self._state.to_dict(),
            "busy": self._busy,
            "ready": self._ready,
        }

    # ===== Lifecycle =====

    async def start(self) -> None:
        """Apply the provider's current account (restored session, if any)"""
        try:
            account = await self.identity.reload_account()
        except IdentityError as e:
            logger.warning(f"Could not restore account on startup: {e.code.value}")
            account = None

        if not self._ready:
            self._on_snapshot(account)

    async def close(self) -> None:
        """Stop the cooldown timer and wait for pending conversation releases"""
        await self._stop_cooldown_timer()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    # ===== Internals =====

    def _set_state(self, new_state: AuthState) -> None:
        old_state = self._state
        if new_state == old_state:
            return

        if (
            old_state.kind == AuthStateKind.AWAITING_VERIFICATION
            and new_state.kind != AuthStateKind.AWAITING_VERIFICATION
        ):
            self._cancel_cooldown_timer()

        self._state = new_state
        if old_state.kind != new_state.kind:
            logger.info(f"Auth state: {old_state.kind.value} → {new_state.kind.value}")

        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception as e:
                logger.error(f"Auth state listener failed: {e}", exc_info=True)

    def _require(self, allowed: Tuple[AuthStateKind, ...], operation: str) -> None:
        if self._state.kind not in allowed:
            logger.warning(f"{operation} rejected in state {self._state.kind.value}")
            raise AuthFlowError(ErrorKind.INVALID_TRANSITION)

    @asynccontextmanager
    async def _in_flight(self, operation: str):
        if self._busy:
            logger.warning(f"{operation} rejected: another operation is in flight")
            raise AuthFlowError(ErrorKind.INVALID_TRANSITION)
        self._busy = True
        try:
            yield
        finally:
            self._busy = False

    def _on_snapshot(self, account: Optional[Account]) -> None:
        """
        Merge a pushed account snapshot

        Only the signed-in states (and ANONYMOUS, for restored sessions)
        follow the snapshot; credential forms, password reset and the
        verification callback flow keep their state.
        """
        self._account = account
        self._ready = True
        state = self._state

        if state.kind in _SIGNED_IN and account is None:
            logger.info("Account signed out by provider")
            if not self._signing_out:
                self._schedule_conversation_release()
            self._set_state(Anonymous())
        elif state.kind == AuthStateKind.AWAITING_VERIFICATION:
            if account.email_verified:
                logger.info(f"Account {account.uid} verified, entering conversation")
                self._set_state(Authenticated(account=account))
            else:
                self._set_state(AwaitingVerification(
                    account=account,
                    cooldown_seconds=state.cooldown_seconds
                ))
        elif state.kind == AuthStateKind.AUTHENTICATED:
            self._set_state(state_for_account(account))
        elif state.kind == AuthStateKind.ANONYMOUS and account is not None:
            self._set_state(state_for_account(account))

    def _schedule_conversation_release(self) -> None:
        if self.conversation is None or not self.conversation.is_initialized:
            return
        task = asyncio.get_running_loop().create_task(self.conversation.release())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _release_conversation(self) -> None:
        if self.conversation is not None:
            await self.conversation.release()

    # ===== Cooldown timer =====

    def _start_cooldown_timer(self) -> None:
        self._cancel_cooldown_timer()
        self._cooldown_task = asyncio.create_task(self._cooldown_loop())

    def _cancel_cooldown_timer(self) -> None:
        task = self._cooldown_task
        self._cooldown_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            logger.debug("Resend cooldown timer cancelled")

    async def _stop_cooldown_timer(self) -> None:
        task = self._cooldown_task
        self._cancel_cooldown_timer()
        if task:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _cooldown_loop(self) -> None:
        """Decrement the cooldown once per tick until it reaches zero"""
        try:
            while True:
                await asyncio.sleep(self.tick_interval)
                state = self._state
                if not isinstance(state, AwaitingVerification):
                    break

                remaining = max(state.cooldown_seconds - 1, 0)
                self._set_state(AwaitingVerification(
                    account=state.account,
                    cooldown_seconds=remaining
                ))
                if remaining == 0:
                    logger.debug("Resend cooldown finished")
                    break
        except asyncio.CancelledError:
            pass
        finally:
            if self._cooldown_task is asyncio.current_task():
                self._cooldown_task = None

    # ===== Credential forms =====

    def show_credentials(self, mode: CredentialsMode = CredentialsMode.LOGIN) -> AuthState:
        """Show the login or sign-up form"""
        self._require(_CREDENTIAL_ENTRY, "show_credentials")
        self._set_state(AwaitingCredentials(mode=CredentialsMode(mode)))
        return self._state

    def begin_password_reset(self) -> AuthState:
        """Show the password reset form"""
        self._require(_CREDENTIAL_ENTRY, "begin_password_reset")
        self._set_state(ResettingPassword(stage=ResetStage.AWAITING_INPUT))
        return self._state

    def return_to_login(self) -> AuthState:
        """Leave a form or a verification result and go back to sign-in"""
        self._require(_RETURNABLE, "return_to_login")
        self._set_state(Anonymous())
        return self._state

    # ===== Provider operations =====

    async def start_sign_in(self, email: str, password: str) -> AuthState:
        """
        Sign in with email and password

        Returns:
            AUTHENTICATED for a verified account, else AWAITING_VERIFICATION

        Raises:
            AuthFlowError: Validation, rejected credentials, rate limit, network
        """
        self._require(_CREDENTIAL_ENTRY, "start_sign_in")
        email = (email or "").strip()
        if not email or not password:
            raise AuthFlowError(ErrorKind.VALIDATION, MISSING_FIELDS_MESSAGE)

        async with self._in_flight("start_sign_in"):
            try:
                account = await self.identity.sign_in(email, password)
            except IdentityError as e:
                logger.error(f"Sign-in failed: {e.code.value}")
                raise classify_identity_error(e, not_found_as_rejected=True) from e

        self._account = account
        self._set_state(state_for_account(account))
        return self._state

    async def start_sign_up(self, email: str, password: str, repeat_password: str) -> AuthState:
        """
        Create an account and request its verification email

        The password check happens before any provider call. A failed
        verification email does not fail the sign-up: the account exists and
        the user can ask for a resend from AWAITING_VERIFICATION.

        Raises:
            AuthFlowError: Validation, email already in use, weak password, network
        """
        self._require(_CREDENTIAL_ENTRY, "start_sign_up")
        email = (email or "").strip()
        if not email or not password:
            raise AuthFlowError(ErrorKind.VALIDATION, MISSING_FIELDS_MESSAGE)
        if password != repeat_password:
            raise AuthFlowError(ErrorKind.VALIDATION, PASSWORD_MISMATCH_MESSAGE)

        async with self._in_flight("start_sign_up"):
            try:
                account = await self.identity.sign_up(email, password)
            except IdentityError as e:
                logger.error(f"Sign-up failed: {e.code.value}")
                raise classify_identity_error(e) from e

            try:
                await self.identity.send_verification_email(account)
            except IdentityError as e:
                logger.warning(f"Verification email for new account {account.uid} not sent: {e.code.value}")

        self._account = account
        self._set_state(AwaitingVerification(account=account, cooldown_seconds=0))
        return self._state

    async def resend_verification(self) -> AuthState:
        """
        Resend the verification email

        No-op while the cooldown is running. The cooldown is claimed before
        the provider call, so repeated calls send at most one email.

        Raises:
            AuthFlowError: Not awaiting verification, rate limit, network
        """
        state = self._state
        if not isinstance(state, AwaitingVerification):
            logger.warning(f"resend_verification rejected in state {state.kind.value}")
            raise AuthFlowError(ErrorKind.INVALID_TRANSITION)
        if state.cooldown_seconds > 0:
            logger.debug(f"Resend ignored, cooldown {state.cooldown_seconds}s")
            return state

        async with self._in_flight("resend_verification"):
            self._set_state(AwaitingVerification(
                account=state.account,
                cooldown_seconds=self.cooldown_seconds
            ))
            try:
                await self.identity.send_verification_email(state.account)
            except IdentityError as e:
                logger.error(f"Verification resend failed: {e.code.value}")
                current = self._state
                if isinstance(current, AwaitingVerification):
                    self._set_state(AwaitingVerification(account=current.account, cooldown_seconds=0))
                raise classify_identity_error(e) from e

        if isinstance(self._state, AwaitingVerification):
            logger.info(f"Verification email resent, cooldown {self.cooldown_seconds}s")
            self._start_cooldown_timer()
        return self._state

    async def refresh_account(self) -> AuthState:
        """
        Ask the provider for a fresh account snapshot

        The pushed snapshot is merged like any other, so a verification done
        elsewhere lands here as AUTHENTICATED.
        """
        try:
            account = await self.identity.reload_account()
        except IdentityError as e:
            logger.error(f"Account refresh failed: {e.code.value}")
            raise classify_identity_error(e) from e

        logger.debug(f"Account refreshed (signed_in={account is not None})")
        return self._state

    async def request_password_reset(self, email: str) -> AuthState:
        """
        Send a password reset email

        Raises:
            AuthFlowError: Validation, not found, rate limit, network
        """
        state = self._state
        if not (isinstance(state, ResettingPassword) and state.stage == ResetStage.AWAITING_INPUT):
            logger.warning(f"request_password_reset rejected in state {state.kind.value}")
            raise AuthFlowError(ErrorKind.INVALID_TRANSITION)

        email = (email or "").strip()
        if not email:
            raise AuthFlowError(ErrorKind.VALIDATION, MISSING_FIELDS_MESSAGE)

        async with self._in_flight("request_password_reset"):
            try:
                await self.identity.send_password_reset(email)
            except IdentityError as e:
                logger.error(f"Password reset request failed: {e.code.value}")
                raise classify_identity_error(e) from e

        self._set_state(ResettingPassword(
            stage=ResetStage.REQUEST_SENT,
            confirmation=PASSWORD_RESET_CONFIRMATION
        ))
        return self._state

    async def complete_email_verification(self, code: str) -> AuthState:
        """
        Apply the code from a verification callback URL

        One-shot: once VERIFYING_CALLBACK is entered, further calls return
        the current state until return_to_login(). Provider failures become
        VERIFICATION_FAILED instead of being raised.

        Raises:
            AuthFlowError: Already authenticated, or empty code
        """
        if self._state.kind in _CALLBACK_IN_PROGRESS:
            return self._state
        if self._state.kind == AuthStateKind.AUTHENTICATED:
            logger.warning("complete_email_verification rejected: already authenticated")
            raise AuthFlowError(ErrorKind.INVALID_TRANSITION)

        code = (code or "").strip()
        if not code:
            raise AuthFlowError(ErrorKind.VALIDATION)

        async with self._in_flight("complete_email_verification"):
            self._set_state(VerifyingCallback(code=code))
            try:
                await self.identity.apply_verification_code(code)
            except IdentityError as e:
                error = classify_identity_error(e)
                logger.error(f"Email verification failed: {e.code.value}")
                self._set_state(VerificationFailed(error_kind=error.kind.value, message=error.message))
                return self._state

        self._set_state(VerificationSucceeded())
        return self._state

    async def sign_out(self) -> AuthState:
        """
        Sign out, release the conversation and return to ANONYMOUS

        The release and the transition happen even if the provider fails.
        """
        self._require(_SIGNED_IN, "sign_out")

        self._signing_out = True
        try:
            await self.identity.sign_out()
        except IdentityError as e:
            logger.warning(f"Provider sign-out failed: {e.code.value}")
        finally:
            self._signing_out = False
            await self._release_conversation()
            self._account = None
            self._set_state(Anonymous())

        return self._state


__all__ = [
    "PASSWORD_RESET_CONFIRMATION",
    "StateListener",
    "AuthStateMachine",
    "state_for_account",
]
