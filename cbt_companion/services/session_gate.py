"""
Session Gate - decides which flow the user sees

select_view() is a pure function of (auth state, entry URL parameters):
re-evaluating it with the same inputs always gives the same decision.
SessionGate.enter() adds the two one-shot effects on top of it: applying the
verification callback code, and opening the conversation on first entry.

Entry URL:
    /?mode=verifyEmail&oobCode=<code>   → verification callback flow
    /                                   → auth flow or conversation
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from ..models.auth_state import (
    AuthState,
    AuthStateKind,
    CredentialsMode,
    ResetStage,
)
from ..models.errors import AuthFlowError
from .auth_state_machine import AuthStateMachine
from .conversation_controller import ConversationController

logger = logging.getLogger(__name__)

CALLBACK_MODE_PARAM = "mode"
CALLBACK_MODE_VALUE = "verifyEmail"
CALLBACK_CODE_PARAM = "oobCode"


class GateView(str, Enum):
    """View selected by the gate"""
    LOADING = "loading"
    SIGN_IN = "sign_in"
    SIGN_UP = "sign_up"
    VERIFY_EMAIL = "verify_email"
    PASSWORD_RESET = "password_reset"
    PASSWORD_RESET_SENT = "password_reset_sent"
    VERIFICATION_CALLBACK = "verification_callback"
    CALLBACK_MISSING_CODE = "callback_missing_code"
    CONVERSATION = "conversation"


class CallbackStatus(str, Enum):
    """Progress of the verification callback flow"""
    PENDING = "pending"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ALREADY_VERIFIED = "already_verified"


@dataclass(frozen=True)
class EntryRoute:
    """How the app was entered"""
    callback: bool = False
    code: Optional[str] = None


@dataclass(frozen=True)
class GateDecision:
    view: GateView
    callback_status: Optional[CallbackStatus] = None

    def to_dict(self) -> dict:
        return {
            "view": self.view.value,
            "callback_status": self.callback_status.value if self.callback_status else None,
        }


def parse_entry(query_params: Optional[Mapping[str, str]]) -> EntryRoute:
    """Read the verification callback parameters from the entry URL"""
    params = query_params or {}
    if params.get(CALLBACK_MODE_PARAM) != CALLBACK_MODE_VALUE:
        return EntryRoute()

    code = (params.get(CALLBACK_CODE_PARAM) or "").strip()
    return EntryRoute(callback=True, code=code or None)


_CALLBACK_STATUS = {
    AuthStateKind.VERIFYING_CALLBACK: CallbackStatus.VERIFYING,
    AuthStateKind.VERIFICATION_SUCCEEDED: CallbackStatus.SUCCEEDED,
    AuthStateKind.VERIFICATION_FAILED: CallbackStatus.FAILED,
    AuthStateKind.AUTHENTICATED: CallbackStatus.ALREADY_VERIFIED,
}


def select_view(state: AuthState, entry: EntryRoute, ready: bool = True) -> GateDecision:
    """
    Pick the view for the current auth state and entry route

    Args:
        state: Current AuthState
        entry: Parsed entry URL
        ready: Whether the first account snapshot has arrived

    Returns:
        GateDecision
    """
    # The callback flow never falls through to sign-in or the conversation
    if entry.callback:
        if not entry.code:
            return GateDecision(GateView.CALLBACK_MISSING_CODE)
        status = _CALLBACK_STATUS.get(state.kind, CallbackStatus.PENDING)
        return GateDecision(GateView.VERIFICATION_CALLBACK, status)

    if not ready:
        return GateDecision(GateView.LOADING)

    kind = state.kind
    if kind == AuthStateKind.AUTHENTICATED:
        return GateDecision(GateView.CONVERSATION)
    if kind == AuthStateKind.AWAITING_CREDENTIALS and state.mode == CredentialsMode.SIGNUP:
        return GateDecision(GateView.SIGN_UP)
    if kind == AuthStateKind.AWAITING_VERIFICATION:
        return GateDecision(GateView.VERIFY_EMAIL)
    if kind == AuthStateKind.RESETTING_PASSWORD:
        if state.stage == ResetStage.REQUEST_SENT:
            return GateDecision(GateView.PASSWORD_RESET_SENT)
        return GateDecision(GateView.PASSWORD_RESET)
    if kind in _CALLBACK_STATUS:
        # Callback result still showing after the URL lost its parameters
        return GateDecision(GateView.VERIFICATION_CALLBACK, _CALLBACK_STATUS[kind])
    return GateDecision(GateView.SIGN_IN)


class SessionGate:
    """
    Composition root of the auth flow and the conversation

    Attributes:
        auth: AuthStateMachine
        conversation: ConversationController opened on first entry
    """

    def __init__(self, auth: AuthStateMachine, conversation: ConversationController):
        self.auth = auth
        self.conversation = conversation

    def evaluate(self, query_params: Optional[Mapping[str, str]] = None) -> GateDecision:
        """Current view, without side effects"""
        return select_view(self.auth.state, parse_entry(query_params), self.auth.ready)

    async def enter(self, query_params: Optional[Mapping[str, str]] = None) -> GateDecision:
        """
        Evaluate the view and run its one-shot effects

        - Callback view with PENDING status: apply the code
        - Conversation view: open the conversation if it is not open yet

        Returns:
            Decision after the effects
        """
        entry = parse_entry(query_params)
        decision = select_view(self.auth.state, entry, self.auth.ready)

        if decision.callback_status == CallbackStatus.PENDING:
            try:
                await self.auth.complete_email_verification(entry.code)
            except AuthFlowError as e:
                logger.warning(f"Verification callback not applied: {e.kind.value}")
        elif decision.view == GateView.CONVERSATION and not self.conversation.is_initialized:
            await self.conversation.initialize()

        return select_view(self.auth.state, entry, self.auth.ready)


__all__ = [
    "CALLBACK_MODE_PARAM",
    "CALLBACK_MODE_VALUE",
    "CALLBACK_CODE_PARAM",
    "GateView",
    "CallbackStatus",
    "EntryRoute",
    "GateDecision",
    "parse_entry",
    "select_view",
    "SessionGate",
]
