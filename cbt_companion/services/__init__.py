"""
Services: identity and model collaborators, auth state machine,
conversation controller and session gate
"""

from .identity_client import IdentityClient, FirebaseIdentityClient
from .model_backend import ModelBackend, ModelSessionHandle, ClaudeModelBackend
from .conversation_controller import ConversationController
from .auth_state_machine import AuthStateMachine
from .session_gate import SessionGate, GateView, CallbackStatus, select_view, parse_entry

__all__ = [
    "IdentityClient",
    "FirebaseIdentityClient",
    "ModelBackend",
    "ModelSessionHandle",
    "ClaudeModelBackend",
    "ConversationController",
    "AuthStateMachine",
    "SessionGate",
    "GateView",
    "CallbackStatus",
    "select_view",
    "parse_entry",
]
