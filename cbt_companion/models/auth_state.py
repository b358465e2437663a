"""
Authentication state variants

Exactly one state is active at a time. The machine starts as ANONYMOUS and
moves only through the transitions of AuthStateMachine:

    ANONYMOUS ⇄ AWAITING_CREDENTIALS → AWAITING_VERIFICATION → AUTHENTICATED
    ANONYMOUS / AWAITING_CREDENTIALS → RESETTING_PASSWORD → ANONYMOUS
    (any but AUTHENTICATED) → VERIFYING_CALLBACK → VERIFICATION_SUCCEEDED / VERIFICATION_FAILED → ANONYMOUS
    AUTHENTICATED → ANONYMOUS (sign-out)
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Union

from .account import Account


class AuthStateKind(str, Enum):
    """Tag of the active state variant"""
    ANONYMOUS = "anonymous"
    AWAITING_CREDENTIALS = "awaiting_credentials"
    AWAITING_VERIFICATION = "awaiting_verification"
    RESETTING_PASSWORD = "resetting_password"
    AUTHENTICATED = "authenticated"
    VERIFYING_CALLBACK = "verifying_callback"
    VERIFICATION_SUCCEEDED = "verification_succeeded"
    VERIFICATION_FAILED = "verification_failed"


class CredentialsMode(str, Enum):
    """Which credentials form is shown"""
    LOGIN = "login"
    SIGNUP = "signup"


class ResetStage(str, Enum):
    """Password reset progress"""
    AWAITING_INPUT = "awaiting_input"
    REQUEST_SENT = "request_sent"


@dataclass(frozen=True)
class Anonymous:
    kind: AuthStateKind = field(default=AuthStateKind.ANONYMOUS, init=False)

    def to_dict(self) -> dict:
        return {"kind": self.kind.value}


@dataclass(frozen=True)
class AwaitingCredentials:
    mode: CredentialsMode = CredentialsMode.LOGIN
    kind: AuthStateKind = field(default=AuthStateKind.AWAITING_CREDENTIALS, init=False)

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "mode": self.mode.value}


@dataclass(frozen=True)
class AwaitingVerification:
    account: Account
    cooldown_seconds: int = 0
    kind: AuthStateKind = field(default=AuthStateKind.AWAITING_VERIFICATION, init=False)

    @property
    def can_resend(self) -> bool:
        return self.cooldown_seconds == 0

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "account": self.account.to_dict(),
            "cooldown_seconds": self.cooldown_seconds,
            "can_resend": self.can_resend,
        }


@dataclass(frozen=True)
class ResettingPassword:
    stage: ResetStage = ResetStage.AWAITING_INPUT
    confirmation: Optional[str] = None
    kind: AuthStateKind = field(default=AuthStateKind.RESETTING_PASSWORD, init=False)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "stage": self.stage.value,
            "confirmation": self.confirmation,
        }


@dataclass(frozen=True)
class Authenticated:
    account: Account
    kind: AuthStateKind = field(default=AuthStateKind.AUTHENTICATED, init=False)

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "account": self.account.to_dict()}


@dataclass(frozen=True)
class VerifyingCallback:
    # Never serialized
    code: str = field(repr=False)
    kind: AuthStateKind = field(default=AuthStateKind.VERIFYING_CALLBACK, init=False)

    def to_dict(self) -> dict:
        return {"kind": self.kind.value}


@dataclass(frozen=True)
class VerificationSucceeded:
    kind: AuthStateKind = field(default=AuthStateKind.VERIFICATION_SUCCEEDED, init=False)

    def to_dict(self) -> dict:
        return {"kind": self.kind.value}


@dataclass(frozen=True)
class VerificationFailed:
    error_kind: str
    message: str
    kind: AuthStateKind = field(default=AuthStateKind.VERIFICATION_FAILED, init=False)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "error": self.error_kind,
            "message": self.message,
        }


AuthState = Union[
    Anonymous,
    AwaitingCredentials,
    AwaitingVerification,
    ResettingPassword,
    Authenticated,
    VerifyingCallback,
    VerificationSucceeded,
    VerificationFailed,
]


__all__ = [
    "AuthStateKind",
    "CredentialsMode",
    "ResetStage",
    "Anonymous",
    "AwaitingCredentials",
    "AwaitingVerification",
    "ResettingPassword",
    "Authenticated",
    "VerifyingCallback",
    "VerificationSucceeded",
    "VerificationFailed",
    "AuthState",
]
