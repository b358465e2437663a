"""
Models module for data structures
"""

from .account import Account
from .auth_state import (
    AuthStateKind,
    CredentialsMode,
    ResetStage,
    Anonymous,
    AwaitingCredentials,
    AwaitingVerification,
    ResettingPassword,
    Authenticated,
    VerifyingCallback,
    VerificationSucceeded,
    VerificationFailed,
    AuthState,
)
from .conversation import (
    SUMMARY_MARKER,
    MessageRole,
    Message,
    ConversationSession,
    ExportArtifact,
)
from .errors import (
    IdentityErrorCode,
    ModelErrorCode,
    ErrorKind,
    IdentityError,
    ModelBackendError,
    AuthFlowError,
    classify_identity_error,
)

__all__ = [
    'Account',
    'AuthStateKind',
    'CredentialsMode',
    'ResetStage',
    'Anonymous',
    'AwaitingCredentials',
    'AwaitingVerification',
    'ResettingPassword',
    'Authenticated',
    'VerifyingCallback',
    'VerificationSucceeded',
    'VerificationFailed',
    'AuthState',
    'SUMMARY_MARKER',
    'MessageRole',
    'Message',
    'ConversationSession',
    'ExportArtifact',
    'IdentityErrorCode',
    'ModelErrorCode',
    'ErrorKind',
    'IdentityError',
    'ModelBackendError',
    'AuthFlowError',
    'classify_identity_error',
]
