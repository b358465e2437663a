"""
Error taxonomy

Collaborator failures arrive as closed enumerations (IdentityErrorCode,
ModelErrorCode) and are translated once, at the operation boundary, into an
ErrorKind plus a localized user-facing message.
"""

from enum import Enum
from typing import Dict, Optional


class IdentityErrorCode(str, Enum):
    """Failures reported by the identity provider"""
    EMAIL_IN_USE = "email_in_use"
    WEAK_PASSWORD = "weak_password"
    INVALID_CREDENTIAL = "invalid_credential"
    USER_NOT_FOUND = "user_not_found"
    TOO_MANY_REQUESTS = "too_many_requests"
    INVALID_OR_EXPIRED_CODE = "invalid_or_expired_code"
    NETWORK = "network"
    UNKNOWN = "unknown"


class ModelErrorCode(str, Enum):
    """Failures reported by the model backend"""
    NETWORK = "network"
    UNKNOWN = "unknown"


class ErrorKind(str, Enum):
    """User-facing error classification"""
    VALIDATION = "validation"
    CREDENTIAL_REJECTED = "credential_rejected"
    ALREADY_EXISTS = "already_exists"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    CODE_INVALID_OR_EXPIRED = "code_invalid_or_expired"
    INVALID_TRANSITION = "invalid_transition"
    NETWORK = "network"
    UNKNOWN = "unknown"


class IdentityError(Exception):
    """Identity provider failure"""

    def __init__(self, code: IdentityErrorCode, detail: Optional[str] = None):
        self.code = code
        self.detail = detail
        super().__init__(f"Identity error {code.value}: {detail or ''}".rstrip(": "))


class ModelBackendError(Exception):
    """Model backend failure"""

    def __init__(self, code: ModelErrorCode, detail: Optional[str] = None):
        self.code = code
        self.detail = detail
        super().__init__(f"Model backend error {code.value}: {detail or ''}".rstrip(": "))


# Localized (Arabic) messages per error kind
ERROR_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "البيانات المدخلة غير صالحة.",
    ErrorKind.CREDENTIAL_REJECTED: "البريد الإلكتروني أو كلمة المرور غير صحيحة.",
    ErrorKind.ALREADY_EXISTS: "هذا البريد الإلكتروني مستخدم بالفعل.",
    ErrorKind.NOT_FOUND: "لا يوجد حساب مرتبط بهذا البريد الإلكتروني.",
    ErrorKind.RATE_LIMITED: "تم إرسال طلبات كثيرة. يرجى الانتظار قليلاً ثم المحاولة مرة أخرى.",
    ErrorKind.CODE_INVALID_OR_EXPIRED: "رابط التحقق غير صالح أو منتهي الصلاحية.",
    ErrorKind.INVALID_TRANSITION: "لا يمكن تنفيذ هذا الإجراء الآن.",
    ErrorKind.NETWORK: "تعذر الاتصال بالخادم. يرجى التحقق من اتصالك بالإنترنت.",
    ErrorKind.UNKNOWN: "فشل في المصادقة. يرجى المحاولة مرة أخرى.",
}

PASSWORD_MISMATCH_MESSAGE = "كلمتا المرور غير متطابقتين."
MISSING_FIELDS_MESSAGE = "يرجى إدخال البريد الإلكتروني وكلمة المرور."
WEAK_PASSWORD_MESSAGE = "كلمة المرور ضعيفة. يجب أن تتكون من 6 أحرف على الأقل."

_IDENTITY_ERROR_KINDS: Dict[IdentityErrorCode, ErrorKind] = {
    IdentityErrorCode.EMAIL_IN_USE: ErrorKind.ALREADY_EXISTS,
    IdentityErrorCode.WEAK_PASSWORD: ErrorKind.VALIDATION,
    IdentityErrorCode.INVALID_CREDENTIAL: ErrorKind.CREDENTIAL_REJECTED,
    IdentityErrorCode.USER_NOT_FOUND: ErrorKind.NOT_FOUND,
    IdentityErrorCode.TOO_MANY_REQUESTS: ErrorKind.RATE_LIMITED,
    IdentityErrorCode.INVALID_OR_EXPIRED_CODE: ErrorKind.CODE_INVALID_OR_EXPIRED,
    IdentityErrorCode.NETWORK: ErrorKind.NETWORK,
    IdentityErrorCode.UNKNOWN: ErrorKind.UNKNOWN,
}


class AuthFlowError(Exception):
    """
    Classified failure of an AuthStateMachine operation

    Attributes:
        kind: ErrorKind of the failure
        message: Localized message safe to show to the user
    """

    def __init__(self, kind: ErrorKind, message: Optional[str] = None):
        self.kind = kind
        self.message = message or ERROR_MESSAGES[kind]
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.kind.value, "detail": self.message}


def classify_identity_error(
    error: IdentityError,
    not_found_as_rejected: bool = False
) -> AuthFlowError:
    """
    Map an identity provider failure to exactly one ErrorKind

    Args:
        error: Failure raised by the identity client
        not_found_as_rejected: Report an unknown user as rejected credentials
            (sign-in must not reveal which accounts exist)

    Returns:
        AuthFlowError with a localized message
    """
    kind = _IDENTITY_ERROR_KINDS.get(error.code, ErrorKind.UNKNOWN)
    if not_found_as_rejected and kind == ErrorKind.NOT_FOUND:
        kind = ErrorKind.CREDENTIAL_REJECTED

    if error.code == IdentityErrorCode.WEAK_PASSWORD:
        return AuthFlowError(kind, WEAK_PASSWORD_MESSAGE)
    return AuthFlowError(kind)


__all__ = [
    "IdentityErrorCode",
    "ModelErrorCode",
    "ErrorKind",
    "IdentityError",
    "ModelBackendError",
    "AuthFlowError",
    "ERROR_MESSAGES",
    "PASSWORD_MISMATCH_MESSAGE",
    "MISSING_FIELDS_MESSAGE",
    "WEAK_PASSWORD_MESSAGE",
    "classify_identity_error",
]
