"""
Account snapshot issued by the identity provider
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Account:
    """
    Read-only snapshot of the signed-in account

    Attributes:
        uid: Provider-issued unique user id
        email: Account email address
        email_verified: Whether the provider considers the email verified
    """
    uid: str
    email: str
    email_verified: bool = False

    def to_dict(self) -> dict:
        return {
            "uid": self.uid,
            "email": self.email,
            "email_verified": self.email_verified,
        }
