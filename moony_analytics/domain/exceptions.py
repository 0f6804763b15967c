"""Domain-specific exceptions"""

from typing import Optional


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class PermanentError(DomainException):
    """Retrying cannot succeed without outside intervention"""

    pass


class UserNotFoundError(PermanentError):
    """No user exists for the given identifier"""

    def __init__(self, user_id: str):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class CredentialNotFoundError(PermanentError):
    """User has no stored provider access credential"""

    def __init__(self, user_id: str):
        super().__init__(f"No access credential for user {user_id}")
        self.user_id = user_id


class InvalidCredentialError(PermanentError):
    """Stored credential could not be decrypted or was rejected by the provider"""

    pass


class ProviderAPIError(DomainException):
    """Provider API returned an error or is unavailable"""

    def __init__(
        self,
        message: str,
        permanent: bool = False,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.permanent = permanent
        self.error_code = error_code
        self.status_code = status_code


class WebhookVerificationError(DomainException):
    """Inbound webhook failed signature, freshness or integrity checks"""

    def __init__(self, reason: str, detail: str = ""):
        super().__init__(f"{reason}: {detail}" if detail else reason)
        self.reason = reason


class InvalidWebhookPayloadError(DomainException):
    """Webhook body is missing required fields or is not valid JSON"""

    pass
