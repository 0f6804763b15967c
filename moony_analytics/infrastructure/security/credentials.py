"""Access-token encryption and credential resolution for Plaid connections"""

import logging
from typing import Callable, Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from moony_analytics.config import settings
from moony_analytics.domain.exceptions import CredentialNotFoundError, InvalidCredentialError, UserNotFoundError
from moony_analytics.infrastructure.database.repositories import UserRepository

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


class CredentialCipher:
    """Symmetric encryption for stored Plaid access tokens"""

    def __init__(self, key: str | bytes | None = None):
        key = key if key is not None else settings.credential_encryption_key
        if not key:
            raise InvalidCredentialError("Invalid access credential: encryption key not configured")
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise InvalidCredentialError("Invalid access credential: malformed encryption key") from e

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except (InvalidToken, ValueError) as e:
            raise InvalidCredentialError("Invalid access credential: decryption failed") from e


class CredentialResolver:
    """Look up and decrypt a user's Plaid access token"""

    def __init__(self, session_factory: SessionFactory, cipher: CredentialCipher | None = None):
        self.session_factory = session_factory
        self._cipher = cipher

    @property
    def cipher(self) -> CredentialCipher:
        # Built lazily so a missing key surfaces as a permanent pipeline error
        if self._cipher is None:
            self._cipher = CredentialCipher()
        return self._cipher

    def resolve(self, user_id: str) -> str:
        """
        Return the decrypted access token for a user.

        Raises:
            UserNotFoundError: No such user
            CredentialNotFoundError: User never connected a bank
            InvalidCredentialError: Stored token cannot be decrypted
        """
        with self.session_factory() as db:
            user = UserRepository(db).get_user(user_id)
            if user is None:
                raise UserNotFoundError(user_id)
            encrypted = user.plaid_access_token

        if not encrypted:
            raise CredentialNotFoundError(user_id)
        return self.cipher.decrypt(encrypted)

    def find_user_by_connection(self, item_id: str) -> Optional[str]:
        """Owning user id for a Plaid item, or None"""
        with self.session_factory() as db:
            return UserRepository(db).find_user_id_by_item_id(item_id)
