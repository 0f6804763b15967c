"""Unit tests for access-token encryption and credential resolution"""

import pytest
from cryptography.fernet import Fernet
from moony_analytics.domain.exceptions import (
    CredentialNotFoundError,
    InvalidCredentialError,
    UserNotFoundError,
)
from moony_analytics.infrastructure.security.credentials import CredentialCipher, CredentialResolver


def test_encrypt_decrypt():
    cipher = CredentialCipher(CredentialCipher.generate_key())

    encrypted = cipher.encrypt("access-sandbox-123")

    assert encrypted != "access-sandbox-123"
    assert cipher.decrypt(encrypted) == "access-sandbox-123"


def test_decrypt_with_other_key_fails():
    encrypted = CredentialCipher(Fernet.generate_key()).encrypt("access-sandbox-123")

    with pytest.raises(InvalidCredentialError):
        CredentialCipher(Fernet.generate_key()).decrypt(encrypted)


@pytest.mark.parametrize("key", ["", "not-a-fernet-key"])
def test_missing_or_malformed_key_is_rejected(key):
    with pytest.raises(InvalidCredentialError):
        CredentialCipher(key)


def test_resolve_returns_decrypted_token(session_factory, cipher, make_user):
    make_user("user-1", access_token="access-sandbox-abc")

    assert CredentialResolver(session_factory, cipher).resolve("user-1") == "access-sandbox-abc"


def test_resolve_unknown_user(session_factory, cipher):
    with pytest.raises(UserNotFoundError, match="User not found: ghost"):
        CredentialResolver(session_factory, cipher).resolve("ghost")


def test_resolve_user_without_token(session_factory, cipher, make_user):
    make_user("user-1", access_token=None)

    with pytest.raises(CredentialNotFoundError):
        CredentialResolver(session_factory, cipher).resolve("user-1")


def test_resolve_token_encrypted_with_rotated_key(session_factory, make_user):
    make_user("user-1")

    with pytest.raises(InvalidCredentialError, match="decryption failed"):
        CredentialResolver(session_factory, CredentialCipher(Fernet.generate_key())).resolve("user-1")


def test_find_user_by_connection(session_factory, cipher, make_user):
    make_user("user-1", item_id="item-abc")
    resolver = CredentialResolver(session_factory, cipher)

    assert resolver.find_user_by_connection("item-abc") == "user-1"
    assert resolver.find_user_by_connection("item-missing") is None
