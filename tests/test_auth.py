from datetime import datetime, timedelta, timezone

import jwt
import pytest

from auth import AuthService
from config import Settings
from errors import AuthError, ValidationError
from security import check_password, hash_password

from conftest import PASSWORD


def profile(**overrides):
    data = {"name": "Test User", "username": "testuser", "email": "test@example.com"}
    data.update(overrides)
    return data


def test_hash_password_is_salted():
    first = hash_password("correctPassword123")
    second = hash_password("correctPassword123")
    assert first != second
    assert check_password("correctPassword123", first)
    assert check_password("correctPassword123", second)
    assert not check_password("wrongPassword123", first)


def test_check_password_rejects_garbage_hash():
    assert not check_password("anything", "not-a-hash")
    assert not check_password("anything", "md5$1$salt$digest")


def test_register_never_returns_password(services, db):
    user = services.auth.register(profile(), PASSWORD)

    assert user["email"] == "test@example.com"
    assert user["role"] == "buyer"
    assert "password" not in user
    assert "password_hash" not in user
    stored = db["user"].find_one({"email": "test@example.com"})
    assert stored["password_hash"] != PASSWORD
    assert PASSWORD not in stored["password_hash"]


@pytest.mark.parametrize("email", [None, "", "invalid-email", "test@.com", "a b@example.com"])
def test_register_rejects_bad_email(services, email):
    with pytest.raises(ValidationError):
        services.auth.register(profile(email=email), PASSWORD)


def test_register_rejects_short_password(services):
    with pytest.raises(ValidationError, match="at least 8"):
        services.auth.register(profile(), "weak")


def test_register_rejects_duplicate_email_and_username(services):
    services.auth.register(profile(), PASSWORD)

    with pytest.raises(ValidationError, match="email already exists"):
        services.auth.register(profile(username="other"), PASSWORD)
    with pytest.raises(ValidationError, match="Username already taken"):
        services.auth.register(profile(email="other@example.com"), PASSWORD)


def test_register_uniqueness_is_case_sensitive(services):
    services.auth.register(profile(), PASSWORD)
    user = services.auth.register(profile(username="TestUser", email="Test@example.com"), PASSWORD)
    assert user["username"] == "TestUser"


def test_register_rejects_admin_role(services):
    with pytest.raises(ValidationError, match="Invalid role"):
        services.auth.register(profile(role="admin"), PASSWORD)


def test_login_returns_verifiable_token(services):
    user = services.auth.register(profile(), PASSWORD)

    result = services.auth.login("test@example.com", PASSWORD)

    assert result["user"]["id"] == user["id"]
    assert services.auth.verify_token(result["token"]) == user["id"]


def test_login_failures_are_indistinguishable(services):
    services.auth.register(profile(), PASSWORD)

    with pytest.raises(AuthError) as wrong_password:
        services.auth.login("test@example.com", "wrongPassword123")
    with pytest.raises(AuthError) as unknown_email:
        services.auth.login("nobody@example.com", PASSWORD)

    assert wrong_password.value.message == unknown_email.value.message == "invalid credentials"


def test_verify_token_rejects_expired_token(services, settings):
    past = datetime.now(timezone.utc) - timedelta(hours=3)
    token = jwt.encode({"sub": "abc", "iat": past, "exp": past + timedelta(hours=2)},
                       settings.jwt_secret, algorithm="HS256")

    with pytest.raises(AuthError, match="invalid or expired token"):
        services.auth.verify_token(token)


def test_verify_token_rejects_other_signing_key(services, db):
    other = AuthService(db, Settings(jwt_secret="another-secret", database_url="mongodb://x"))
    token = other.issue_token("abc")

    with pytest.raises(AuthError):
        services.auth.verify_token(token)


@pytest.mark.parametrize("token", [None, "", "not.a.token", "abc"])
def test_verify_token_rejects_malformed(services, token):
    with pytest.raises(AuthError, match="invalid or expired token"):
        services.auth.verify_token(token)


def test_token_expires_after_configured_ttl(services, settings):
    token = services.auth.issue_token("abc")
    claims = jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    assert claims["exp"] - claims["iat"] == settings.token_ttl_minutes * 60


def test_login_with_mixed_case_email_as_registered(services):
    user = services.auth.register(profile(email="Al@Example.COM"), PASSWORD)

    assert user["email"] == "Al@Example.COM"
    assert services.auth.login("Al@Example.COM", PASSWORD)["user"]["id"] == user["id"]


def test_domain_case_does_not_clash(services):
    services.auth.register(profile(email="al@X.com", username="upper"), PASSWORD)
    other = services.auth.register(profile(email="al@x.com", username="lower"), PASSWORD)

    assert other["email"] == "al@x.com"
