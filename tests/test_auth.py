"""
Tests for sign-in, session resolution and sign-out.
"""

import jwt
import pytest

from data.hr_directory import MOCK_PROFILES
from hr_portal.auth import IdentityProvider, hash_password, verify_password
from hr_portal.errors import AuthenticationError, Unauthorized
from hr_portal.models import Role

SECRET = "unit-test-secret"


def _provider(**overrides):
    options = {"secret_key": SECRET, "bcrypt_rounds": 4}
    options.update(overrides)
    return IdentityProvider(MOCK_PROFILES, **options)


@pytest.fixture
def provider():
    return _provider()


class TestPasswords:
    """bcrypt hashing helpers."""

    def test_round_trip(self):
        hashed = hash_password("employee-password", rounds=4)

        assert verify_password("employee-password", hashed)
        assert not verify_password("employee-passw0rd", hashed)

    def test_long_passwords_are_not_truncated(self):
        """Passwords differing after byte 72 must not collide."""
        base = "x" * 80
        hashed = hash_password(base + "a", rounds=4)

        assert verify_password(base + "a", hashed)
        assert not verify_password(base + "b", hashed)

    def test_empty_password_never_verifies(self):
        assert not verify_password("", hash_password("secret", rounds=4))


class TestSignIn:
    """Credential checks and session issue."""

    def test_employee_sign_in(self, provider):
        session = provider.sign_in("john.doe@company.com", "employee-password")

        assert session.token_type == "bearer"
        assert session.context.user_id == "EMP-001"
        assert session.context.role is Role.EMPLOYEE
        assert session.context.name == "John Doe"
        assert not session.context.is_reviewer

        claims = jwt.decode(session.access_token, SECRET, algorithms=["HS256"])
        assert claims["sub"] == "EMP-001"
        assert claims["role"] == "employee"
        assert claims["sid"] == session.context.session_id

    def test_admin_is_reviewer(self, provider):
        session = provider.sign_in("admin@company.com", "admin-password")
        assert session.context.is_reviewer

    def test_email_is_case_insensitive(self, provider):
        session = provider.sign_in("  John.Doe@Company.com ", "employee-password")
        assert session.context.user_id == "EMP-001"

    @pytest.mark.parametrize("email, password", [
        ("john.doe@company.com", "wrong-password"),
        ("nobody@company.com", "employee-password"),
        ("", ""),
        (None, None),
    ])
    def test_bad_credentials(self, provider, email, password):
        with pytest.raises(AuthenticationError):
            provider.sign_in(email, password)

    def test_authentication_error_is_unauthorized(self):
        assert issubclass(AuthenticationError, Unauthorized)

    def test_password_not_kept_in_profile(self, provider):
        assert all("password" not in p for p in provider._profiles.values())

    def test_empty_secret_refused(self):
        with pytest.raises(ValueError):
            _provider(secret_key="")


class TestResolve:
    """Bearer token to AuthContext."""

    def test_resolve_round_trip(self, provider):
        session = provider.sign_in("jane.smith@company.com", "employee-password")

        context = provider.resolve(session.access_token)

        assert context == session.context
        assert context.identity() == {"id": "EMP-002", "role": "employee"}

    @pytest.mark.parametrize("token", [None, "", "not-a-jwt"])
    def test_missing_or_garbage_token(self, provider, token):
        with pytest.raises(AuthenticationError):
            provider.resolve(token)

    def test_token_signed_with_other_key(self, provider):
        session = _provider(secret_key="someone-else").sign_in(
            "john.doe@company.com", "employee-password"
        )

        with pytest.raises(AuthenticationError):
            provider.resolve(session.access_token)

    def test_expired_token(self):
        provider = _provider(token_ttl_minutes=-1)
        session = provider.sign_in("john.doe@company.com", "employee-password")

        with pytest.raises(AuthenticationError, match="expired"):
            provider.resolve(session.access_token)

    def test_idle_session_dropped(self):
        provider = _provider(session_ttl_seconds=60)
        session = provider.sign_in("john.doe@company.com", "employee-password")
        provider._sessions[session.context.session_id]["ts"] -= 120

        with pytest.raises(AuthenticationError):
            provider.resolve(session.access_token)
        assert provider.active_session_count() == 0

    def test_oldest_session_evicted_past_limit(self):
        provider = _provider(max_sessions=2)
        first = provider.sign_in("john.doe@company.com", "employee-password")
        provider.sign_in("jane.smith@company.com", "employee-password")
        provider.sign_in("admin@company.com", "admin-password")

        assert provider.active_session_count() == 2
        with pytest.raises(AuthenticationError):
            provider.resolve(first.access_token)

    def test_recent_use_protects_from_eviction(self):
        provider = _provider(max_sessions=2)
        first = provider.sign_in("john.doe@company.com", "employee-password")
        second = provider.sign_in("jane.smith@company.com", "employee-password")
        provider.resolve(first.access_token)

        provider.sign_in("admin@company.com", "admin-password")

        assert provider.resolve(first.access_token).user_id == "EMP-001"
        with pytest.raises(AuthenticationError):
            provider.resolve(second.access_token)


class TestSignOut:
    """Sign-out revokes the session."""

    def test_token_stops_resolving(self, provider):
        session = provider.sign_in("john.doe@company.com", "employee-password")

        provider.sign_out(session.context)

        with pytest.raises(AuthenticationError):
            provider.resolve(session.access_token)

    def test_sign_out_is_idempotent(self, provider):
        session = provider.sign_in("john.doe@company.com", "employee-password")

        provider.sign_out(session.context)
        provider.sign_out(session.context)

        assert provider.active_session_count() == 0

    def test_other_sessions_survive(self, provider):
        mine = provider.sign_in("john.doe@company.com", "employee-password")
        laptop = provider.sign_in("john.doe@company.com", "employee-password")

        provider.sign_out(mine.context)

        assert provider.resolve(laptop.access_token).user_id == "EMP-001"
