"""Password credentials and bearer tokens."""
import base64
import json

import jwt
import pytest

import models
from auth import (
    TOKEN_TTL_SECONDS,
    TokenService,
    bearer_token,
    check_password,
    set_password,
)
from errors import (
    AuthenticationError,
    ExpiredTokenError,
    MalformedTokenError,
    SignatureError,
    WeakInputError,
)
from conftest import TEST_SECRET


class FakeClock:
    def __init__(self, now=1_800_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _b64(obj) -> str:
    raw = json.dumps(obj, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


class TestPasswords:

    def test_set_then_check(self):
        user = models.User()
        set_password(user, "hunter2")
        assert user.password_hash and user.password_hash != "hunter2"
        assert check_password(user, "hunter2")
        assert not check_password(user, "hunter2x")

    def test_hash_is_salted(self):
        a, b = models.User(), models.User()
        set_password(a, "same-password")
        set_password(b, "same-password")
        assert a.password_hash != b.password_hash

    def test_empty_password_rejected(self):
        user = models.User()
        with pytest.raises(WeakInputError):
            set_password(user, "")
        assert user.password_hash is None

    def test_missing_or_foreign_hash_never_matches(self):
        user = models.User(password_hash="")
        assert not check_password(user, "")
        user.password_hash = "not-a-bcrypt-hash"
        assert not check_password(user, "not-a-bcrypt-hash")


class TestBearerHeader:

    def test_extracts_token(self):
        assert bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"
        assert bearer_token("bearer   abc") == "abc"

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer ", "Basic abc", "abc.def.ghi"])
    def test_rejects_bad_headers(self, header):
        with pytest.raises(AuthenticationError):
            bearer_token(header)


class TestTokenService:

    def test_issue_then_validate(self):
        clock = FakeClock()
        svc = TokenService(TEST_SECRET, clock=clock)
        token = svc.issue(42)

        claims = svc.decode(token)
        assert claims.account_id == 42
        assert claims.expires_at - claims.issued_at == TOKEN_TTL_SECONDS
        assert svc.validate(token) == 42

    def test_expires_after_72_hours(self):
        clock = FakeClock()
        svc = TokenService(TEST_SECRET, clock=clock)
        token = svc.issue(7)

        clock.now += TOKEN_TTL_SECONDS - 1
        assert svc.validate(token) == 7

        clock.now += 2
        with pytest.raises(ExpiredTokenError):
            svc.validate(token)

    def test_other_secret_is_signature_error(self):
        token = TokenService("another-secret-that-is-long-enough-000").issue(1)
        with pytest.raises(SignatureError):
            TokenService(TEST_SECRET).validate(token)

    def test_other_hmac_algorithm_is_rejected(self):
        clock = FakeClock()
        claims = {"account_id": 1, "iat": int(clock.now), "exp": int(clock.now) + 60}
        token = jwt.encode(claims, TEST_SECRET, algorithm="HS512")
        with pytest.raises(SignatureError):
            TokenService(TEST_SECRET, clock=clock).validate(token)

    def test_alg_none_is_rejected(self):
        clock = FakeClock()
        svc = TokenService(TEST_SECRET, clock=clock)
        _, payload, _ = svc.issue(1).split(".")
        forged = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{payload}."
        with pytest.raises(SignatureError):
            svc.validate(forged)

    def test_tampered_payload_is_signature_error(self):
        clock = FakeClock()
        svc = TokenService(TEST_SECRET, clock=clock)
        header, _, signature = svc.issue(1).split(".")
        payload = _b64({"account_id": 2, "iat": int(clock.now), "exp": int(clock.now) + 60})
        with pytest.raises(SignatureError):
            svc.validate(f"{header}.{payload}.{signature}")

    @pytest.mark.parametrize("token", ["", "garbage", "a.b", "a.b.c.d", "!!!.???.***"])
    def test_unparseable_is_malformed(self, token):
        with pytest.raises(MalformedTokenError):
            TokenService(TEST_SECRET).validate(token)

    @pytest.mark.parametrize("claims", [
        {"user_id": 1, "iat": 0, "exp": 2_000_000_000},
        {"account_id": "1", "iat": 0, "exp": 2_000_000_000},
        {"account_id": True, "iat": 0, "exp": 2_000_000_000},
        {"account_id": 1, "exp": 2_000_000_000},
        {"account_id": 1, "iat": 0, "exp": 2_000_000_000, "role": "admin"},
    ])
    def test_unexpected_claim_shape_is_malformed(self, claims):
        token = jwt.encode(claims, TEST_SECRET, algorithm="HS256")
        with pytest.raises(MalformedTokenError):
            TokenService(TEST_SECRET, clock=FakeClock()).validate(token)

    def test_empty_secret_refused(self):
        with pytest.raises(ValueError):
            TokenService("")
