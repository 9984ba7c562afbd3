import time
from dataclasses import dataclass
from typing import Callable, Optional

import bcrypt
import jwt

from errors import (
    AuthenticationError,
    ExpiredTokenError,
    MalformedTokenError,
    SignatureError,
    WeakInputError,
)

TOKEN_ALGORITHM = "HS256"
TOKEN_TTL_SECONDS = 72 * 60 * 60


# Password hashing (direct bcrypt — avoids passlib + bcrypt 5.x incompatibility)
def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode('utf-8'), hashed.encode('utf-8'))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def set_password(user, plaintext: str) -> None:
    """Hash `plaintext` onto `user.password_hash`. The caller persists the user."""
    if not plaintext:
        raise WeakInputError("password must not be empty")
    user.password_hash = hash_password(plaintext)


def check_password(user, plaintext: str) -> bool:
    return verify_password(plaintext, user.password_hash or "")


def bearer_token(authorization: Optional[str]) -> str:
    """Extract the token from an `Authorization: Bearer <token>` header value."""
    if not authorization:
        raise AuthenticationError("authorization header missing")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise AuthenticationError("authorization header must be 'Bearer <token>'")
    return token


@dataclass(frozen=True)
class TokenClaims:
    account_id: int
    issued_at: int
    expires_at: int


class TokenService:
    """
    Issues and validates HS256 bearer tokens.

    Tokens are stateless: validation only checks the signature, the claim
    shape and the expiry against `clock`. It does not look the account up.
    """

    CLAIM_KEYS = frozenset({"account_id", "iat", "exp"})

    def __init__(self, secret: str, clock: Callable[[], float] = time.time):
        if not secret:
            raise ValueError("token signing secret must not be empty")
        self._secret = secret
        self._clock = clock

    def issue(self, account_id: int) -> str:
        now = int(self._clock())
        claims = {
            "account_id": account_id,
            "iat": now,
            "exp": now + TOKEN_TTL_SECONDS,
        }
        return jwt.encode(claims, self._secret, algorithm=TOKEN_ALGORITHM)

    def decode(self, token: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[TOKEN_ALGORITHM],
                # expiry is checked below against the injected clock
                options={"verify_exp": False, "verify_iat": False, "verify_nbf": False},
            )
        except jwt.InvalidSignatureError as e:
            raise SignatureError("token signature mismatch") from e
        except jwt.InvalidAlgorithmError as e:
            raise SignatureError("token algorithm not accepted") from e
        except jwt.InvalidTokenError as e:
            raise MalformedTokenError(f"token could not be parsed: {e}") from e

        claims = self._claims_from(payload)
        if self._clock() >= claims.expires_at:
            raise ExpiredTokenError("token has expired")
        return claims

    def validate(self, token: str) -> int:
        return self.decode(token).account_id

    def _claims_from(self, payload) -> TokenClaims:
        if not isinstance(payload, dict) or set(payload) != self.CLAIM_KEYS:
            raise MalformedTokenError("unexpected token claim set")
        values = [payload["account_id"], payload["iat"], payload["exp"]]
        # bool is an int subclass; reject it explicitly
        if any(type(v) is not int for v in values):
            raise MalformedTokenError("token claims must be integers")
        return TokenClaims(*values)
