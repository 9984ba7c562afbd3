import logging
import secrets
from typing import Optional, Tuple

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import crud
import models
from auth import TokenService, set_password
from config import Settings
from errors import AccountCreationError, ConstraintError, ExchangeError, PersistenceError, ProfileFetchError

logger = logging.getLogger(__name__)

# ── Google OAuth2 endpoints ──
AUTH_URL = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
SCOPES = ("email", "profile")


def random_password(nbytes: int = 24) -> str:
    """Local credential for federated accounts. Never shown to anyone."""
    return secrets.token_urlsafe(nbytes)


class FederatedLoginBroker:
    """Authorization-code login against Google, mapped onto local accounts by email."""

    def __init__(self, settings: Settings, tokens: TokenService, client: Optional[httpx.Client] = None):
        self.client_id = settings.google_client_id
        self.client_secret = settings.google_client_secret
        self.redirect_url = settings.google_redirect_url
        self.tokens = tokens
        self.http = client or httpx.Client(
            timeout=httpx.Timeout(settings.http_timeout, connect=5.0)
        )

    def begin_login(self, state: str = "state") -> str:
        # TODO: issue a random per-login state in a signed cookie and verify it in
        # /auth/google/callback; the fixed value gives no CSRF protection.
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_url,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "state": state,
        }
        return str(httpx.URL(AUTH_URL, params=params))

    def complete_login(self, db: Session, code: str) -> Tuple[str, models.User]:
        access_token = self._exchange(code)
        email, name = self._fetch_profile(access_token)

        user = self._get_or_create(db, email, name)
        logger.info(f"[OAuth] Login for user {user.id}")
        return self.tokens.issue(user.id), user

    def _exchange(self, code: str) -> str:
        if not code:
            raise ExchangeError("authorization code required")
        try:
            resp = self.http.post(TOKEN_URL, data={
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_url,
            })
            resp.raise_for_status()
            access_token = resp.json().get("access_token")
        except httpx.HTTPStatusError as e:
            raise ExchangeError(f"token exchange rejected ({e.response.status_code})") from e
        except httpx.HTTPError as e:
            raise ExchangeError(f"token exchange failed: {e}") from e
        except (ValueError, AttributeError) as e:
            raise ExchangeError("token endpoint returned malformed data") from e

        if not isinstance(access_token, str) or not access_token:
            raise ExchangeError("token endpoint returned no access token")
        return access_token

    def _fetch_profile(self, access_token: str) -> Tuple[str, str]:
        try:
            resp = self.http.get(USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
            resp.raise_for_status()
            info = resp.json()
        except httpx.HTTPError as e:
            raise ProfileFetchError(f"failed to get user info: {e}") from e
        except ValueError as e:
            raise ProfileFetchError("user info was not valid JSON") from e

        if not isinstance(info, dict):
            raise ProfileFetchError("user info was not an object")
        email = info.get("email")
        name = info.get("name") or ""
        if not isinstance(email, str) or not email or not isinstance(name, str):
            raise ProfileFetchError("user info is missing an email")
        return email, name or email.split("@", 1)[0]

    def _get_or_create(self, db: Session, email: str, name: str) -> models.User:
        try:
            user = crud.get_user_by_email(db, email)
            if user is not None:
                return user

            user = models.User(name=name, email=email)
            set_password(user, random_password())
            try:
                return crud.create_user(db, user)
            except ConstraintError:
                # another callback created the same email first
                existing = crud.get_user_by_email(db, email)
                if existing is None:
                    raise
                return existing
        except (ConstraintError, PersistenceError, SQLAlchemyError) as e:
            raise AccountCreationError(f"could not create account for {email}") from e
