"""
Error taxonomy shared by the core services.

Repositories return None for a simple miss; these exceptions are for
conditions the caller has to react to. The HTTP layer maps each family
to one status code (see main.register_error_handlers).
"""


class AppError(Exception):
    """Base class for every error raised deliberately by this service."""


# ── Authentication (401) ──

class AuthenticationError(AppError):
    pass


class MalformedTokenError(AuthenticationError):
    pass


class SignatureError(AuthenticationError):
    pass


class ExpiredTokenError(AuthenticationError):
    pass


class InvalidCredentialsError(AuthenticationError):
    pass


# ── Authorization (403) ──

class AuthorizationError(AppError):
    pass


# ── Validation (400) ──

class ValidationError(AppError):
    pass


class WeakInputError(ValidationError):
    pass


class UnsupportedFormatError(ValidationError):
    pass


class InvalidAmountError(ValidationError):
    pass


# ── Not found (404) ──

class NotFoundError(AppError):
    pass


# ── External dependencies (503) ──

class DependencyError(AppError):
    pass


class ExchangeError(DependencyError):
    pass


class ProfileFetchError(DependencyError):
    pass


class AccountCreationError(DependencyError):
    pass


class StorageError(DependencyError):
    pass


class PersistenceError(DependencyError):
    """The database could not complete a statement (locked, unreachable, ...)."""


# ── Store constraints (500) ──

class ConstraintError(AppError):
    """A foreign-key or uniqueness rule was violated by the caller."""
