from __future__ import annotations


class AuthorizerError(Exception):
    """Base error for authorizer failures."""


class ConfigurationError(AuthorizerError, ValueError):
    """Raised at construction time when settings are missing or invalid."""


class PromptError(AuthorizerError):
    """Raised when credentials could not be collected from the user."""


class BackendError(AuthorizerError):
    """Raised when acquire/revoke fails for a reason other than rejected credentials."""


class ConfigStoreError(AuthorizerError):
    """Raised when the persisted authorization record cannot be read or written."""
