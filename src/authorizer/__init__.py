from authorizer.controller import AuthController, Retry
from authorizer.errors import (
    AuthorizerError,
    BackendError,
    ConfigStoreError,
    ConfigurationError,
    PromptError,
)
from authorizer.models import (
    DEFAULT_PROMPT_SPEC,
    AuthRequired,
    AuthState,
    Failed,
    PromptField,
    Success,
)
from authorizer.prompt import CredentialPrompt
from authorizer.provider import ProviderOptions, RequestProvider, create_provider
from authorizer.store import ConfigStore

__all__ = [
    "DEFAULT_PROMPT_SPEC",
    "AuthController",
    "AuthRequired",
    "AuthState",
    "AuthorizerError",
    "BackendError",
    "ConfigStore",
    "ConfigStoreError",
    "ConfigurationError",
    "CredentialPrompt",
    "Failed",
    "PromptError",
    "PromptField",
    "ProviderOptions",
    "RequestProvider",
    "Retry",
    "Success",
    "create_provider",
]
