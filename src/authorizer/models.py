from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from authorizer.errors import ConfigurationError

AuthorizationRecord = dict[str, Any]
CredentialSet = dict[str, str]


class PromptField(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    message: str
    hidden: bool = False


PromptSpec = dict[str, PromptField]

DEFAULT_PROMPT_SPEC: PromptSpec = {
    "username": PromptField(message="Enter username"),
    "password": PromptField(message="Enter password", hidden=True),
}


def build_prompt_spec(props: Mapping[str, Any] | None) -> PromptSpec:
    """Validate user-supplied prompt properties, falling back to username/password."""
    if not props:
        return dict(DEFAULT_PROMPT_SPEC)
    if not isinstance(props, Mapping):
        raise ConfigurationError("prompt_spec must be a mapping of field name to prompt field")

    spec: PromptSpec = {}
    for name, field in props.items():
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError("prompt field names must be non-empty strings")
        if isinstance(field, PromptField):
            spec[name] = field
            continue
        if not isinstance(field, Mapping):
            raise ConfigurationError(f"prompt field '{name}' must be a mapping")
        try:
            spec[name] = PromptField.model_validate(dict(field))
        except ValidationError as exc:
            raise ConfigurationError(f"prompt field '{name}' is invalid: {exc}") from exc
    return spec


class AuthState(str, Enum):
    IDLE = "idle"
    PROMPTING = "prompting"
    ACQUIRING = "acquiring"
    PERSISTING = "persisting"
    RETRYING = "retrying"


@dataclass(frozen=True)
class Success:
    value: Any


@dataclass(frozen=True)
class AuthRequired:
    pass


@dataclass(frozen=True)
class Failed:
    error: BaseException


RequestOutcome = Success | AuthRequired | Failed


def classify_outcome(result: Any) -> RequestOutcome:
    """Map a wrapped request's return value onto the tri-state outcome.

    Explicit outcomes pass through. Any other falsy value means the current
    authorization was not good enough, so an empty list or zero is treated
    as an auth failure too. Return ``Success(...)`` to deliver such values.
    """
    if isinstance(result, (Success, AuthRequired, Failed)):
        return result
    if not result:
        return AuthRequired()
    return Success(result)
