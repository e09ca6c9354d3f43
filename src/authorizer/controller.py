from __future__ import annotations

import inspect
import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any, Callable

from authorizer.errors import AuthorizerError, BackendError, ConfigurationError, PromptError
from authorizer.models import AuthorizationRecord, AuthState, CredentialSet, PromptSpec, build_prompt_spec
from authorizer.prompt import CredentialPrompt, Prompter
from authorizer.store import ConfigStore

if TYPE_CHECKING:
    from authorizer.provider import RequestProvider

logger = logging.getLogger(__name__)

Acquire = Callable[[CredentialSet, AuthorizationRecord], Any]
RevokeBackend = Callable[[CredentialSet, AuthorizationRecord], Any]
ErrorHandler = Callable[[BaseException], Any]


async def resolve(value: Any) -> Any:
    """Await ``value`` if a collaborator handed back an awaitable."""
    if inspect.isawaitable(value):
        return await value
    return value


class Retry:
    """Continuation handed to ``ensure`` callers.

    Calling it asks the controller for fresh authorization once the current
    request function returns. ``on_error`` receives an acquisition failure
    instead of it being raised from ``ensure``.
    """

    def __init__(self) -> None:
        self.requested = False
        self.on_error: ErrorHandler | None = None

    def __call__(self, on_error: ErrorHandler | None = None) -> None:
        self.requested = True
        self.on_error = on_error


class AuthController:
    """Owns the persisted authorization record and the prompt/acquire/persist loop."""

    def __init__(
        self,
        acquire: Acquire,
        revoke_backend: RevokeBackend,
        name: str,
        prompt_spec: Mapping[str, Any] | None = None,
        *,
        store: ConfigStore | None = None,
        prompt: Prompter | None = None,
    ) -> None:
        if not callable(acquire):
            raise ConfigurationError("settings require an acquire function")
        if not callable(revoke_backend):
            raise ConfigurationError("settings require a revoke_backend function")
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError("settings require a non-empty name string")
        if prompt is not None and not callable(prompt):
            raise ConfigurationError("prompt must be callable")

        self._acquire = acquire
        self._revoke_backend = revoke_backend
        self._prompt_spec = build_prompt_spec(prompt_spec)
        self._store = store if store is not None else ConfigStore(name)
        self._prompt = prompt or CredentialPrompt()
        self.state = AuthState.IDLE

    @property
    def prompt_spec(self) -> PromptSpec:
        return dict(self._prompt_spec)

    @property
    def store(self) -> ConfigStore:
        return self._store

    def snapshot(self) -> AuthorizationRecord:
        return dict(self._store.get_all())

    async def ensure(self, request_fn: Callable[[AuthorizationRecord, Retry], Any]) -> Any:
        """Run ``request_fn`` with the current record, acquiring more whenever it asks.

        ``request_fn(snapshot, retry)`` either finishes its work or calls
        ``retry()``. Each retry runs one acquisition cycle and then calls
        ``request_fn`` again with a fresh snapshot. Returns whatever the
        last call returned, or ``None`` if a failure went to ``on_error``.
        A record that cannot be read raises ``ConfigStoreError``.
        """
        try:
            while True:
                snapshot = self.snapshot()
                retry = Retry()
                result = await resolve(request_fn(snapshot, retry))
                if not retry.requested:
                    return result

                try:
                    await self._refresh(snapshot, revoking=False)
                except AuthorizerError as exc:
                    if retry.on_error is None:
                        raise
                    await resolve(retry.on_error(exc))
                    return None

                self.state = AuthState.RETRYING
                logger.debug("authorization refreshed, re-running request")
        finally:
            self.state = AuthState.IDLE

    async def revoke(self, callback: Callable[[BaseException | None], Any] | None = None) -> None:
        try:
            await self._refresh(self.snapshot(), revoking=True)
        except AuthorizerError as exc:
            if callback is None:
                raise
            await resolve(callback(exc))
            return
        if callback is not None:
            await resolve(callback(None))

    def create_provider(self, on_error: ErrorHandler, *, store: Any = None) -> RequestProvider:
        from authorizer.provider import RequestProvider

        return RequestProvider(self, on_error, store=store)

    async def _refresh(self, record: AuthorizationRecord, *, revoking: bool) -> None:
        job = self._revoke_backend if revoking else self._acquire
        label = "revoke" if revoking else "acquire"
        attempt = 0

        try:
            while True:
                attempt += 1
                self.state = AuthState.PROMPTING
                credentials = await self._collect_credentials()

                self.state = AuthState.ACQUIRING
                try:
                    result = await resolve(job(dict(credentials), dict(record)))
                except AuthorizerError:
                    raise
                except Exception as exc:
                    raise BackendError(f"{label} failed: {exc}") from exc

                if result is None:
                    logger.info("credentials rejected by %s (attempt %d), prompting again", label, attempt)
                    continue

                self.state = AuthState.PERSISTING
                if revoking:
                    keys = self._revoked_keys(result)
                    self._store.delete_many(keys, actor="revoke")
                    logger.info("revoked keys %s", keys)
                else:
                    if not isinstance(result, Mapping):
                        raise BackendError("acquire must return a mapping of values to store")
                    self._store.set(result, actor="acquire")
                    logger.info("stored authorization keys %s", list(result))
                return
        finally:
            self.state = AuthState.IDLE

    async def _collect_credentials(self) -> CredentialSet:
        try:
            credentials = await resolve(self._prompt(self.prompt_spec))
        except PromptError:
            raise
        except Exception as exc:
            raise PromptError(f"could not collect credentials: {exc}") from exc
        if not isinstance(credentials, Mapping):
            raise PromptError("prompt did not return a mapping of credentials")
        return dict(credentials)

    @staticmethod
    def _revoked_keys(result: Any) -> list[str]:
        if isinstance(result, (str, bytes)) or not isinstance(result, Iterable):
            raise BackendError("revoke_backend must return an iterable of keys to delete")
        return list(result)
