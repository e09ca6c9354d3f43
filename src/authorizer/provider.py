from __future__ import annotations

import functools
import logging
from collections.abc import MutableMapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from authorizer.controller import ErrorHandler, Retry, resolve
from authorizer.errors import ConfigStoreError, ConfigurationError
from authorizer.models import AuthorizationRecord, AuthRequired, Failed, RequestOutcome, classify_outcome

if TYPE_CHECKING:
    from authorizer.controller import AuthController

logger = logging.getLogger(__name__)

CONFIG_ATTRIBUTE = "config"

_SCALAR_TYPES = (str, bytes, bytearray, int, float, complex, bool, tuple, frozenset)


@dataclass(frozen=True)
class ProviderOptions:
    """Where the authorization snapshot is published.

    With no store the snapshot is passed as the first positional argument of
    the wrapped request. A mutable mapping gets ``store["config"]`` and any
    other object gets a ``config`` attribute.
    """

    store: Any = None


class RequestProvider:
    """Decorator factory that runs requests through ``AuthController.ensure``."""

    def __init__(self, controller: AuthController, on_error: ErrorHandler, *, store: Any = None) -> None:
        if not callable(on_error):
            raise ConfigurationError("requires an on_error function")
        if store is not None and not self._is_object_like(store):
            raise ConfigurationError("config store must be a mutable mapping or object")

        self._controller = controller
        self._on_error = on_error
        self.options = ProviderOptions(store=store)

    def __call__(self, request: Callable[..., Any]) -> Callable[..., Any]:
        name = getattr(request, "__name__", repr(request))

        @functools.wraps(request)
        async def authorized(*args: Any, **kwargs: Any) -> Any:
            args_list = list(args)
            callback = args_list.pop() if args_list and callable(args_list[-1]) else None

            async def attempt(snapshot: AuthorizationRecord, retry: Retry) -> Any:
                call_args = self._publish(snapshot, args_list)
                outcome = await self._invoke(request, call_args, kwargs)

                if isinstance(outcome, Failed):
                    logger.debug("request %s failed: %r", name, outcome.error)
                    await resolve(self._on_error(outcome.error))
                    return None
                if isinstance(outcome, AuthRequired):
                    logger.debug("request %s needs fresh authorization", name)
                    retry(self._on_error)
                    return None

                if callback is not None:
                    await resolve(callback(outcome.value))
                return outcome.value

            try:
                return await self._controller.ensure(attempt)
            except ConfigStoreError as exc:
                logger.debug("request %s could not read authorization: %r", name, exc)
                await resolve(self._on_error(exc))
                return None

        return authorized

    def _publish(self, snapshot: AuthorizationRecord, args: list[Any]) -> list[Any]:
        store = self.options.store
        if store is None:
            return [snapshot, *args]
        if isinstance(store, MutableMapping):
            store[CONFIG_ATTRIBUTE] = snapshot
        else:
            setattr(store, CONFIG_ATTRIBUTE, snapshot)
        return list(args)

    @staticmethod
    async def _invoke(request: Callable[..., Any], args: list[Any], kwargs: dict[str, Any]) -> RequestOutcome:
        try:
            result = await resolve(request(*args, **kwargs))
        except Exception as exc:
            return Failed(exc)
        return classify_outcome(result)

    @staticmethod
    def _is_object_like(store: Any) -> bool:
        if isinstance(store, MutableMapping):
            return True
        if isinstance(store, _SCALAR_TYPES) or callable(store):
            return False
        if hasattr(store, "__dict__"):
            return True
        return any(CONFIG_ATTRIBUTE in _slot_names(klass) for klass in type(store).__mro__)


def _slot_names(klass: type) -> tuple[str, ...]:
    slots = klass.__dict__.get("__slots__", ())
    return (slots,) if isinstance(slots, str) else tuple(slots)


def create_provider(controller: AuthController, on_error: ErrorHandler, *, store: Any = None) -> RequestProvider:
    return RequestProvider(controller, on_error, store=store)
