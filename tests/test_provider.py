from __future__ import annotations

from types import SimpleNamespace

import pytest

from authorizer import (
    AuthController,
    BackendError,
    ConfigStore,
    ConfigStoreError,
    ConfigurationError,
    PromptError,
    RequestProvider,
    Success,
    create_provider,
)

GOOD = {"username": "u", "password": "good"}


class Acquire:
    def __init__(self, value=None):
        self.value = value or {"token": "T"}
        self.calls = 0

    async def __call__(self, credentials, record):
        self.calls += 1
        return self.value


async def _revoke(credentials, record):
    return ["token"]


def _controller(store, prompt, acquire=None):
    return AuthController(acquire or Acquire(), _revoke, "app", store=store, prompt=prompt)


class SlottedClient:
    __slots__ = ("base_url", "config")

    def __init__(self, base_url):
        self.base_url = base_url


class SealedClient:
    __slots__ = ("base_url",)


class TestConstruction:
    def test_requires_on_error(self, store, make_prompt):
        controller = _controller(store, make_prompt())
        with pytest.raises(ConfigurationError, match="on_error"):
            controller.create_provider(None)

    @pytest.mark.parametrize("on_error", [4, "str", {}, True])
    def test_rejects_non_callable_on_error(self, store, make_prompt, on_error):
        controller = _controller(store, make_prompt())
        with pytest.raises(ConfigurationError, match="on_error"):
            controller.create_provider(on_error)

    @pytest.mark.parametrize("config_store", [4, "str", 22 / 7, True, b"bytes", ("a",), print])
    def test_rejects_scalar_store(self, store, make_prompt, config_store):
        controller = _controller(store, make_prompt())
        with pytest.raises(ConfigurationError, match="config store"):
            controller.create_provider(print, store=config_store)

    @pytest.mark.parametrize("config_store", [None, {}, {"config": None}, SimpleNamespace()])
    def test_accepts_mapping_or_object_store(self, store, make_prompt, config_store):
        controller = _controller(store, make_prompt())
        provider = controller.create_provider(print, store=config_store)
        assert isinstance(provider, RequestProvider)
        assert provider.options.store is config_store

    def test_module_level_factory(self, store, make_prompt):
        controller = _controller(store, make_prompt())
        assert isinstance(create_provider(controller, print), RequestProvider)


class TestAuthorizedRequests:
    @pytest.mark.asyncio
    async def test_prepends_config_without_store(self, store, make_prompt):
        store.set({"token": "T"})
        provider = _controller(store, make_prompt()).create_provider(pytest.fail)
        seen = []

        @provider
        async def list_repos(config, owner, page=1):
            seen.append((config, owner, page))
            return ["repo"]

        assert await list_repos("octocat", page=2) == ["repo"]
        assert seen == [({"token": "T"}, "octocat", 2)]

    @pytest.mark.asyncio
    async def test_sets_config_on_mapping_store(self, store, make_prompt):
        store.set({"token": "T"})
        shared = {}
        provider = _controller(store, make_prompt()).create_provider(pytest.fail, store=shared)

        @provider
        async def list_repos(owner):
            return [shared["config"]["token"], owner]

        assert await list_repos("octocat") == ["T", "octocat"]
        assert shared == {"config": {"token": "T"}}

    @pytest.mark.asyncio
    async def test_sets_config_attribute_on_object_store(self, store, make_prompt):
        store.set({"token": "T"})
        client = SimpleNamespace(base_url="https://api.example.com")
        provider = _controller(store, make_prompt()).create_provider(pytest.fail, store=client)

        @provider
        def whoami():
            return client.config["token"]

        assert await whoami() == "T"
        assert client.config == {"token": "T"}

    @pytest.mark.asyncio
    async def test_success_goes_to_trailing_callback(self, store, make_prompt):
        store.set({"token": "T"})
        provider = _controller(store, make_prompt()).create_provider(pytest.fail)
        results = []

        @provider
        async def get_item(config, item_id):
            return {"id": item_id}

        await get_item(7, results.append)

        assert results == [{"id": 7}]

    @pytest.mark.asyncio
    async def test_request_error_goes_to_on_error_without_retry(self, store, make_prompt):
        boom = RuntimeError("x")
        prompt = make_prompt()
        acquire = Acquire()
        errors = []
        results = []
        provider = _controller(store, prompt, acquire=acquire).create_provider(errors.append)

        @provider
        async def get_item(config):
            raise boom

        assert await get_item(results.append) is None

        assert errors == [boom]
        assert results == []
        assert prompt.calls == 0
        assert acquire.calls == 0

    @pytest.mark.asyncio
    async def test_falsy_result_reacquires_and_reruns(self, store, make_prompt):
        responses = [False, ["item"]]
        calls = []
        prompt = make_prompt(GOOD)
        acquire = Acquire()
        results = []
        provider = _controller(store, prompt, acquire=acquire).create_provider(pytest.fail)

        @provider
        async def list_items(config):
            calls.append(config)
            return responses.pop(0)

        assert await list_items(results.append) == ["item"]

        assert results == [["item"]]
        assert calls == [{}, {"token": "T"}]
        assert acquire.calls == 1
        assert prompt.calls == 1
        assert store.get_all() == {"token": "T"}

    @pytest.mark.asyncio
    async def test_acquisition_failure_goes_to_on_error(self, store, make_prompt):
        errors = []
        provider = _controller(store, make_prompt(PromptError("interrupted"))).create_provider(errors.append)
        calls = []

        @provider
        async def list_items(config):
            calls.append(config)
            return None

        assert await list_items() is None

        assert len(errors) == 1
        assert isinstance(errors[0], PromptError)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_backend_failure_goes_to_on_error(self, store, make_prompt):
        async def acquire(credentials, record):
            raise ConnectionError("token endpoint down")

        errors = []
        controller = AuthController(acquire, _revoke, "app", store=store, prompt=make_prompt(GOOD))
        provider = controller.create_provider(errors.append)

        @provider
        async def list_items(config):
            return []

        await list_items()

        assert isinstance(errors[0], BackendError)
        assert isinstance(errors[0].__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_explicit_success_delivers_falsy_value(self, store, make_prompt):
        prompt = make_prompt()
        provider = _controller(store, prompt).create_provider(pytest.fail)

        @provider
        async def count_items(config):
            return Success(0)

        assert await count_items() == 0
        assert prompt.calls == 0

    @pytest.mark.asyncio
    async def test_async_handlers_are_awaited(self, store, make_prompt):
        errors = []
        results = []

        async def on_error(exc):
            errors.append(exc)

        async def on_result(value):
            results.append(value)

        store.set({"token": "T"})
        provider = _controller(store, make_prompt()).create_provider(on_error)

        @provider
        async def fetch(config, key):
            if key == "missing":
                raise KeyError(key)
            return config[key]

        await fetch("token", on_result)
        await fetch("missing", on_result)

        assert results == ["T"]
        assert len(errors) == 1
        assert isinstance(errors[0], KeyError)

    def test_preserves_request_metadata(self, store, make_prompt):
        provider = _controller(store, make_prompt()).create_provider(print)

        async def list_repos(config):
            """List repositories."""

        wrapped = provider(list_repos)
        assert wrapped.__name__ == "list_repos"
        assert wrapped.__doc__ == "List repositories."

    @pytest.mark.asyncio
    async def test_unreadable_record_goes_to_on_error(self, tmp_path, make_prompt):
        config_store = ConfigStore("app", db_path=tmp_path / "closed.duckdb")
        errors = []
        provider = _controller(config_store, make_prompt()).create_provider(errors.append)
        config_store.close()
        calls = []

        @provider
        async def list_items(config):
            calls.append(config)
            return ["item"]

        assert await list_items() is None

        assert len(errors) == 1
        assert isinstance(errors[0], ConfigStoreError)
        assert calls == []

    @pytest.mark.asyncio
    async def test_sets_config_on_slotted_store(self, store, make_prompt):
        store.set({"token": "T"})
        client = SlottedClient("https://api.example.com")
        provider = _controller(store, make_prompt()).create_provider(pytest.fail, store=client)

        @provider
        def whoami():
            return client.config["token"]

        assert await whoami() == "T"


def test_rejects_slotted_store_without_config_slot(store, make_prompt):
    controller = _controller(store, make_prompt())
    with pytest.raises(ConfigurationError, match="config store"):
        controller.create_provider(print, store=SealedClient())
