from __future__ import annotations

from typing import Any

import pytest

from authorizer import ConfigStore


class FakePrompt:
    """Hands out queued credential sets; exceptions in the queue are raised."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.specs: list[dict[str, Any]] = []

    async def __call__(self, spec):
        self.specs.append(spec)
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    @property
    def calls(self) -> int:
        return len(self.specs)


@pytest.fixture
def store(tmp_path):
    config_store = ConfigStore("app", db_path=tmp_path / "config.duckdb")
    yield config_store
    config_store.close()


@pytest.fixture
def make_prompt():
    return FakePrompt
