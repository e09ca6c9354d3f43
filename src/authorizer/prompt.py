"""Interactive credential collection.

``CredentialPrompt`` accepts an optional *console* (for output) and
*input_stream* (for deterministic test input) so tests never need to
monkeypatch stdin. Any async callable with the same ``(spec) -> dict``
shape can be handed to ``AuthController`` in its place.
"""

from __future__ import annotations

import asyncio
import getpass
import sys
from typing import Awaitable, Callable, TextIO

from rich.console import Console

from authorizer.errors import PromptError
from authorizer.models import CredentialSet, PromptSpec

# Prompts go to stderr so stdout stays clean for the embedding CLI.
err_console = Console(stderr=True)

Prompter = Callable[[PromptSpec], Awaitable[CredentialSet]]


class CredentialPrompt:
    def __init__(
        self,
        *,
        console: Console | None = None,
        input_stream: TextIO | None = None,
    ) -> None:
        self._console = console or err_console
        self._stream = input_stream

    async def __call__(self, spec: PromptSpec) -> CredentialSet:
        return await asyncio.to_thread(self.collect, spec)

    def collect(self, spec: PromptSpec) -> CredentialSet:
        """Ask for every field in ``spec`` in order.

        Raises ``PromptError`` on EOF, interrupt or an unreadable terminal.
        """
        credentials: CredentialSet = {}
        for name, field in spec.items():
            try:
                credentials[name] = self._read(field.message, hidden=field.hidden)
            except (EOFError, KeyboardInterrupt) as exc:
                raise PromptError(f"input for '{name}' was interrupted") from exc
            except OSError as exc:
                raise PromptError(f"could not read input for '{name}': {exc}") from exc
        return credentials

    def _read(self, message: str, *, hidden: bool) -> str:
        if self._stream is not None:
            self._console.print(f"{message}: ", end="", markup=False)
            line = self._stream.readline()
            if not line:
                raise EOFError
            return line.rstrip("\r\n")

        if hidden:
            return getpass.getpass(f"{message}: ", stream=sys.stderr)
        return self._console.input(f"{message}: ", markup=False)
