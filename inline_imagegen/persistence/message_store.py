"""Message log storage.

`MessageStore` is the interface the engine needs from the host chat: load one
message and save its rewritten text. `JsonChatStore` implements it over a JSON
chat file (a list of `{"id", "mes", "is_user", "name"}` objects), which is what
the CLI and HTTP adapters use.
"""

import asyncio
import json
import os
from dataclasses import dataclass
from typing import Protocol

from inline_imagegen.core.errors import PersistenceError


@dataclass(frozen=True)
class Message:
    message_id: str
    text: str
    is_user: bool = False
    character_name: str | None = None


class MessageStore(Protocol):
    async def load(self, message_id: str) -> Message | None:
        ...

    async def save(self, message_id: str, text: str) -> None:
        ...


class JsonChatStore:
    """Chat file backed store; each save rewrites the whole file."""

    def __init__(self, path: str) -> None:
        self.path = path

    def _read(self) -> list[dict]:
        if not os.path.exists(self.path):
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, list) else []

    def _write(self, messages: list[dict]) -> None:
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(messages, f, ensure_ascii=False, indent=2)
        os.replace(tmp_path, self.path)

    async def load(self, message_id: str) -> Message | None:
        for entry in await asyncio.to_thread(self._read):
            if str(entry.get("id")) == str(message_id):
                return Message(
                    message_id=str(message_id),
                    text=entry.get("mes", ""),
                    is_user=bool(entry.get("is_user")),
                    character_name=entry.get("name"),
                )
        return None

    async def save(self, message_id: str, text: str) -> None:
        def update() -> None:
            messages = self._read()
            for entry in messages:
                if str(entry.get("id")) == str(message_id):
                    entry["mes"] = text
                    break
            else:
                raise PersistenceError(f"Message {message_id} not found in {self.path}")
            self._write(messages)

        try:
            await asyncio.to_thread(update)
        except OSError as exc:
            raise PersistenceError(f"Could not save chat file {self.path}: {exc}") from exc
