import base64
import json
from types import SimpleNamespace

import httpx
import pytest

from inline_imagegen.core.engine import GenerationEngine
from inline_imagegen.image.models import GeneratedImage
from inline_imagegen.image.provider_config import ImageGenConfig
from inline_imagegen.persistence.message_store import Message


PNG_BYTES = b"\x89PNG\r\n\x1a\n"
PNG_B64 = base64.b64encode(PNG_BYTES).decode("ascii")


def make_config(**overrides) -> ImageGenConfig:
    values = {
        "enabled": True,
        "api_type": "openai",
        "endpoint": "https://images.test",
        "api_key": "test-key",
        "model": "dall-e-3",
        "size": "1024x1024",
        "quality": "standard",
        "aspect_ratio": "1:1",
        "image_size": "1K",
        "max_retries": 0,
        "retry_delay": 0.5,
        "timeout_seconds": 5.0,
        "check_paths": False,
        "send_char_avatar": False,
        "send_user_avatar": False,
    }
    values.update(overrides)
    return ImageGenConfig(**values)


class InMemoryMessageStore:
    def __init__(self, *messages: Message) -> None:
        self.messages = {message.message_id: message for message in messages}
        self.saves: list[tuple[str, str]] = []

    async def load(self, message_id):
        return self.messages.get(message_id)

    async def save(self, message_id, text):
        self.saves.append((message_id, text))
        old = self.messages[message_id]
        self.messages[message_id] = Message(message_id, text, old.is_user, old.character_name)

    def text(self, message_id: str) -> str:
        return self.messages[message_id].text


class RecordingArtifactStore:
    def __init__(self, fail_with: Exception | None = None) -> None:
        self.saved: list[tuple[GeneratedImage, str | None]] = []
        self.fail_with = fail_with

    async def save(self, image, character_name=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.saved.append((image, character_name))
        return f"/user/images/{character_name or 'generated'}/img_{len(self.saved)}.png"


class FakeProbe:
    def __init__(self, missing=()) -> None:
        self.missing = set(missing)
        self.checked: list[str] = []

    async def exists(self, path):
        self.checked.append(path)
        return path not in self.missing


class ScriptedService:
    """Provider stand-in; `script` maps a prompt to results consumed per call."""

    def __init__(self, script=None, references=None) -> None:
        self.script = {prompt: list(steps) for prompt, steps in (script or {}).items()}
        self.references = list(references or [])
        self.calls = []

    async def collect_references(self):
        return list(self.references)

    async def generate(self, prompt, style=None, reference_images=None, options=None):
        self.calls.append(
            SimpleNamespace(
                prompt=prompt, style=style, references=reference_images, options=options
            )
        )
        steps = self.script.get(prompt)
        result = steps.pop(0) if steps else GeneratedImage.from_base64(PNG_B64)
        if isinstance(result, Exception):
            raise result
        return result

    def prompts(self) -> list[str]:
        return [call.prompt for call in self.calls]


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay):
        self.delays.append(delay)


def bitmap_success(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"data": [{"b64_json": PNG_B64}]})


def request_json(request: httpx.Request) -> dict:
    return json.loads(request.content.decode("utf-8"))


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def build_engine(sleep):
    """Factory wiring an engine over in-memory fakes."""

    def factory(*messages, service=None, artifacts=None, config=None, **kwargs):
        store = InMemoryMessageStore(*messages)
        engine = GenerationEngine(
            config=config or make_config(),
            service=service or ScriptedService(),
            store=store,
            artifacts=artifacts or RecordingArtifactStore(),
            sleep=sleep,
            **kwargs,
        )
        return engine, store

    return factory
