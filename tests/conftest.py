"""Shared pytest fixtures for Bannerworks tests."""

import asyncio
import json
import shutil
import tempfile
from pathlib import Path
from types import SimpleNamespace
from typing import Generator

import pytest

from bannerworks.core.config import BannerworksConfig
from bannerworks.core.image_settings import BackendResolution
from bannerworks.core.llm import StructuredCompletionClient
from bannerworks.core.models import (
    ComposedPrompt,
    FromTopic,
    GenerationRequest,
    ImageResult,
    ImageTemplate,
    VisualElementIdea,
)
from bannerworks.core.store import ImageStore, load_template_catalog


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> BannerworksConfig:
    """Create a test configuration backed by a temporary database.

    No API keys are set and the retention sweeper is disabled, so nothing in
    a test can reach a real external service or run in the background.
    """
    return BannerworksConfig(
        database_path=temp_dir / "bannerworks.db",
        openai_api_key=None,
        image_api_key=None,
        retry_base_delay=0,
        enable_retention_sweeper=False,
        _env_file=None,
    )


@pytest.fixture
def store(test_config: BannerworksConfig) -> ImageStore:
    """Create an image store seeded with the bundled template catalogue."""
    image_store = ImageStore(test_config.database_path)
    image_store.seed_templates(load_template_catalog(test_config.data_dir / "templates.json"))
    return image_store


@pytest.fixture
def sketchy_template(store: ImageStore) -> ImageTemplate:
    """Return the seeded "sketchy" template (trigger word "Sketch Sized")."""
    template = store.get_template("sketchy")
    assert template is not None
    return template


@pytest.fixture
def plain_template() -> ImageTemplate:
    """A template without a LoRA trigger word."""
    return ImageTemplate(
        id="plain",
        name="plain",
        example_image_prompt="A lighthouse on a cliff at dusk.",
        description="A clean flat illustration.",
    )


@pytest.fixture
def beautiful_forms() -> FromTopic:
    """The "Beautiful Forms" topic with two checked elements and one unchecked."""
    return FromTopic(
        topic="Beautiful Forms",
        elements=(
            VisualElementIdea("wireframe", is_checked=True),
            VisualElementIdea("clipboard", is_checked=True),
            VisualElementIdea("stopwatch"),
        ),
    )


def make_prompts(*texts: str) -> list[ComposedPrompt]:
    """Build composed prompts with fixed style fields."""
    return [
        ComposedPrompt(text=text, style="illustration", mood="peaceful", lighting="soft")
        for text in texts
    ]


@pytest.fixture
def make_request():
    """Factory for generation requests against the "sketchy" template."""

    def _make(user_id: str, *texts: str, count: int | None = None, **kwargs) -> GenerationRequest:
        prompts = make_prompts(*texts)
        return GenerationRequest(
            user_id=user_id,
            template_id=kwargs.pop("template_id", "sketchy"),
            prompts=prompts,
            aspect_ratio=kwargs.pop("aspect_ratio", "21:9"),
            requested_output_count=len(prompts) if count is None else count,
            **kwargs,
        )

    return _make


# ---------------------------------------------------------------------------
# Image backend fake.
# ---------------------------------------------------------------------------


class FakeImageBackend:
    """In-memory stand-in for :class:`ImageBackendAdapter`.

    Prompts containing a registered fragment raise the registered error;
    every other call succeeds.  Each call takes ``delay`` seconds unless a
    per-fragment delay was registered with :meth:`delay_on`.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.delays: dict[str, float] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, BackendResolution, tuple[str, ...]]] = []
        self.active = 0
        self.max_active = 0

    def fail_on(self, fragment: str, error: Exception) -> None:
        self.failures[fragment] = error

    def delay_on(self, fragment: str, seconds: float) -> None:
        self.delays[fragment] = seconds

    def _delay_for(self, text: str) -> float:
        for fragment, seconds in self.delays.items():
            if fragment in text:
                return seconds
        return self.delay

    async def generate(self, prompt, resolution, color_palette=None) -> ImageResult:
        self.calls.append((prompt.text, resolution, tuple(color_palette or ())))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self._delay_for(prompt.text))
            for fragment, error in self.failures.items():
                if fragment in prompt.text:
                    raise error
            number = len(self.calls)
            return ImageResult(
                url=f"https://images.example/{number}.png",
                resolution=getattr(resolution, "value", resolution),
                seed=number,
                style_type="GENERAL",
            )
        finally:
            self.active -= 1


@pytest.fixture
def fake_backend() -> FakeImageBackend:
    return FakeImageBackend()


# ---------------------------------------------------------------------------
# Language model fake.
# ---------------------------------------------------------------------------


class FakeChatCompletions:
    """Mimics ``AsyncOpenAI().chat.completions`` for forced tool calls."""

    def __init__(self):
        self.arguments: str | None = "{}"
        self.error: Exception | None = None
        self.requests: list[dict] = []
        self.omit_tool_call = False

    def respond_with(self, payload: dict) -> None:
        self.arguments = json.dumps(payload)

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        tool_calls = []
        if not self.omit_tool_call:
            name = kwargs["tool_choice"]["function"]["name"]
            tool_calls.append(
                SimpleNamespace(function=SimpleNamespace(name=name, arguments=self.arguments))
            )
        message = SimpleNamespace(content=None, tool_calls=tool_calls)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def fake_completions() -> FakeChatCompletions:
    return FakeChatCompletions()


@pytest.fixture
def llm_client(fake_completions: FakeChatCompletions) -> StructuredCompletionClient:
    """A real completion client wired to the fake provider."""
    fake_openai = SimpleNamespace(chat=SimpleNamespace(completions=fake_completions))
    return StructuredCompletionClient(model="test-model", client=fake_openai)
