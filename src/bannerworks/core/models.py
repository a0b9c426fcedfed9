"""Domain models for the banner generation pipeline."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

from bannerworks.core.colors import normalize_hex
from bannerworks.core.errors import BannerworksError, ValidationError

logger = logging.getLogger(__name__)

# UI limit on each brand style/mood/lighting list.
MAX_BRAND_CHOICES = 3


def normalize_palette(colors: Iterable[str]) -> tuple[str, ...]:
    """Return ``colors`` as ``#RRGGBB`` codes.

    Raises:
        ValidationError: If any entry is not a 3- or 6-digit hex colour.
    """
    try:
        return tuple(normalize_hex(color) for color in colors)
    except ValueError as e:
        raise ValidationError(str(e)) from e


@dataclass(frozen=True)
class VisualElementIdea:
    """One candidate visual element for a banner.

    Ideas are unique by ``text`` within a generation session.  They are
    immutable; toggling selection produces a new instance via
    :func:`dataclasses.replace`.
    """

    text: str
    is_checked: bool = False
    is_user_submitted: bool = False

    @property
    def key(self) -> str:
        """Case-insensitive identity used for de-duplication."""
        return self.text.strip().lower()


@dataclass(frozen=True)
class FromTopic:
    """Prompt source built from a post topic and the user's chosen elements."""

    topic: str
    elements: tuple[VisualElementIdea, ...] = ()

    @property
    def has_visual_elements(self) -> bool:
        return True

    @property
    def checked_elements(self) -> tuple[VisualElementIdea, ...]:
        return tuple(el for el in self.elements if el.is_checked)


@dataclass(frozen=True)
class FromRawPrompt:
    """Prompt source built from a prompt the user typed directly."""

    text: str
    topic: str | None = None

    @property
    def has_visual_elements(self) -> bool:
        return False


PromptSource = Union[FromTopic, FromRawPrompt]


@dataclass(frozen=True)
class ComposedPrompt:
    """A final image prompt, consumed exactly once by the image backend."""

    text: str
    style: str
    mood: str
    lighting: str
    source_elements: tuple[VisualElementIdea, ...] = ()
    color_palette: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "style": self.style,
            "mood": self.mood,
            "lighting": self.lighting,
            "source_elements": [el.text for el in self.source_elements],
            "color_palette": list(self.color_palette),
        }


@dataclass(frozen=True)
class ImageTemplate:
    """A style template backed by a LoRA on the image model."""

    id: str
    name: str
    example_image_prompt: str
    description: str | None = None
    example_image_url: str | None = None
    lora_url: str | None = None
    lora_trigger_word: str | None = None

    @property
    def style_description(self) -> str:
        """Human description of the template style, falling back to its name."""
        return self.description or self.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "example_image_prompt": self.example_image_prompt,
            "example_image_url": self.example_image_url,
            "lora_url": self.lora_url,
            "lora_trigger_word": self.lora_trigger_word,
        }


@dataclass
class BrandTheme:
    """Per-user brand settings.  One theme per user, upserted on save."""

    user_id: str
    color_scheme: list[str] = field(default_factory=list)
    preferred_styles: list[str] = field(default_factory=list)
    mood: list[str] = field(default_factory=list)
    lighting: list[str] = field(default_factory=list)

    def validate(self) -> None:
        """Validate list lengths and normalise the colour scheme in place.

        Raises:
            ValidationError: If a style, mood or lighting list is too long,
                or a colour is not a hex code.
        """
        for name in ("preferred_styles", "mood", "lighting"):
            values = getattr(self, name)
            if len(values) > MAX_BRAND_CHOICES:
                raise ValidationError(
                    f"{name} accepts at most {MAX_BRAND_CHOICES} entries, got {len(values)}"
                )
        self.color_scheme = list(normalize_palette(self.color_scheme))

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "color_scheme": list(self.color_scheme),
            "preferred_styles": list(self.preferred_styles),
            "mood": list(self.mood),
            "lighting": list(self.lighting),
        }


@dataclass(frozen=True)
class BrandOverrides:
    """Brand settings applied to one request, with the user's opt-ins."""

    color_scheme: tuple[str, ...] = ()
    preferred_styles: tuple[str, ...] = ()
    mood: tuple[str, ...] = ()
    lighting: tuple[str, ...] = ()
    use_brand_settings: bool = False
    use_brand_colors: bool = False

    @classmethod
    def from_theme(
        cls,
        theme: BrandTheme | None,
        *,
        use_brand_settings: bool = False,
        use_brand_colors: bool = False,
    ) -> BrandOverrides | None:
        """Build overrides from a stored theme, or None when nothing applies."""
        if theme is None or not (use_brand_settings or use_brand_colors):
            return None
        return cls(
            color_scheme=tuple(theme.color_scheme),
            preferred_styles=tuple(theme.preferred_styles),
            mood=tuple(theme.mood),
            lighting=tuple(theme.lighting),
            use_brand_settings=use_brand_settings,
            use_brand_colors=use_brand_colors,
        )

    @property
    def color_palette(self) -> tuple[str, ...]:
        """Normalised colours for the prompt and the backend, empty unless opted in.

        Raises:
            ValidationError: If a colour is not a hex code.
        """
        return normalize_palette(self.color_scheme) if self.use_brand_colors else ()


@dataclass
class GenerationRequest:
    """One user action asking for a batch of images.

    Owned by the orchestrator for the duration of the batch and never
    persisted; only the resulting image records are.
    """

    user_id: str
    template_id: str
    prompts: list[ComposedPrompt]
    aspect_ratio: str
    requested_output_count: int
    brand_overrides: BrandOverrides | None = None
    post_topic: str | None = None


@dataclass(frozen=True)
class ImageResult:
    """Ephemeral result of one backend call."""

    url: str
    resolution: str
    seed: int | None = None
    style_type: str | None = None


@dataclass
class GeneratedImageRecord:
    """A persisted generated image owned by a user.

    ``saved`` flips from False to True once, when the user adds the image to
    their library.  Unsaved records are removed by the retention sweeper.
    """

    id: str
    user_id: str
    url: str
    user_prompt: str
    resolution: str
    created_at: datetime
    template_id: str | None = None
    seed: int | None = None
    post_topic: str | None = None
    saved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "template_id": self.template_id,
            "url": self.url,
            "user_prompt": self.user_prompt,
            "seed": self.seed,
            "resolution": self.resolution,
            "post_topic": self.post_topic,
            "saved": self.saved,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class FailedGeneration:
    """A prompt that did not produce a billed, persisted image."""

    prompt: ComposedPrompt
    error: BannerworksError

    def to_dict(self) -> dict[str, Any]:
        return {"prompt": self.prompt.to_dict(), "error": self.error.to_dict()}


@dataclass
class GenerationOutcome:
    """Result of a batch.

    ``succeeded`` is in completion order, not request order; each record
    carries its own prompt text for correlation.
    """

    succeeded: list[GeneratedImageRecord] = field(default_factory=list)
    failed: list[FailedGeneration] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": [record.to_dict() for record in self.succeeded],
            "failed": [failure.to_dict() for failure in self.failed],
        }


@dataclass
class IdeaSet:
    """Brainstorm output: the topic's main ideas plus visual element candidates."""

    main_ideas: list[str]
    visual_elements: list[VisualElementIdea]
