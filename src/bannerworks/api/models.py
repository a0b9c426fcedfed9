"""Pydantic request models for the Bannerworks API.

These models define the JSON schema for the API endpoints.  FastAPI uses
them for request validation and OpenAPI documentation.  Each model converts
itself into the core domain types so route handlers stay thin.

Models
------
IdeasRequest
    Payload for ``POST /api/ideas`` (visual element ideas, with exclusions).
BrainstormRequest
    Payload for ``POST /api/ideas/brainstorm`` (main ideas + elements).
ComposeRequest
    Payload for ``POST /api/prompts/compose``.
GenerateRequest
    Payload for ``POST /api/generate``; a compose request plus output
    settings.
BrandThemeRequest
    Payload for ``PUT /api/brand-theme``.
SaveImageRequest
    Optional payload for ``POST /api/images/{id}/save``.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from bannerworks.core.models import (
    MAX_BRAND_CHOICES,
    BrandTheme,
    FromRawPrompt,
    FromTopic,
    PromptSource,
    VisualElementIdea,
)


class VisualElementPayload(BaseModel):
    """One visual element idea as exchanged with the UI."""

    text: str = Field(..., min_length=1, description="Visual element text.")
    is_checked: bool = Field(default=False, description="Selected by the user.")
    is_user_submitted: bool = Field(default=False, description="Typed in by the user.")

    def to_idea(self) -> VisualElementIdea:
        return VisualElementIdea(
            text=self.text,
            is_checked=self.is_checked,
            is_user_submitted=self.is_user_submitted,
        )


class IdeasRequest(BaseModel):
    """Request body for ``POST /api/ideas``.

    Attributes:
        topic: Post title or topic.
        template_id: Template the banner will use.
        count: Number of ideas wanted (1-20).
        exclude: Ideas already shown or discarded.  The caller merges both
            lists before sending.
    """

    topic: str = Field(..., description="Post title or topic.")
    template_id: str = Field(..., description="Image template identifier.")
    count: int = Field(default=10, description="Number of ideas (1-20).")
    exclude: list[str] = Field(
        default_factory=list,
        description="Previously shown or discarded ideas to avoid.",
    )


class BrainstormRequest(BaseModel):
    """Request body for ``POST /api/ideas/brainstorm``."""

    topic: str = Field(..., description="Post title or topic.")
    template_id: str = Field(..., description="Image template identifier.")
    count: int = Field(default=10, description="Number of visual element ideas (1-20).")
    keywords: list[str] = Field(default_factory=list, description="Optional post keywords.")


class ComposeRequest(BaseModel):
    """Request body for ``POST /api/prompts/compose``.

    Draft text lives on the client and is sent with every request.

    Attributes:
        source: ``"topic"`` to build from checked visual elements, or
            ``"prompt"`` to build from a raw prompt.
        topic: Post topic (required for ``"topic"``; stored as the post topic
            of generated images).
        elements: Visual element ideas; only checked ones are used.
        prompt: Raw prompt text (required for ``"prompt"``).
        template_id: Image template identifier.
        count: Number of prompts to compose.
        use_brand_settings: Apply the user's brand moods/styles/lighting.
        use_brand_colors: Apply the user's brand colour palette.
        draft_with_llm: Draft the prompts with the language model instead of
            the built-in sentence template.
    """

    source: Literal["topic", "prompt"] = Field(
        default="topic",
        description="Build from 'topic' elements or a raw 'prompt'.",
    )
    topic: str | None = Field(default=None, description="Post title or topic.")
    elements: list[VisualElementPayload] = Field(
        default_factory=list,
        description="Visual element ideas (checked ones are used).",
    )
    prompt: str | None = Field(default=None, description="Raw prompt text.")
    template_id: str = Field(..., description="Image template identifier.")
    count: int = Field(default=3, description="Number of prompts (1-16).")
    use_brand_settings: bool = Field(default=False, description="Apply brand mood/style/lighting.")
    use_brand_colors: bool = Field(default=False, description="Apply brand colour palette.")
    draft_with_llm: bool = Field(
        default=False, description="Draft prompts with the language model."
    )

    def to_source(self) -> PromptSource:
        if self.source == "prompt":
            return FromRawPrompt(text=self.prompt or "", topic=self.topic)
        return FromTopic(
            topic=self.topic or "",
            elements=tuple(el.to_idea() for el in self.elements),
        )


class GenerateRequest(ComposeRequest):
    """Request body for ``POST /api/generate``.

    ``count`` is the number of images requested; one prompt is composed per
    image.

    Attributes:
        aspect_ratio: Aspect ratio or platform identifier (e.g. ``"21:9"``,
            ``"linkedin"``).
    """

    aspect_ratio: str = Field(default="21:9", description="Aspect ratio or platform id.")


class BrandThemeRequest(BaseModel):
    """Request body for ``PUT /api/brand-theme``."""

    color_scheme: list[str] = Field(default_factory=list, description="Brand hex colours.")
    preferred_styles: list[str] = Field(
        default_factory=list, max_length=MAX_BRAND_CHOICES, description="Preferred styles."
    )
    mood: list[str] = Field(
        default_factory=list, max_length=MAX_BRAND_CHOICES, description="Brand moods."
    )
    lighting: list[str] = Field(
        default_factory=list, max_length=MAX_BRAND_CHOICES, description="Brand lighting."
    )

    def to_theme(self, user_id: str) -> BrandTheme:
        return BrandTheme(
            user_id=user_id,
            color_scheme=list(self.color_scheme),
            preferred_styles=list(self.preferred_styles),
            mood=list(self.mood),
            lighting=list(self.lighting),
        )


class SaveImageRequest(BaseModel):
    """Optional body for ``POST /api/images/{id}/save``."""

    url: str | None = Field(
        default=None,
        description="Permanent URL replacing the ephemeral backend URL.",
    )
