"""Language-model drafting of image prompts.

:class:`PromptDrafter` is the model-backed counterpart of
:class:`~bannerworks.core.prompt_composer.PromptComposer`.  It accepts the
same :data:`~bannerworks.core.models.PromptSource` variant:

- :class:`~bannerworks.core.models.FromTopic` asks the model for prompt
  concepts built around the post topic (and the checked visual elements,
  if any), guided by the template's example prompt and style.
- :class:`~bannerworks.core.models.FromRawPrompt` asks the model for
  variations of the user's prompt in different styles; the first variation
  is the prompt itself.

The model answers with ``{prompt, style, mood, lighting}`` objects.  The
drafter then applies the same finishing steps as the composer: the template
trigger word is prefixed, the brand palette sentence is appended and a
numbered variation clause separates any repeated text.  If the model returns
fewer drafts than requested they are reused in order, so a call always
yields exactly ``count`` pairwise distinct prompts.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from bannerworks.core.errors import UpstreamError, ValidationError
from bannerworks.core.llm import StructuredCompletionClient
from bannerworks.core.models import (
    BrandOverrides,
    ComposedPrompt,
    FromRawPrompt,
    FromTopic,
    ImageTemplate,
    PromptSource,
)
from bannerworks.core.prompt_composer import (
    MAX_PROMPTS,
    brand_palette,
    make_unique,
    strip_period,
    trigger_prefix,
)

logger = logging.getLogger(__name__)

_TOPIC_SYSTEM_PROMPT = (
    "You are an expert blog and social media image prompt engineer. "
    "You will be given a title or topic along with an example prompt and an image style. "
    "Your job is to create different image prompts strongly based on the title or topic. "
    "Use the example prompt and image style as a close guide, but make the topic the main "
    "idea of each prompt. DO NOT create complex or overly abstract prompts. "
    "DO NOT mention text, words, letters, brands or logos, and never ask for text in the image."
)

_VARIATION_SYSTEM_PROMPT = (
    "You are an expert image prompt engineer. You will be given an initial prompt and your "
    "job is to create creative variations of it in different artistic styles and with "
    "different properties, to generate unique and interesting images. Return the initial "
    "prompt as the first variation. For every prompt also give its style, mood and lighting. "
    "DO NOT mention text, words, letters, brands or logos."
)


class _DraftedPrompt(BaseModel):
    prompt: str = Field(..., min_length=1, description="The image generation prompt")
    style: str = Field(..., description="Artistic style of the image")
    mood: str = Field(..., description="Mood of the image")
    lighting: str = Field(..., description="Lighting of the image")


class _DraftedPromptsResponse(BaseModel):
    prompts: list[_DraftedPrompt] = Field(
        ..., min_length=1, description="Distinct image prompt concepts"
    )


def _brand_lines(brand: BrandOverrides | None) -> list[str]:
    if brand is None or not brand.use_brand_settings:
        return []
    lines = []
    if brand.preferred_styles:
        lines.append(f"Prefer these styles: {', '.join(brand.preferred_styles)}.")
    if brand.mood:
        lines.append(f"The image should have a mood of {', '.join(brand.mood)}.")
    if brand.lighting:
        lines.append(f"Use this lighting: {', '.join(brand.lighting)}.")
    return lines


class PromptDrafter:
    """Ask the language model to draft image prompts."""

    def __init__(self, llm: StructuredCompletionClient) -> None:
        self._llm = llm

    async def draft(
        self,
        source: PromptSource,
        template: ImageTemplate,
        count: int,
        brand: BrandOverrides | None = None,
    ) -> list[ComposedPrompt]:
        """Draft exactly ``count`` distinct prompts with the language model.

        Args:
            source: Topic with optional checked elements, or a raw prompt
            template: Style template guiding the drafts
            count: Number of prompts to produce (1-16)
            brand: Brand overrides with the user's opt-ins, if any

        Returns:
            ``count`` prompts, pairwise different in text

        Raises:
            ValidationError: If count is out of range, the topic or raw
                prompt is empty, or a brand colour is invalid
            UpstreamError: If the model call fails or returns no usable draft
        """
        if count < 1 or count > MAX_PROMPTS:
            raise ValidationError(f"Prompt count must be 1-{MAX_PROMPTS}, got {count}")
        palette, palette_sentence = brand_palette(brand)

        if isinstance(source, FromRawPrompt):
            initial = strip_period(source.text or "")
            if not initial:
                raise ValidationError("A prompt is required")
            elements = ()
            system = _VARIATION_SYSTEM_PROMPT
            lines = [
                f"Create {count} creative variations of this prompt in different styles: "
                f'"{initial}".'
            ]
            function_name = "generatePromptVariations"
            description = (
                f"Generates {count} variations of the initial prompt, the first being the prompt itself"
            )
        elif isinstance(source, FromTopic):
            topic = strip_period(source.topic or "")
            if not topic:
                raise ValidationError("A topic is required")
            elements = tuple(el for el in source.checked_elements if strip_period(el.text))
            system = _TOPIC_SYSTEM_PROMPT
            lines = [
                f"Create {count} different image prompts for a social media or blog post "
                f"titled: {topic}.",
                f"The image is generated with a LoRA in the style of {template.style_description}.",
            ]
            if elements:
                lines.append(
                    "Build the prompts around these visual elements: "
                    + ", ".join(strip_period(el.text) for el in elements)
                    + "."
                )
            lines.append(
                f"Use this example prompt as a guide only: {template.example_image_prompt}"
            )
            function_name = "generateImagePrompts"
            description = (
                f"Generates {count} different image prompt concepts for the center of a banner"
            )
        else:
            raise ValidationError(f"Unsupported prompt source: {type(source).__name__}")

        lines.extend(_brand_lines(brand))
        response = await self._llm.complete(
            system=system,
            user="\n".join(lines),
            function_name=function_name,
            description=description,
            response_model=_DraftedPromptsResponse,
            temperature=1,
        )

        drafts = [d for d in response.prompts if strip_period(d.prompt)]
        if not drafts:
            raise UpstreamError("Bad response from language model: no usable prompts")

        prefix = trigger_prefix(template)
        prompts: list[ComposedPrompt] = []
        seen: set[str] = set()
        for i in range(count):
            draft = drafts[i % len(drafts)]
            text = f"{prefix}{strip_period(draft.prompt)}.{palette_sentence}"
            prompts.append(
                ComposedPrompt(
                    text=make_unique(text, seen),
                    style=draft.style.strip(),
                    mood=draft.mood.strip(),
                    lighting=draft.lighting.strip(),
                    source_elements=elements,
                    color_palette=palette,
                )
            )

        logger.info(
            f"Drafted {len(prompts)} prompts from {len(drafts)} model suggestions "
            f"for template {template.id!r}"
        )
        return prompts
