"""Composition of final image prompts from a topic or a raw prompt.

One composer serves both entry points of the UI through the
:data:`~bannerworks.core.models.PromptSource` variant:

- :class:`~bannerworks.core.models.FromTopic` builds prompts around the
  visual elements the user checked.
- :class:`~bannerworks.core.models.FromRawPrompt` builds prompts around text
  the user typed.

Selection Policy
----------------
Outputs are spread over style, mood and lighting by round-robin: output
``i`` uses entry ``i`` of each pool (wrapping around).  The pools start with
the user's brand preferences when brand settings are enabled and are padded
with the remaining built-in values, so the first outputs follow the brand
and later ones still vary.  Checked elements are dealt round-robin across the
outputs in the same way.  If two outputs still end up with identical text
(only possible for large batches), the later one gets a numbered variation
clause, so no two prompts of one call are ever equal.

:class:`~bannerworks.core.prompt_drafter.PromptDrafter` offers the same
contract with subjects drafted by the language model.

Prompt Structure
----------------
::

    [LoRA trigger word: ]A <mood> <style> with <orientation> orientation.
    In the center of the image, <subject>. The left and right parts of the
    image are empty, leaving space for the center content to be the main
    focus of the image. The lighting is <lighting>.[ The color palette is
    <colour names>.]
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from enum import Enum

from bannerworks.core.colors import describe_palette
from bannerworks.core.errors import ValidationError
from bannerworks.core.image_settings import ImageLighting, ImageMood, ImageStyle
from bannerworks.core.models import (
    BrandOverrides,
    ComposedPrompt,
    FromRawPrompt,
    FromTopic,
    ImageTemplate,
    PromptSource,
    VisualElementIdea,
)

logger = logging.getLogger(__name__)

MAX_PROMPTS = 16


def strip_period(text: str) -> str:
    text = text.strip()
    return text[:-1].rstrip() if text.endswith(".") else text


def _with_article(phrase: str) -> str:
    article = "An" if phrase[:1].lower() in "aeiou" else "A"
    return f"{article} {phrase}"


def _build_pool(preferred: Iterable[str], defaults: type[Enum]) -> list[str]:
    """Return ``preferred`` values first, then every default not already listed."""
    pool: list[str] = []
    for value in preferred:
        value = value.strip()
        if value and value not in pool:
            pool.append(value)
    for member in defaults:
        if member.value not in pool:
            pool.append(member.value)
    return pool


def _deal_elements(
    elements: tuple[VisualElementIdea, ...], count: int
) -> list[tuple[VisualElementIdea, ...]]:
    """Distribute elements over ``count`` outputs round-robin.

    With fewer elements than outputs each output gets one element, cycling;
    with more, each output gets every ``count``-th element.
    """
    if len(elements) <= count:
        return [(elements[i % len(elements)],) for i in range(count)]
    return [elements[i::count] for i in range(count)]


def _join_phrases(phrases: list[str]) -> str:
    if len(phrases) == 1:
        return phrases[0]
    return ", ".join(phrases[:-1]) + f" and {phrases[-1]}"


def trigger_prefix(template: ImageTemplate) -> str:
    """Return ``"<trigger word>: "`` for LoRA templates, else an empty string."""
    return f"{template.lora_trigger_word}: " if template.lora_trigger_word else ""


def brand_palette(brand: BrandOverrides | None) -> tuple[tuple[str, ...], str]:
    """Return the normalised brand palette and the sentence naming it.

    Both are empty unless the user opted in to brand colours and the theme
    has a colour scheme.
    """
    palette = brand.color_palette if brand is not None else ()
    if not palette:
        return (), ""
    return palette, f" The color palette is {describe_palette(list(palette))}."


def make_unique(text: str, seen: set[str]) -> str:
    """Return ``text``, or a numbered variation of it not yet in ``seen``.

    The returned text is added to ``seen``.
    """
    variation = 1
    unique_text = text
    while unique_text in seen:
        variation += 1
        unique_text = f"{text} Variation {variation}."
    seen.add(unique_text)
    return unique_text


class PromptComposer:
    """Turn a prompt source plus template and brand settings into image prompts."""

    def __init__(self, orientation: str = "landscape") -> None:
        self.orientation = orientation

    def compose(
        self,
        source: PromptSource,
        template: ImageTemplate,
        count: int,
        brand: BrandOverrides | None = None,
    ) -> list[ComposedPrompt]:
        """Compose exactly ``count`` distinct prompts.

        Args:
            source: Topic with checked elements, or a raw prompt
            template: Style template; its trigger word prefixes every prompt
            count: Number of prompts to produce (1-16)
            brand: Brand overrides with the user's opt-ins, if any

        Returns:
            ``count`` prompts, pairwise different in text

        Raises:
            ValidationError: If count is out of range, the raw prompt is
                empty, or a topic source has no checked elements
        """
        if count < 1 or count > MAX_PROMPTS:
            raise ValidationError(f"Prompt count must be 1-{MAX_PROMPTS}, got {count}")

        subjects = self._subjects(source, count)

        use_settings = brand is not None and brand.use_brand_settings
        styles = _build_pool(brand.preferred_styles if use_settings else (), ImageStyle)
        moods = _build_pool(brand.mood if use_settings else (), ImageMood)
        lightings = _build_pool(brand.lighting if use_settings else (), ImageLighting)

        palette, palette_sentence = brand_palette(brand)
        prefix = trigger_prefix(template)

        prompts: list[ComposedPrompt] = []
        seen: set[str] = set()
        for i, (subject, elements) in enumerate(subjects):
            style = styles[i % len(styles)]
            mood = moods[i % len(moods)]
            lighting = lightings[i % len(lightings)]

            text = (
                f"{prefix}{_with_article(f'{mood} {style}')} with {self.orientation} orientation. "
                f"In the center of the image, {subject}. The left and right parts of the image "
                f"are empty, leaving space for the center content to be the main focus of the "
                f"image. The lighting is {lighting}.{palette_sentence}"
            )
            prompts.append(
                ComposedPrompt(
                    text=make_unique(text, seen),
                    style=style,
                    mood=mood,
                    lighting=lighting,
                    source_elements=elements,
                    color_palette=palette,
                )
            )

        logger.info(f"Composed {len(prompts)} prompts for template {template.id!r}")
        return prompts

    def _subjects(
        self, source: PromptSource, count: int
    ) -> list[tuple[str, tuple[VisualElementIdea, ...]]]:
        """Return the centre subject text and its elements for each output."""
        if isinstance(source, FromRawPrompt):
            text = strip_period(source.text or "")
            if not text:
                raise ValidationError("A prompt is required")
            return [(text, ()) for _ in range(count)]

        if isinstance(source, FromTopic):
            topic = strip_period(source.topic or "")
            if not topic:
                raise ValidationError("A topic is required")
            checked = tuple(el for el in source.checked_elements if strip_period(el.text))
            if not checked:
                raise ValidationError("Select at least one visual element")
            subjects = []
            for elements in _deal_elements(checked, count):
                phrase = _join_phrases([strip_period(el.text) for el in elements])
                subjects.append((f"{phrase}, illustrating the topic '{topic}'", elements))
            return subjects

        raise ValidationError(f"Unsupported prompt source: {type(source).__name__}")
