"""Visual element brainstorming for a post topic.

Given a topic and a style template, the language model proposes short
"visual element" ideas the user can pick from before prompts are composed.
Regeneration passes the union of everything already shown or discarded as
``exclude`` so the model proposes new ideas; merging those lists is the
caller's job.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from pydantic import BaseModel, Field

from bannerworks.core.errors import ValidationError
from bannerworks.core.llm import StructuredCompletionClient
from bannerworks.core.models import IdeaSet, ImageTemplate, VisualElementIdea

logger = logging.getLogger(__name__)

MIN_IDEAS = 1
MAX_IDEAS = 20

_SYSTEM_PROMPT = (
    "You are an expert blog and social media banner designer. "
    "You will be given the title or topic of a post and the style of image that will be "
    "generated for it. Your job is to suggest concrete, simple visual elements that could "
    "be the central subject of the banner image. Each visual element is a short noun phrase "
    "of at most six words. DO NOT suggest text, words, letters, brands or logos."
)


class _VisualElementItem(BaseModel):
    visualElement: str = Field(..., min_length=1, description="A short visual element idea")


class _VisualElementsResponse(BaseModel):
    visualElements: list[_VisualElementItem] = Field(
        ..., min_length=1, description="Distinct visual element ideas"
    )


class _BrainstormResponse(BaseModel):
    mainIdeas: list[str] = Field(..., description="The key ideas conveyed by the post topic")
    visualElements: list[_VisualElementItem] = Field(
        ..., min_length=1, description="Distinct visual element ideas"
    )


def _validate(topic: str, count: int) -> None:
    if not topic or not topic.strip():
        raise ValidationError("A topic is required to generate ideas")
    if count < MIN_IDEAS or count > MAX_IDEAS:
        raise ValidationError(f"Idea count must be {MIN_IDEAS}-{MAX_IDEAS}, got {count}")


def _user_prompt(topic: str, template: ImageTemplate, count: int, exclude: list[str]) -> str:
    lines = [
        f"Suggest {count} different visual elements for a banner about: {topic.strip()}.",
        f"The image will be generated in the style of {template.style_description}.",
        f"Here is an example prompt in this style: {template.example_image_prompt}",
    ]
    if exclude:
        lines.append(
            "Do not suggest any of these, or close variations of them: " + ", ".join(exclude) + "."
        )
    return "\n".join(lines)


def _to_ideas(
    items: list[_VisualElementItem], exclude: list[str], count: int
) -> list[VisualElementIdea]:
    """Drop excluded and repeated ideas and cap the list at ``count``."""
    seen = {text.strip().lower() for text in exclude}
    ideas: list[VisualElementIdea] = []
    for item in items:
        idea = VisualElementIdea(text=item.visualElement.strip())
        if not idea.text or idea.key in seen:
            continue
        seen.add(idea.key)
        ideas.append(idea)
        if len(ideas) == count:
            break
    return ideas


class IdeaGenerator:
    """Ask the language model for visual element ideas."""

    def __init__(self, llm: StructuredCompletionClient) -> None:
        self._llm = llm

    async def generate_ideas(
        self,
        topic: str,
        template: ImageTemplate,
        count: int,
        exclude: Iterable[str] = (),
    ) -> list[VisualElementIdea]:
        """Return up to ``count`` new visual element ideas for ``topic``.

        Args:
            topic: Post title or topic
            template: Style template the image will use
            count: Number of ideas wanted (1-20)
            exclude: Idea texts already shown or discarded

        Returns:
            Unchecked, model-suggested ideas, none of which is in ``exclude``

        Raises:
            ValidationError: If the topic is empty or count is out of range
            UpstreamError: If the model call fails or the response is malformed
        """
        _validate(topic, count)
        excluded = [text for text in exclude if text and text.strip()]

        response = await self._llm.complete(
            system=_SYSTEM_PROMPT,
            user=_user_prompt(topic, template, count, excluded),
            function_name="generateVisualElements",
            description=f"Generates {count} distinct visual element ideas for a banner image",
            response_model=_VisualElementsResponse,
            temperature=1,
        )
        ideas = _to_ideas(response.visualElements, excluded, count)
        logger.info(f"Generated {len(ideas)} visual element ideas for topic {topic!r}")
        return ideas

    async def brainstorm(
        self,
        topic: str,
        template: ImageTemplate,
        count: int,
        keywords: Iterable[str] = (),
    ) -> IdeaSet:
        """Return the topic's main ideas together with visual element ideas.

        Raises:
            ValidationError: If the topic is empty or count is out of range
            UpstreamError: If the model call fails or the response is malformed
        """
        _validate(topic, count)
        prompt = _user_prompt(topic, template, count, [])
        keyword_list = [k.strip() for k in keywords if k and k.strip()]
        if keyword_list:
            prompt += "\nRelevant keywords: " + ", ".join(keyword_list) + "."
        prompt += "\nAlso list the two or three main ideas the post conveys."

        response = await self._llm.complete(
            system=_SYSTEM_PROMPT,
            user=prompt,
            function_name="generateBannerIdeas",
            description="Extracts the main ideas of a post and suggests visual elements for its banner",
            response_model=_BrainstormResponse,
            temperature=1,
        )
        main_ideas = [idea.strip() for idea in response.mainIdeas if idea.strip()]
        ideas = _to_ideas(response.visualElements, [], count)
        logger.info(
            f"Brainstormed {len(main_ideas)} main ideas and {len(ideas)} visual elements "
            f"for topic {topic!r}"
        )
        return IdeaSet(main_ideas=main_ideas, visual_elements=ideas)
