"""Style vocabularies and the backend resolution table.

The style, mood and lighting enums are the pools the prompt composer rotates
through.  Their values are the exact phrases embedded in prompt text.

The resolution table maps the aspect-ratio and platform identifiers exposed
to the UI onto the backend's resolution enumeration.  It is a fixed lookup:
an identifier that is missing here is a configuration error and is rejected
before any backend call is dispatched.
"""

from __future__ import annotations

from enum import Enum

from bannerworks.core.errors import ConfigurationError


class ImageStyle(str, Enum):
    PHOTOREALISTIC = "photorealistic image"
    DIGITAL_ART = "digital art"
    OIL_PAINTING = "oil painting"
    WATERCOLOR = "watercolor"
    ILLUSTRATION = "illustration"
    PENCIL_SKETCH = "pencil sketch"
    THREE_D_RENDER = "3D render"
    POP_ART = "pop art image"
    MINIMALIST = "minimalist image"


class ImageMood(str, Enum):
    DRAMATIC = "dramatic"
    PEACEFUL = "peaceful"
    ENERGETIC = "energetic"
    MYSTERIOUS = "mysterious"
    WHIMSICAL = "whimsical"
    DARK = "dark"
    BRIGHT = "bright"
    NEUTRAL = "neutral"


class ImageLighting(str, Enum):
    NATURAL = "natural"
    STUDIO = "studio"
    DRAMATIC = "dramatic"
    SOFT = "soft"
    NEON = "neon"
    DARK = "dark"
    BRIGHT = "bright"
    CINEMATIC = "cinematic"


class BackendResolution(str, Enum):
    """Resolution identifiers accepted by the image backend."""

    SQUARE_1024 = "RESOLUTION_1024_1024"
    WIDE_1280_720 = "RESOLUTION_1280_720"
    WIDE_1344_704 = "RESOLUTION_1344_704"
    WIDE_1408_704 = "RESOLUTION_1408_704"
    BANNER_1536_640 = "RESOLUTION_1536_640"


# Aspect ratios and publishing platforms share one namespace.  Keys are
# matched case-insensitively.
RESOLUTION_TABLE: dict[str, BackendResolution] = {
    "1:1": BackendResolution.SQUARE_1024,
    "instagram": BackendResolution.SQUARE_1024,
    "16:9": BackendResolution.WIDE_1280_720,
    "twitter": BackendResolution.WIDE_1280_720,
    "facebook": BackendResolution.WIDE_1344_704,
    "hashnode": BackendResolution.WIDE_1344_704,
    "linkedin": BackendResolution.WIDE_1344_704,
    "2:1": BackendResolution.WIDE_1408_704,
    "medium": BackendResolution.WIDE_1408_704,
    "substack": BackendResolution.WIDE_1408_704,
    "21:9": BackendResolution.BANNER_1536_640,
    "devto": BackendResolution.BANNER_1536_640,
}


def resolve_resolution(aspect_ratio: str) -> BackendResolution:
    """Map an aspect-ratio or platform identifier to a backend resolution.

    Args:
        aspect_ratio: Identifier such as ``"16:9"`` or ``"linkedin"``.

    Returns:
        The matching :class:`BackendResolution`.

    Raises:
        ConfigurationError: If the identifier has no entry in the table.
    """
    key = (aspect_ratio or "").strip().lower()
    try:
        return RESOLUTION_TABLE[key]
    except KeyError:
        raise ConfigurationError(
            f"No backend resolution configured for aspect ratio '{aspect_ratio}'",
            details={"aspect_ratio": aspect_ratio, "supported": sorted(RESOLUTION_TABLE)},
        ) from None


def supported_aspect_ratios() -> list[str]:
    """Return the identifiers accepted by :func:`resolve_resolution`."""
    return list(RESOLUTION_TABLE)
