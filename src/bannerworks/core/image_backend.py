"""Adapter for the external image generation service.

The adapter normalises every backend call:

- **Resolution mapping**: aspect-ratio and platform identifiers are mapped
  to the backend's resolution enumeration through the fixed table in
  :mod:`bannerworks.core.image_settings`.
- **Colour palette encoding**: brand hex colours become the backend's
  ``{"members": [{"color_hex": ...}]}`` structure.
- **Error classification**: HTTP 429, 5xx and transport failures are
  :class:`TransientError`; any other 4xx is :class:`PermanentError`; a
  successful response without an image URL is :class:`UpstreamError`.
- **Bounded retry**: a transient failure is retried once after
  ``retry_base_delay`` seconds.  If the retry fails too, the error is
  reported as a :class:`PermanentError` with ``retried=True``.

Nothing is persisted here.  The result is an ephemeral backend URL; storing
it is the orchestrator's job.

Wire Format
-----------
::

    POST {base_url}/generate
    Api-Key: <key>

    {"image_request": {"prompt": "...", "model": "V_2",
                       "magic_prompt_option": "OFF",
                       "resolution": "RESOLUTION_1536_640",
                       "color_palette": {"members": [{"color_hex": "#112233"}]}}}

    200 {"data": [{"url": "...", "seed": 123, "resolution": "...",
                   "style_type": "..."}]}
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import backoff
import httpx

from bannerworks.core.errors import ConfigurationError, PermanentError, TransientError, UpstreamError
from bannerworks.core.image_settings import BackendResolution, resolve_resolution
from bannerworks.core.models import ComposedPrompt, ImageResult

logger = logging.getLogger(__name__)

# One initial attempt plus one retry.
MAX_ATTEMPTS = 2


def _log_retry(details: dict[str, Any]) -> None:
    logger.warning(
        f"Transient image backend failure, retrying in {details['wait']:.1f}s "
        f"(attempt {details['tries']}): {details['exception']}"
    )


class ImageBackendAdapter:
    """Async client for the image generation backend."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        *,
        model: str = "V_2",
        magic_prompt_option: str = "OFF",
        timeout: float = 120.0,
        retry_base_delay: float = 1.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            base_url: Backend base URL
            api_key: Value for the ``Api-Key`` header
            model: Backend model identifier
            magic_prompt_option: Backend prompt rewriting switch
            timeout: Per-request timeout in seconds
            retry_base_delay: Wait before the single retry
            transport: Optional httpx transport, mainly for tests

        Raises:
            ConfigurationError: If no API key is configured
        """
        if not api_key:
            raise ConfigurationError("An image backend API key is required")
        self.model = model
        self.magic_prompt_option = magic_prompt_option
        self.retry_base_delay = retry_base_delay
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Api-Key": api_key, "Content-Type": "application/json"},
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def build_payload(
        self,
        prompt: ComposedPrompt,
        resolution: BackendResolution,
        color_palette: Sequence[str] | None = None,
    ) -> dict[str, Any]:
        """Build the JSON body for one generate call."""
        image_request: dict[str, Any] = {
            "prompt": prompt.text,
            "model": self.model,
            "magic_prompt_option": self.magic_prompt_option,
            "resolution": resolution.value,
        }
        if color_palette:
            image_request["color_palette"] = {
                "members": [{"color_hex": color} for color in color_palette]
            }
        return {"image_request": image_request}

    async def generate(
        self,
        prompt: ComposedPrompt,
        resolution: BackendResolution | str,
        color_palette: Sequence[str] | None = None,
    ) -> ImageResult:
        """Generate one image for ``prompt``.

        Args:
            prompt: Composed prompt to render
            resolution: Backend resolution, or an aspect-ratio/platform id
            color_palette: Hex colours to constrain the palette; defaults to
                the palette carried by the prompt

        Returns:
            The backend's image URL and metadata

        Raises:
            ConfigurationError: If the resolution identifier is unknown
            PermanentError: On a non-retryable failure, or a transient one
                that persisted after the retry
            UpstreamError: If the backend answered without an image URL
        """
        if not isinstance(resolution, BackendResolution):
            resolution = resolve_resolution(resolution)
        if color_palette is None:
            color_palette = prompt.color_palette

        payload = self.build_payload(prompt, resolution, color_palette)
        send = backoff.on_exception(
            backoff.expo,
            TransientError,
            max_tries=MAX_ATTEMPTS,
            factor=self.retry_base_delay,
            jitter=None,
            on_backoff=_log_retry,
        )(self._post_once)

        try:
            return await send(payload, resolution)
        except TransientError as e:
            logger.error(f"Image backend still failing after retry: {e}")
            raise PermanentError(
                f"{e} (after retry)", status_code=e.status_code, retried=True
            ) from e

    async def _post_once(self, payload: dict[str, Any], resolution: BackendResolution) -> ImageResult:
        """Perform a single backend request and classify its outcome."""
        try:
            response = await self._client.post("/generate", json=payload)
        except httpx.TransportError as e:
            raise TransientError(f"Image backend unreachable: {e}") from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise TransientError(
                f"Image backend responded with status {status}", status_code=status
            )
        if status >= 400:
            raise PermanentError(
                f"Image backend rejected the request with status {status}: {response.text[:200]}",
                status_code=status,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("Image backend returned invalid JSON", status_code=status) from e

        items = data.get("data") if isinstance(data, dict) else None
        item = items[0] if isinstance(items, list) and items else None
        url = item.get("url") if isinstance(item, dict) else None
        if not url:
            raise UpstreamError("No image URL in backend response", status_code=status)

        seed = item.get("seed")
        return ImageResult(
            url=url,
            resolution=item.get("resolution") or resolution.value,
            seed=int(seed) if isinstance(seed, int) else None,
            style_type=item.get("style_type"),
        )
