"""Generation orchestration: credits, bounded fan-out and partial success.

:class:`GenerationOrchestrator` turns a :class:`GenerationRequest` into a
:class:`GenerationOutcome`:

1. **Validate** the request (prompts present, template known, output count
   at least one, aspect ratio mappable, brand colours are hex codes).
   Nothing external is called if validation fails.
2. **Pre-flight credit check**: the balance must be at least one.  A batch
   may start with fewer credits than requested outputs; each success is
   billed individually as it completes.
3. **Fan out** one backend call per prompt, at most ``max_concurrency`` at
   a time.
4. **Collect** each branch independently.  A success is billed and stored
   in one transaction (see :meth:`ImageStore.charge_and_create_image`); if
   the balance hit zero in the meantime the image is discarded and reported
   as :class:`CreditExhausted`.  A failure is recorded and the remaining
   branches carry on.  Once the balance is known to be exhausted, branches
   that have not reached the backend yet are reported as
   :class:`CreditExhausted` without making the call.

Only step 1 and step 2 raise.  Every other problem ends up in
``outcome.failed``.

Ordering
--------
Results are collected in completion order.  ``outcome.succeeded`` therefore
does not line up with ``request.prompts``; each record carries its own
prompt text in ``user_prompt``.  ``outcome.failed`` is also in completion
order.

Cancellation
------------
Branches run as independent tasks.  If the caller abandons the request, the
calls already dispatched still complete, are billed and are stored.  On
shutdown :meth:`GenerationOrchestrator.drain` waits for them, up to a grace
period.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from bannerworks.core.errors import (
    BannerworksError,
    ConfigurationError,
    CreditExhausted,
    UpstreamError,
    ValidationError,
)
from bannerworks.core.image_backend import ImageBackendAdapter
from bannerworks.core.image_settings import BackendResolution, resolve_resolution
from bannerworks.core.models import (
    ComposedPrompt,
    FailedGeneration,
    GeneratedImageRecord,
    GenerationOutcome,
    GenerationRequest,
)
from bannerworks.core.store import ImageStore, new_image_id

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationOrchestrator:
    """Run generation batches against the image backend and the store."""

    def __init__(
        self,
        store: ImageStore,
        backend: ImageBackendAdapter,
        *,
        max_concurrency: int = 3,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store: Persistence for credits and image records
            backend: Image backend adapter
            max_concurrency: Fan-out limit per batch
            clock: Source of record timestamps
        """
        if max_concurrency < 1:
            raise ConfigurationError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self._store = store
        self._backend = backend
        self.max_concurrency = max_concurrency
        self._clock = clock
        # Strong references so detached branches are not garbage collected
        self._inflight: set[asyncio.Task] = set()

    async def generate(self, request: GenerationRequest) -> GenerationOutcome:
        """Run one generation batch.

        Args:
            request: The batch to run

        Returns:
            Succeeded records and failed prompts

        Raises:
            ValidationError: If the request is malformed
            NotFoundError: If the user does not exist
            CreditExhausted: If the balance is zero before dispatch
        """
        resolution, palette = await self._validate(request)

        credits = await asyncio.to_thread(self._store.get_credits, request.user_id)
        if credits < 1:
            raise CreditExhausted(
                "Please buy more credits to generate images",
                details={"user_id": request.user_id, "credits": credits},
            )

        prompts = request.prompts[: request.requested_output_count]
        logger.info(
            f"Dispatching {len(prompts)} generations for user {request.user_id} "
            f"(credits={credits}, concurrency={self.max_concurrency})"
        )

        semaphore = asyncio.Semaphore(self.max_concurrency)
        exhausted = asyncio.Event()
        tasks = []
        for prompt in prompts:
            task = asyncio.create_task(
                self._run_branch(request, prompt, resolution, palette, semaphore, exhausted)
            )
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            tasks.append(task)

        outcome = GenerationOutcome()
        for next_done in asyncio.as_completed(tasks):
            result = await next_done
            if isinstance(result, GeneratedImageRecord):
                outcome.succeeded.append(result)
            else:
                outcome.failed.append(result)

        logger.info(
            f"Batch for user {request.user_id} finished: "
            f"{len(outcome.succeeded)} succeeded, {len(outcome.failed)} failed"
        )
        return outcome

    async def _validate(
        self, request: GenerationRequest
    ) -> tuple[BackendResolution, tuple[str, ...]]:
        if request.requested_output_count < 1:
            raise ValidationError(
                f"Requested output count must be at least 1, got {request.requested_output_count}"
            )
        if not request.prompts:
            raise ValidationError("A topic or prompt is required")
        if any(not prompt.text or not prompt.text.strip() for prompt in request.prompts):
            raise ValidationError("Prompts must not be empty")
        if len(request.prompts) < request.requested_output_count:
            raise ValidationError(
                f"{request.requested_output_count} outputs requested but only "
                f"{len(request.prompts)} prompts supplied"
            )
        try:
            resolution = resolve_resolution(request.aspect_ratio)
        except ConfigurationError as e:
            raise ValidationError(str(e), details=e.details) from e

        template = await asyncio.to_thread(self._store.get_template, request.template_id)
        if template is None:
            raise ValidationError(f"Unknown image template: {request.template_id}")

        palette = (
            request.brand_overrides.color_palette if request.brand_overrides is not None else ()
        )
        return resolution, palette

    async def _run_branch(
        self,
        request: GenerationRequest,
        prompt: ComposedPrompt,
        resolution: BackendResolution,
        palette: tuple[str, ...],
        semaphore: asyncio.Semaphore,
        exhausted: asyncio.Event,
    ) -> GeneratedImageRecord | FailedGeneration:
        """Generate, bill and store one image; never raises."""
        async with semaphore:
            if exhausted.is_set():
                return FailedGeneration(prompt, self._exhausted_error(request, dispatched=False))
            try:
                result = await self._backend.generate(
                    prompt, resolution, palette or prompt.color_palette
                )
            except BannerworksError as e:
                logger.warning(f"Generation failed for user {request.user_id}: {e}")
                return FailedGeneration(prompt, e)
            except Exception as e:
                logger.exception(f"Unexpected error generating image for user {request.user_id}")
                return FailedGeneration(prompt, UpstreamError(f"Unexpected generation error: {e}"))

            record = GeneratedImageRecord(
                id=new_image_id(),
                user_id=request.user_id,
                template_id=request.template_id,
                url=result.url,
                user_prompt=prompt.text,
                seed=result.seed,
                resolution=result.resolution,
                post_topic=request.post_topic,
                saved=False,
                created_at=self._clock(),
            )
            # Billed before the slot is released so queued branches see exhaustion
            try:
                charged = await asyncio.to_thread(self._store.charge_and_create_image, record)
            except Exception as e:
                logger.exception(f"Failed to store generated image for user {request.user_id}")
                return FailedGeneration(
                    prompt, UpstreamError(f"Failed to store generated image: {e}")
                )

            if not charged:
                exhausted.set()
                logger.info(f"Discarding image for user {request.user_id}: credits exhausted")
                return FailedGeneration(prompt, self._exhausted_error(request, dispatched=True))
            return record

    async def drain(self, timeout: float) -> int:
        """Wait for detached branches to finish, cancelling any still running.

        Called on shutdown before the backend client is closed, so images the
        backend already produced are billed and stored.

        Args:
            timeout: Seconds to wait before cancelling what is left

        Returns:
            Number of branches that had to be cancelled
        """
        if not self._inflight:
            return 0
        logger.info(f"Waiting for {len(self._inflight)} in-flight generations")
        _, pending = await asyncio.wait(set(self._inflight), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Cancelled {len(pending)} generations still running at shutdown")
        return len(pending)

    @staticmethod
    def _exhausted_error(request: GenerationRequest, *, dispatched: bool) -> CreditExhausted:
        return CreditExhausted(
            "Credits ran out before this image could be billed",
            details={"user_id": request.user_id, "dispatched": dispatched},
        )
