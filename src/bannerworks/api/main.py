"""Bannerworks - FastAPI Application.

This module is the single entry point for the web application.  It defines
the FastAPI ``app`` instance, all REST API routes, and the ``main()`` CLI
function that launches the uvicorn server.

Architecture
------------
The application is a thin HTTP shell around :mod:`bannerworks.core`:

- **Configuration** comes from :class:`~bannerworks.core.config.BannerworksConfig`
  and the bundled ``templates.json`` catalogue, served to the frontend via
  ``GET /api/config``.
- **Idea generation** is performed by
  :class:`~bannerworks.core.idea_generator.IdeaGenerator` (language model).
- **LLM prompt drafting** is performed by
  :class:`~bannerworks.core.prompt_drafter.PromptDrafter` when a request asks
  for it; otherwise prompts come from
  :class:`~bannerworks.core.prompt_composer.PromptComposer`.
- **Image generation** is performed by
  :class:`~bannerworks.core.orchestrator.GenerationOrchestrator`, which bills
  one credit per stored image.
- **Persistence** uses a single SQLite database
  (:class:`~bannerworks.core.store.ImageStore`).
- **Retention** runs as a background task for the lifetime of the server.

Draft topic and prompt text never reach the server until the user asks for
ideas, prompts or images; the client sends it with each request.  The
calling user is identified by the ``X-User-Id`` header.

Endpoints
---------
========  ============================  ====================================
Method    Path                          Purpose
========  ============================  ====================================
GET       ``/api/config``               Templates, styles, aspect ratios
GET       ``/api/templates``            Image template catalogue
POST      ``/api/ideas``                Visual element ideas for a topic
POST      ``/api/ideas/brainstorm``     Main ideas plus visual elements
POST      ``/api/prompts/compose``      Preview the composed prompts
POST      ``/api/generate``             Generate an image batch
GET       ``/api/images``               Recent generated images
GET       ``/api/images/{id}``          Single generated image
POST      ``/api/images/{id}/save``     Add an image to the library
DELETE    ``/api/images/{id}``          Delete an image record
GET       ``/api/brand-theme``          Current brand theme
PUT       ``/api/brand-theme``          Create or replace the brand theme
GET       ``/api/credits``              Remaining credit balance
========  ============================  ====================================

Usage
-----
CLI (installed entry point)::

    bannerworks

Direct invocation::

    python -m bannerworks.api.main
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bannerworks import __version__
from bannerworks.api.models import (
    BrainstormRequest,
    BrandThemeRequest,
    ComposeRequest,
    GenerateRequest,
    IdeasRequest,
    SaveImageRequest,
)
from bannerworks.core.config import BannerworksConfig, config
from bannerworks.core.errors import (
    AlreadySavedError,
    BannerworksError,
    ConfigurationError,
    CreditExhausted,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from bannerworks.core.idea_generator import IdeaGenerator
from bannerworks.core.image_backend import ImageBackendAdapter
from bannerworks.core.image_settings import (
    ImageLighting,
    ImageMood,
    ImageStyle,
    supported_aspect_ratios,
)
from bannerworks.core.llm import StructuredCompletionClient
from bannerworks.core.models import (
    BrandOverrides,
    BrandTheme,
    ComposedPrompt,
    GenerationRequest,
    ImageTemplate,
)
from bannerworks.core.orchestrator import GenerationOrchestrator
from bannerworks.core.prompt_composer import MAX_PROMPTS, PromptComposer
from bannerworks.core.prompt_drafter import PromptDrafter
from bannerworks.core.retention import RetentionSweeper
from bannerworks.core.store import ImageStore, load_template_catalog

logger = logging.getLogger(__name__)

# Most specific class first; the first isinstance match wins.
_STATUS_BY_ERROR: list[tuple[type[BannerworksError], int]] = [
    (ValidationError, 400),
    (CreditExhausted, 402),
    (NotFoundError, 404),
    (AlreadySavedError, 409),
    (UpstreamError, 502),
    (ConfigurationError, 503),
]


def status_for_error(error: BannerworksError) -> int:
    """Map a domain error to its HTTP status code (500 when unmapped)."""
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


# ---------------------------------------------------------------------------
# Application factory and lifecycle.
# ---------------------------------------------------------------------------


def create_app(
    settings: BannerworksConfig | None = None,
    *,
    store: ImageStore | None = None,
    idea_generator: IdeaGenerator | None = None,
    prompt_drafter: PromptDrafter | None = None,
    backend: ImageBackendAdapter | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Services not passed in are built from ``settings`` on startup.  The
    language-model services and the image backend need API keys; when a key
    is missing the corresponding routes answer 503 instead of preventing
    startup.

    Args:
        settings: Configuration (defaults to the global ``config``)
        store: Pre-built image store
        idea_generator: Pre-built idea generator
        prompt_drafter: Pre-built language-model prompt drafter
        backend: Pre-built image backend adapter

    Returns:
        The configured application
    """
    settings = settings or config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Manage application startup and shutdown lifecycle.

        On startup:
            Opens the store, seeds the template catalogue, builds the
            language-model services and the orchestrator, and starts the
            retention sweeper.

        On shutdown:
            Stops the sweeper, waits for in-flight generations and closes the
            backend HTTP client if this application created it.
        """
        # --- Startup -----------------------------------------------------------
        app_store = store or ImageStore(settings.database_path)
        app_store.seed_templates(load_template_catalog(settings.data_dir / "templates.json"))
        app.state.store = app_store
        app.state.settings = settings
        app.state.composer = PromptComposer()

        app.state.idea_generator = idea_generator
        app.state.prompt_drafter = prompt_drafter
        if settings.openai_api_key and (idea_generator is None or prompt_drafter is None):
            llm = StructuredCompletionClient(
                api_key=settings.openai_api_key, model=settings.llm_model
            )
            app.state.idea_generator = idea_generator or IdeaGenerator(llm)
            app.state.prompt_drafter = prompt_drafter or PromptDrafter(llm)
        if app.state.idea_generator is None:
            logger.warning("No LLM API key configured; idea generation is disabled")

        owned_backend = None
        app_backend = backend
        if app_backend is None and settings.image_api_key:
            owned_backend = ImageBackendAdapter(
                settings.image_api_base_url,
                settings.image_api_key,
                model=settings.image_model,
                magic_prompt_option=settings.magic_prompt_option,
                timeout=settings.image_request_timeout,
                retry_base_delay=settings.retry_base_delay,
            )
            app_backend = owned_backend
        app.state.orchestrator = None
        if app_backend is not None:
            app.state.orchestrator = GenerationOrchestrator(
                app_store, app_backend, max_concurrency=settings.max_concurrency
            )
        else:
            logger.warning("No image backend API key configured; generation is disabled")

        sweeper_task = None
        if settings.enable_retention_sweeper:
            sweeper = RetentionSweeper(
                app_store,
                retention_hours=settings.retention_hours,
                interval_seconds=settings.retention_interval_seconds,
            )
            sweeper_task = asyncio.create_task(sweeper.run_forever())
        logger.info("Bannerworks services initialised.")

        yield  # Application runs here.

        # --- Shutdown ----------------------------------------------------------
        if sweeper_task is not None:
            sweeper_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper_task
        if app.state.orchestrator is not None:
            await app.state.orchestrator.drain(settings.shutdown_grace_seconds)
        if owned_backend is not None:
            await owned_backend.aclose()
        logger.info("Bannerworks services shut down.")

    app = FastAPI(
        title="Bannerworks",
        description="AI-assisted banner image generation API.",
        version=__version__,
        lifespan=lifespan,
    )

    # Allow cross-origin requests so the frontend can be served from a
    # different port during development.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BannerworksError)
    async def handle_domain_error(request: Request, exc: BannerworksError) -> JSONResponse:
        status = status_for_error(exc)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status, content={"detail": exc.to_dict()})

    _register_routes(app)
    return app


# ---------------------------------------------------------------------------
# Request helpers.
# ---------------------------------------------------------------------------


def current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Resolve the calling user from the ``X-User-Id`` header.

    Raises:
        HTTPException: 401 if the header is missing or blank.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id.strip()


def _require_template(store: ImageStore, template_id: str) -> ImageTemplate:
    template = store.get_template(template_id)
    if template is None:
        raise NotFoundError("ImageTemplate", template_id)
    return template


def _require_idea_generator(request: Request) -> IdeaGenerator:
    generator = request.app.state.idea_generator
    if generator is None:
        raise ConfigurationError("Idea generation is not configured")
    return generator


def _require_prompt_drafter(request: Request) -> PromptDrafter:
    drafter = request.app.state.prompt_drafter
    if drafter is None:
        raise ConfigurationError("Prompt drafting is not configured")
    return drafter


async def _compose(
    request: Request, user_id: str, req: ComposeRequest
) -> tuple[list[ComposedPrompt], BrandOverrides | None]:
    """Build prompts for ``req``, applying the user's brand theme if asked.

    Prompts come from the language model when ``req.draft_with_llm`` is set
    and from the sentence template otherwise.
    """
    store: ImageStore = request.app.state.store
    template = await asyncio.to_thread(_require_template, store, req.template_id)
    brand = None
    if req.use_brand_settings or req.use_brand_colors:
        brand = BrandOverrides.from_theme(
            await asyncio.to_thread(store.get_brand_theme, user_id),
            use_brand_settings=req.use_brand_settings,
            use_brand_colors=req.use_brand_colors,
        )
    if req.draft_with_llm:
        drafter = _require_prompt_drafter(request)
        return await drafter.draft(req.to_source(), template, req.count, brand), brand
    composer: PromptComposer = request.app.state.composer
    return composer.compose(req.to_source(), template, req.count, brand), brand


# ---------------------------------------------------------------------------
# Routes.
# ---------------------------------------------------------------------------


def _register_routes(app: FastAPI) -> None:
    """Attach all API routes to ``app``."""

    @app.get("/api/config")
    def get_config(request: Request) -> dict:
        """Return the application configuration for the frontend.

        The response includes:

        - ``version`` - API version string.
        - ``templates`` - the image template catalogue.
        - ``styles``, ``moods``, ``lightings`` - values accepted in a brand
          theme.
        - ``aspect_ratios`` - accepted aspect ratio and platform ids.
        - ``max_outputs`` - largest batch size.
        """
        store: ImageStore = request.app.state.store
        return {
            "version": __version__,
            "templates": [t.to_dict() for t in store.list_templates()],
            "styles": [s.value for s in ImageStyle],
            "moods": [m.value for m in ImageMood],
            "lightings": [lt.value for lt in ImageLighting],
            "aspect_ratios": supported_aspect_ratios(),
            "max_outputs": MAX_PROMPTS,
            "idea_generation_enabled": request.app.state.idea_generator is not None,
            "prompt_drafting_enabled": request.app.state.prompt_drafter is not None,
            "image_generation_enabled": request.app.state.orchestrator is not None,
        }

    @app.get("/api/templates")
    def list_templates(request: Request) -> dict:
        store: ImageStore = request.app.state.store
        return {"templates": [t.to_dict() for t in store.list_templates()]}

    @app.post("/api/ideas")
    async def generate_ideas(
        req: IdeasRequest,
        request: Request,
        user_id: str = Depends(current_user_id),
    ) -> dict:
        """Suggest visual element ideas for a topic.

        Ideas in ``exclude`` (already shown or discarded) are never returned.

        Raises:
            HTTPException: 400 for an empty topic or bad count, 404 for an
                unknown template, 502 when the language model fails.
        """
        generator = _require_idea_generator(request)
        template = await asyncio.to_thread(_require_template, request.app.state.store, req.template_id)
        ideas = await generator.generate_ideas(req.topic, template, req.count, exclude=req.exclude)
        return {
            "visual_elements": [
                {"text": i.text, "is_checked": i.is_checked, "is_user_submitted": i.is_user_submitted}
                for i in ideas
            ]
        }

    @app.post("/api/ideas/brainstorm")
    async def brainstorm(
        req: BrainstormRequest,
        request: Request,
        user_id: str = Depends(current_user_id),
    ) -> dict:
        generator = _require_idea_generator(request)
        template = await asyncio.to_thread(_require_template, request.app.state.store, req.template_id)
        idea_set = await generator.brainstorm(req.topic, template, req.count, keywords=req.keywords)
        return {
            "main_ideas": idea_set.main_ideas,
            "visual_elements": [i.text for i in idea_set.visual_elements],
        }

    @app.post("/api/prompts/compose")
    async def compose_prompts(
        req: ComposeRequest,
        request: Request,
        user_id: str = Depends(current_user_id),
    ) -> dict:
        """Preview the prompts a generation with these settings would use."""
        prompts, _ = await _compose(request, user_id, req)
        return {"prompts": [p.to_dict() for p in prompts]}

    @app.post("/api/generate")
    async def generate_images(
        req: GenerateRequest,
        request: Request,
        user_id: str = Depends(current_user_id),
    ) -> dict:
        """Generate a batch of banner images.

        This endpoint:

        1. Composes ``count`` distinct prompts from the topic or raw prompt.
        2. Applies the user's brand theme when opted in.
        3. Runs the batch through the orchestrator, which bills one credit
           per stored image.
        4. Returns the stored records, the failed prompts and the remaining
           balance.

        Returns:
            Dictionary with keys ``succeeded``, ``failed`` and ``credits``.

        Raises:
            HTTPException: 400 for invalid input, 402 when the user has no
                credits, 404 for an unknown user or template, 503 when the
                image backend is not configured.
        """
        orchestrator: GenerationOrchestrator | None = request.app.state.orchestrator
        if orchestrator is None:
            raise ConfigurationError("Image generation is not configured")

        store: ImageStore = request.app.state.store
        prompts, brand = await _compose(request, user_id, req)
        outcome = await orchestrator.generate(
            GenerationRequest(
                user_id=user_id,
                template_id=req.template_id,
                prompts=prompts,
                aspect_ratio=req.aspect_ratio,
                requested_output_count=req.count,
                brand_overrides=brand,
                post_topic=req.topic,
            )
        )
        result = outcome.to_dict()
        result["credits"] = await asyncio.to_thread(store.get_credits, user_id)
        return result

    @app.get("/api/images")
    def list_images(
        request: Request,
        user_id: str = Depends(current_user_id),
        saved_only: bool = Query(default=False),
        limit: int = Query(default=50, ge=1, le=200),
    ) -> dict:
        store: ImageStore = request.app.state.store
        records = store.list_recent_images(user_id, saved_only=saved_only, limit=limit)
        return {"images": [r.to_dict() for r in records]}

    @app.get("/api/images/{image_id}")
    def get_image(image_id: str, request: Request, user_id: str = Depends(current_user_id)) -> dict:
        store: ImageStore = request.app.state.store
        return store.get_image_record(image_id, user_id=user_id).to_dict()

    @app.post("/api/images/{image_id}/save")
    def save_image(
        image_id: str,
        request: Request,
        req: SaveImageRequest | None = None,
        user_id: str = Depends(current_user_id),
    ) -> dict:
        """Add a generated image to the user's library.

        Saved images are never removed by the retention sweeper.

        Raises:
            HTTPException: 404 if the image does not exist for this user, 409
                if it is already saved.
        """
        store: ImageStore = request.app.state.store
        url = req.url if req is not None else None
        return store.mark_image_saved(image_id, user_id, url=url).to_dict()

    @app.delete("/api/images/{image_id}")
    def delete_image(image_id: str, request: Request, user_id: str = Depends(current_user_id)) -> dict:
        store: ImageStore = request.app.state.store
        if not store.delete_image_record(image_id, user_id=user_id):
            raise NotFoundError("GeneratedImage", image_id)
        return {"success": True, "deleted": image_id}

    @app.get("/api/brand-theme")
    def get_brand_theme(request: Request, user_id: str = Depends(current_user_id)) -> dict:
        store: ImageStore = request.app.state.store
        theme = store.get_brand_theme(user_id) or BrandTheme(user_id=user_id)
        return theme.to_dict()

    @app.put("/api/brand-theme")
    def put_brand_theme(
        req: BrandThemeRequest,
        request: Request,
        user_id: str = Depends(current_user_id),
    ) -> dict:
        store: ImageStore = request.app.state.store
        return store.upsert_brand_theme(req.to_theme(user_id)).to_dict()

    @app.get("/api/credits")
    def get_credits(request: Request, user_id: str = Depends(current_user_id)) -> dict:
        store: ImageStore = request.app.state.store
        return {"user_id": user_id, "credits": store.get_credits(user_id)}


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host and port from :data:`~bannerworks.core.config.config` (which
    loads from ``BANNERWORKS_SERVER_HOST`` and ``BANNERWORKS_SERVER_PORT``
    environment variables).  Defaults to ``0.0.0.0:8000``.

    This function is registered as the ``bannerworks`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run(
        "bannerworks.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
