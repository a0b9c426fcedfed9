"""Core functionality for banner generation.

This module provides the components of the prompt-to-image pipeline:

- **IdeaGenerator**: Visual element brainstorming through the language model
- **PromptComposer**: Topic/raw prompt + template + brand -> image prompts
- **ImageBackendAdapter**: Normalised, retrying calls to the image backend
- **GenerationOrchestrator**: Credit-aware, bounded fan-out of a batch
- **RetentionSweeper**: Periodic removal of unsaved images
- **ImageStore**: SQLite persistence for users, templates, themes and images
- **BannerworksConfig**: Configuration management using Pydantic Settings

Architecture Overview
---------------------
The components are layered leaf to root:

1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - All settings prefixed with BANNERWORKS_ in .env files

2. **External Call Layer** (llm.py, image_backend.py):
   - Structured LLM completions validated against Pydantic models
   - httpx-based image backend client with a single bounded retry

3. **Composition Layer** (idea_generator.py, prompt_composer.py):
   - Idea lists for the user to pick from
   - Round-robin style/mood/lighting distribution across outputs

4. **Orchestration Layer** (orchestrator.py, retention.py):
   - Per-success billing guarded by a conditional update
   - Partial-failure tolerant batches
   - Time-based cleanup of ephemeral images

Usage Example
-------------
    from bannerworks.core import (
        FromTopic, GenerationOrchestrator, GenerationRequest, ImageBackendAdapter,
        ImageStore, PromptComposer, VisualElementIdea,
    )

    store = ImageStore("data/bannerworks.db")
    template = store.get_template("sketchy")
    prompts = PromptComposer().compose(
        FromTopic("Beautiful Forms", (VisualElementIdea("wireframe", is_checked=True),)),
        template,
        count=1,
    )
    orchestrator = GenerationOrchestrator(store, ImageBackendAdapter(url, key))
    outcome = await orchestrator.generate(
        GenerationRequest("user-1", "sketchy", prompts, "21:9", requested_output_count=1)
    )
"""

from bannerworks.core.config import BannerworksConfig, config
from bannerworks.core.errors import (
    BannerworksError,
    CreditExhausted,
    PermanentError,
    TransientError,
    UpstreamError,
    ValidationError,
)
from bannerworks.core.idea_generator import IdeaGenerator
from bannerworks.core.image_backend import ImageBackendAdapter
from bannerworks.core.models import (
    BrandOverrides,
    BrandTheme,
    ComposedPrompt,
    FromRawPrompt,
    FromTopic,
    GeneratedImageRecord,
    GenerationOutcome,
    GenerationRequest,
    ImageTemplate,
    VisualElementIdea,
)
from bannerworks.core.orchestrator import GenerationOrchestrator
from bannerworks.core.prompt_composer import PromptComposer
from bannerworks.core.retention import RetentionSweeper
from bannerworks.core.store import ImageStore

__all__ = [
    "BannerworksConfig",
    "BannerworksError",
    "BrandOverrides",
    "BrandTheme",
    "ComposedPrompt",
    "CreditExhausted",
    "FromRawPrompt",
    "FromTopic",
    "GeneratedImageRecord",
    "GenerationOrchestrator",
    "GenerationOutcome",
    "GenerationRequest",
    "IdeaGenerator",
    "ImageBackendAdapter",
    "ImageStore",
    "ImageTemplate",
    "PermanentError",
    "PromptComposer",
    "RetentionSweeper",
    "TransientError",
    "UpstreamError",
    "ValidationError",
    "VisualElementIdea",
    "config",
]
