"""Integration tests for bannerworks.api.main - FastAPI REST API endpoints.

All tests use the FastAPI TestClient with a fake image backend and a fake
language model provider so no network access occurs.  Tests cover every
endpoint:

- ``GET /api/config`` - Configuration delivery.
- ``GET /api/templates`` - Template catalogue.
- ``POST /api/ideas`` and ``POST /api/ideas/brainstorm`` - Idea generation.
- ``POST /api/prompts/compose`` - Prompt preview.
- ``POST /api/generate`` - Batch image generation.
- ``GET/POST/DELETE /api/images...`` - Generated image records.
- ``GET/PUT /api/brand-theme`` - Brand theme.
- ``GET /api/credits`` - Credit balance.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from bannerworks.api.main import create_app
from bannerworks.core.errors import PermanentError
from bannerworks.core.idea_generator import IdeaGenerator
from bannerworks.core.prompt_drafter import PromptDrafter

HEADERS = {"X-User-Id": "u-1"}
OTHER_USER = {"X-User-Id": "u-2"}


@pytest.fixture
def test_client(test_config, store, fake_backend, llm_client):
    """TestClient over an app wired to the fakes."""
    app = create_app(
        test_config,
        store=store,
        idea_generator=IdeaGenerator(llm_client),
        prompt_drafter=PromptDrafter(llm_client),
        backend=fake_backend,
    )
    with TestClient(app) as client:
        yield client


@pytest.fixture
def bare_client(test_config, store):
    """TestClient over an app with no API keys configured."""
    with TestClient(create_app(test_config, store=store)) as client:
        yield client


def _topic_payload(**overrides) -> dict:
    """Build a valid compose/generate payload with optional overrides."""
    payload = {
        "source": "topic",
        "topic": "Beautiful Forms",
        "elements": [
            {"text": "wireframe", "is_checked": True},
            {"text": "clipboard", "is_checked": True, "is_user_submitted": True},
            {"text": "stopwatch", "is_checked": False},
        ],
        "template_id": "sketchy",
        "count": 2,
        "aspect_ratio": "21:9",
    }
    payload.update(overrides)
    return payload


# ---------------------------------------------------------------------------
# Configuration and templates.
# ---------------------------------------------------------------------------


class TestGetConfig:
    """Test GET /api/config."""

    def test_config_contents(self, test_client):
        resp = test_client.get("/api/config")
        assert resp.status_code == 200
        data = resp.json()
        assert "version" in data
        assert "sketchy" in {t["id"] for t in data["templates"]}
        assert "21:9" in data["aspect_ratios"]
        assert "photorealistic image" in data["styles"]
        assert data["max_outputs"] == 16
        assert data["idea_generation_enabled"] is True
        assert data["prompt_drafting_enabled"] is True
        assert data["image_generation_enabled"] is True

    def test_config_without_keys(self, bare_client):
        data = bare_client.get("/api/config").json()
        assert data["idea_generation_enabled"] is False
        assert data["prompt_drafting_enabled"] is False
        assert data["image_generation_enabled"] is False


class TestTemplates:
    def test_list_templates(self, test_client):
        resp = test_client.get("/api/templates")
        assert resp.status_code == 200
        sketchy = next(t for t in resp.json()["templates"] if t["id"] == "sketchy")
        assert sketchy["lora_trigger_word"] == "Sketch Sized"


# ---------------------------------------------------------------------------
# Authentication and credits.
# ---------------------------------------------------------------------------


class TestCredits:
    """Test GET /api/credits and the user header."""

    def test_missing_user_header(self, test_client):
        assert test_client.get("/api/credits").status_code == 401

    def test_balance(self, test_client, store):
        store.create_user("u-1", credits=7)
        resp = test_client.get("/api/credits", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json() == {"user_id": "u-1", "credits": 7}

    def test_unknown_user(self, test_client):
        resp = test_client.get("/api/credits", headers=HEADERS)
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "NOT_FOUND"


# ---------------------------------------------------------------------------
# Ideas.
# ---------------------------------------------------------------------------


class TestIdeas:
    """Test POST /api/ideas and POST /api/ideas/brainstorm."""

    def test_generate_ideas(self, test_client, fake_completions):
        fake_completions.respond_with(
            {"visualElements": [{"visualElement": "wireframe"}, {"visualElement": "ruler"}]}
        )
        resp = test_client.post(
            "/api/ideas",
            json={"topic": "Beautiful Forms", "template_id": "sketchy", "count": 2,
                  "exclude": ["ruler"]},
            headers=HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "visual_elements": [
                {"text": "wireframe", "is_checked": False, "is_user_submitted": False}
            ]
        }

    def test_empty_topic(self, test_client):
        resp = test_client.post(
            "/api/ideas", json={"topic": " ", "template_id": "sketchy"}, headers=HEADERS
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "VALIDATION_ERROR"

    def test_unknown_template(self, test_client):
        resp = test_client.post(
            "/api/ideas", json={"topic": "Forms", "template_id": "nope"}, headers=HEADERS
        )
        assert resp.status_code == 404

    def test_model_failure(self, test_client, fake_completions):
        fake_completions.respond_with({"unexpected": True})
        resp = test_client.post(
            "/api/ideas", json={"topic": "Forms", "template_id": "sketchy"}, headers=HEADERS
        )
        assert resp.status_code == 502
        assert resp.json()["detail"]["code"] == "UPSTREAM_ERROR"

    def test_not_configured(self, bare_client):
        resp = bare_client.post(
            "/api/ideas", json={"topic": "Forms", "template_id": "sketchy"}, headers=HEADERS
        )
        assert resp.status_code == 503

    def test_brainstorm(self, test_client, fake_completions):
        fake_completions.respond_with(
            {"mainIdeas": ["form design"], "visualElements": [{"visualElement": "wireframe"}]}
        )
        resp = test_client.post(
            "/api/ideas/brainstorm",
            json={"topic": "Beautiful Forms", "template_id": "sketchy", "keywords": ["ux"]},
            headers=HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json() == {"main_ideas": ["form design"], "visual_elements": ["wireframe"]}


# ---------------------------------------------------------------------------
# Prompt composition.
# ---------------------------------------------------------------------------


class TestCompose:
    """Test POST /api/prompts/compose."""

    def test_compose_from_topic(self, test_client):
        resp = test_client.post("/api/prompts/compose", json=_topic_payload(), headers=HEADERS)
        assert resp.status_code == 200
        prompts = resp.json()["prompts"]
        assert len(prompts) == 2
        assert prompts[0]["text"] != prompts[1]["text"]
        assert all(p["text"].startswith("Sketch Sized: ") for p in prompts)
        assert prompts[0]["source_elements"] == ["wireframe"]

    def test_compose_from_raw_prompt(self, test_client):
        payload = {"source": "prompt", "prompt": "A red fox.", "template_id": "sketchy", "count": 1}
        resp = test_client.post("/api/prompts/compose", json=payload, headers=HEADERS)
        assert resp.status_code == 200
        assert "A red fox. The left" in resp.json()["prompts"][0]["text"]

    def test_empty_raw_prompt(self, test_client):
        payload = {"source": "prompt", "prompt": "", "template_id": "sketchy"}
        resp = test_client.post("/api/prompts/compose", json=payload, headers=HEADERS)
        assert resp.status_code == 400

    def test_invalid_source(self, test_client):
        resp = test_client.post(
            "/api/prompts/compose", json=_topic_payload(source="other"), headers=HEADERS
        )
        assert resp.status_code == 422

    def test_brand_settings_applied(self, test_client):
        test_client.put(
            "/api/brand-theme",
            json={"preferred_styles": ["watercolor"], "mood": ["whimsical"]},
            headers=HEADERS,
        )
        resp = test_client.post(
            "/api/prompts/compose",
            json=_topic_payload(count=1, use_brand_settings=True),
            headers=HEADERS,
        )
        prompt = resp.json()["prompts"][0]
        assert prompt["style"] == "watercolor"
        assert prompt["mood"] == "whimsical"

    def test_compose_with_llm_drafting(self, test_client, fake_completions):
        fake_completions.respond_with(
            {
                "prompts": [
                    {"prompt": "A wireframe", "style": "ink", "mood": "calm", "lighting": "soft"},
                    {"prompt": "A clipboard", "style": "ink", "mood": "calm", "lighting": "soft"},
                ]
            }
        )
        resp = test_client.post(
            "/api/prompts/compose", json=_topic_payload(draft_with_llm=True), headers=HEADERS
        )
        assert resp.status_code == 200
        texts = [p["text"] for p in resp.json()["prompts"]]
        assert texts == ["Sketch Sized: A wireframe.", "Sketch Sized: A clipboard."]

    def test_llm_drafting_not_configured(self, bare_client):
        resp = bare_client.post(
            "/api/prompts/compose", json=_topic_payload(draft_with_llm=True), headers=HEADERS
        )
        assert resp.status_code == 503

    def test_llm_drafting_failure(self, test_client, fake_completions):
        fake_completions.omit_tool_call = True
        resp = test_client.post(
            "/api/prompts/compose", json=_topic_payload(draft_with_llm=True), headers=HEADERS
        )
        assert resp.status_code == 502


# ---------------------------------------------------------------------------
# Generation.
# ---------------------------------------------------------------------------


class TestGenerate:
    """Test POST /api/generate."""

    def test_generate_bills_per_image(self, test_client, store):
        store.create_user("u-1", credits=5)
        resp = test_client.post("/api/generate", json=_topic_payload(), headers=HEADERS)
        assert resp.status_code == 200
        data = resp.json()
        assert len(data["succeeded"]) == 2
        assert data["failed"] == []
        assert data["credits"] == 3
        for record in data["succeeded"]:
            assert record["resolution"] == "RESOLUTION_1536_640"
            assert record["post_topic"] == "Beautiful Forms"
            assert record["saved"] is False

    def test_partial_failure_reported(self, test_client, store, fake_backend):
        store.create_user("u-1", credits=5)
        fake_backend.fail_on("clipboard", PermanentError("rejected", status_code=400))
        data = test_client.post("/api/generate", json=_topic_payload(), headers=HEADERS).json()
        assert len(data["succeeded"]) == 1
        assert data["failed"][0]["error"]["code"] == "PERMANENT_ERROR"
        assert "clipboard" in data["failed"][0]["prompt"]["text"]
        assert data["credits"] == 4

    def test_zero_credits(self, test_client, store, fake_backend):
        store.create_user("u-1", credits=0)
        resp = test_client.post("/api/generate", json=_topic_payload(), headers=HEADERS)
        assert resp.status_code == 402
        assert resp.json()["detail"]["code"] == "CREDIT_EXHAUSTED"
        assert fake_backend.calls == []

    def test_unknown_aspect_ratio(self, test_client, store):
        store.create_user("u-1", credits=5)
        resp = test_client.post(
            "/api/generate", json=_topic_payload(aspect_ratio="5:4"), headers=HEADERS
        )
        assert resp.status_code == 400

    def test_brand_colours_sent_to_backend(self, test_client, store, fake_backend):
        store.create_user("u-1", credits=5)
        test_client.put("/api/brand-theme", json={"color_scheme": ["#000080"]}, headers=HEADERS)
        resp = test_client.post(
            "/api/generate",
            json=_topic_payload(count=1, use_brand_colors=True),
            headers=HEADERS,
        )
        assert resp.status_code == 200
        assert fake_backend.calls[0][2] == ("#000080",)
        assert "The color palette is navy blue." in resp.json()["succeeded"][0]["user_prompt"]

    def test_short_hex_colours_sent_normalised(self, test_client, store, fake_backend):
        store.create_user("u-1", credits=5)
        test_client.put(
            "/api/brand-theme", json={"color_scheme": ["f00", " 00ff00 "]}, headers=HEADERS
        )
        resp = test_client.post(
            "/api/generate",
            json=_topic_payload(count=1, use_brand_colors=True),
            headers=HEADERS,
        )
        assert resp.status_code == 200
        assert fake_backend.calls[0][2] == ("#FF0000", "#00FF00")
        assert "The color palette is red, lime green." in resp.json()["succeeded"][0]["user_prompt"]

    def test_generate_with_llm_drafting(self, test_client, store, fake_backend, fake_completions):
        store.create_user("u-1", credits=5)
        fake_completions.respond_with(
            {"prompts": [{"prompt": "A fox", "style": "ink", "mood": "calm", "lighting": "soft"}]}
        )
        resp = test_client.post(
            "/api/generate",
            json=_topic_payload(count=2, draft_with_llm=True),
            headers=HEADERS,
        )
        assert resp.status_code == 200
        assert sorted(r["user_prompt"] for r in resp.json()["succeeded"]) == [
            "Sketch Sized: A fox.",
            "Sketch Sized: A fox. Variation 2.",
        ]
        assert resp.json()["credits"] == 3

    def test_not_configured(self, bare_client, store):
        store.create_user("u-1", credits=5)
        resp = bare_client.post("/api/generate", json=_topic_payload(), headers=HEADERS)
        assert resp.status_code == 503
        assert store.get_credits("u-1") == 5


# ---------------------------------------------------------------------------
# Generated images.
# ---------------------------------------------------------------------------


class TestImages:
    """Test the generated image endpoints."""

    def _generate(self, client, store, count: int = 2) -> list[dict]:
        store.create_user("u-1", credits=10)
        resp = client.post("/api/generate", json=_topic_payload(count=count), headers=HEADERS)
        return resp.json()["succeeded"]

    def test_list_images(self, test_client, store):
        records = self._generate(test_client, store)
        resp = test_client.get("/api/images", headers=HEADERS)
        assert resp.status_code == 200
        assert {r["id"] for r in resp.json()["images"]} == {r["id"] for r in records}
        assert test_client.get("/api/images", headers=OTHER_USER).json()["images"] == []

    def test_get_image(self, test_client, store):
        (record,) = self._generate(test_client, store, count=1)
        resp = test_client.get(f"/api/images/{record['id']}", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json()["url"] == record["url"]
        assert test_client.get(f"/api/images/{record['id']}", headers=OTHER_USER).status_code == 404

    def test_save_image(self, test_client, store):
        (record,) = self._generate(test_client, store, count=1)
        resp = test_client.post(
            f"/api/images/{record['id']}/save",
            json={"url": "https://cdn.example/kept.png"},
            headers=HEADERS,
        )
        assert resp.status_code == 200
        assert resp.json()["saved"] is True
        assert resp.json()["url"] == "https://cdn.example/kept.png"

        saved = test_client.get("/api/images", params={"saved_only": True}, headers=HEADERS)
        assert [r["id"] for r in saved.json()["images"]] == [record["id"]]

    def test_save_without_body(self, test_client, store):
        (record,) = self._generate(test_client, store, count=1)
        resp = test_client.post(f"/api/images/{record['id']}/save", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json()["url"] == record["url"]

    def test_save_twice(self, test_client, store):
        (record,) = self._generate(test_client, store, count=1)
        test_client.post(f"/api/images/{record['id']}/save", headers=HEADERS)
        resp = test_client.post(f"/api/images/{record['id']}/save", headers=HEADERS)
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "ALREADY_SAVED"

    def test_save_unknown(self, test_client):
        assert test_client.post("/api/images/nope/save", headers=HEADERS).status_code == 404

    def test_delete_image(self, test_client, store):
        (record,) = self._generate(test_client, store, count=1)
        resp = test_client.delete(f"/api/images/{record['id']}", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "deleted": record["id"]}
        assert test_client.delete(f"/api/images/{record['id']}", headers=HEADERS).status_code == 404


# ---------------------------------------------------------------------------
# Brand theme.
# ---------------------------------------------------------------------------


class TestBrandTheme:
    """Test GET/PUT /api/brand-theme."""

    def test_default_theme_is_empty(self, test_client):
        resp = test_client.get("/api/brand-theme", headers=HEADERS)
        assert resp.status_code == 200
        assert resp.json() == {
            "user_id": "u-1",
            "color_scheme": [],
            "preferred_styles": [],
            "mood": [],
            "lighting": [],
        }

    def test_put_then_get(self, test_client):
        body = {"color_scheme": ["#112233"], "mood": ["dark"], "lighting": ["neon", "soft"]}
        assert test_client.put("/api/brand-theme", json=body, headers=HEADERS).status_code == 200
        theme = test_client.get("/api/brand-theme", headers=HEADERS).json()
        assert theme["color_scheme"] == ["#112233"]
        assert theme["lighting"] == ["neon", "soft"]

    def test_too_many_choices(self, test_client):
        body = {"mood": ["dark", "bright", "neutral", "peaceful"]}
        assert test_client.put("/api/brand-theme", json=body, headers=HEADERS).status_code == 422

    def test_colour_names_rejected(self, test_client):
        resp = test_client.put(
            "/api/brand-theme", json={"color_scheme": ["blue"]}, headers=HEADERS
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "VALIDATION_ERROR"
        assert test_client.get("/api/brand-theme", headers=HEADERS).json()["color_scheme"] == []

    def test_colours_stored_normalised(self, test_client):
        resp = test_client.put(
            "/api/brand-theme", json={"color_scheme": ["f00", "#00ff00"]}, headers=HEADERS
        )
        assert resp.status_code == 200
        assert resp.json()["color_scheme"] == ["#FF0000", "#00FF00"]
