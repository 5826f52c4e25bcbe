"""
Tests for ai.py - Granite response parsing and the async client.

The client is exercised against a local aiohttp server that plays both the
IAM token endpoint and the watsonx chat endpoint.
"""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from ai import (
    FAILURE_ANALYSIS,
    FALLBACK_PROMPTS,
    FALLBACK_THEMES,
    GraniteClient,
    parse_analysis,
    parse_prompts,
    parse_themes,
)
from errors import CollaboratorFailure

MODEL_REPLY = """<think>
• Renewable Energy
• Wearables
• Outdoor Gear
</think>

<response>
1. **Implementation**: How could the panels survive rain?
2. **Market**: Who would pay a premium for this?
3. **Impact**: How much charging time is realistic?
</response>"""


# =============================================================================
# Parsing
# =============================================================================


class TestParsing:
    """Tests for theme/prompt extraction."""

    def test_bulleted_themes(self):
        assert parse_themes("\n• Healthcare\n• AI Ethics\n") == ["Healthcare", "AI Ethics"]

    def test_line_themes_without_bullets(self):
        assert parse_themes("1. Healthcare\n- AI Ethics\n\n") == ["Healthcare", "AI Ethics"]

    def test_numbered_prompts_keep_markdown(self):
        prompts = parse_prompts("1. **Ethics**: Is it fair?\n2. **Scale**: Could it grow?")
        assert prompts == ["**Ethics**: Is it fair?", "**Scale**: Could it grow?"]

    def test_multiline_prompt(self):
        prompts = parse_prompts("1. **One**: first line\ncontinued\n2. **Two**: second")
        assert prompts == ["**One**: first line\ncontinued", "**Two**: second"]

    def test_unnumbered_prompts(self):
        assert parse_prompts("What if?\nWhy not?") == ["What if?", "Why not?"]

    def test_full_reply(self):
        analysis = parse_analysis(MODEL_REPLY)

        assert analysis.themes == ["Renewable Energy", "Wearables", "Outdoor Gear"]
        assert analysis.prompts[0] == "**Implementation**: How could the panels survive rain?"
        assert len(analysis.prompts) == 3

    def test_missing_sections_use_defaults(self):
        analysis = parse_analysis("I could not follow the format.")

        assert analysis.themes == FALLBACK_THEMES
        assert analysis.prompts == FALLBACK_PROMPTS


# =============================================================================
# GraniteClient
# =============================================================================


def make_ibm_app(calls, reply=MODEL_REPLY, chat_status=200):
    async def token(request):
        form = await request.post()
        calls.append(("token", form["apikey"]))
        return web.json_response({"access_token": "tok-123", "expires_in": 3600})

    async def chat(request):
        body = await request.json()
        calls.append(("chat", request.headers.get("Authorization"), body))
        if chat_status != 200:
            return web.Response(status=chat_status, text="model unavailable")
        return web.json_response({"choices": [{"message": {"content": reply}}]})

    app = web.Application()
    app.router.add_post("/identity/token", token)
    app.router.add_post("/ml/v1/text/chat", chat)
    return app


def make_client(server, api_key="key-abc", fallback=False):
    return GraniteClient(
        api_key=api_key,
        project_id="proj-1",
        model_id="ibm/granite-test",
        chat_url=str(server.make_url("/ml/v1/text/chat")),
        iam_url=str(server.make_url("/identity/token")),
        timeout=5,
        fallback_on_failure=fallback,
    )


class TestGraniteClient:
    """Tests for the HTTP flow of the analyzer."""

    @pytest.mark.asyncio
    async def test_generate_parses_reply(self):
        calls = []
        server = TestServer(make_ibm_app(calls))
        await server.start_server()
        try:
            analysis = await make_client(server)("build a solar backpack")
        finally:
            await server.close()

        assert analysis.themes == ["Renewable Energy", "Wearables", "Outdoor Gear"]
        assert calls[0] == ("token", "key-abc")
        _, auth, body = calls[1]
        assert auth == "Bearer tok-123"
        assert body["model_id"] == "ibm/granite-test"
        assert body["project_id"] == "proj-1"
        assert body["messages"][1]["content"][0]["text"] == "build a solar backpack"

    @pytest.mark.asyncio
    async def test_token_is_cached(self):
        calls = []
        server = TestServer(make_ibm_app(calls))
        await server.start_server()
        try:
            client = make_client(server)
            await client.generate("one")
            await client.generate("two")
        finally:
            await server.close()

        assert [c[0] for c in calls] == ["token", "chat", "chat"]

    @pytest.mark.asyncio
    async def test_non_200_raises_collaborator_failure(self):
        server = TestServer(make_ibm_app([], chat_status=503))
        await server.start_server()
        try:
            with pytest.raises(CollaboratorFailure):
                await make_client(server).generate("idea")
        finally:
            await server.close()

    @pytest.mark.asyncio
    async def test_fallback_on_failure(self):
        server = TestServer(make_ibm_app([], chat_status=500))
        await server.start_server()
        try:
            analysis = await make_client(server, fallback=True).generate("idea")
        finally:
            await server.close()

        assert analysis == FAILURE_ANALYSIS

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        calls = []
        server = TestServer(make_ibm_app(calls))
        await server.start_server()
        try:
            with pytest.raises(CollaboratorFailure, match="not configured"):
                await make_client(server, api_key=None).generate("idea")
        finally:
            await server.close()

        assert calls == []

    @pytest.mark.asyncio
    async def test_unreachable_endpoint(self):
        client = GraniteClient(
            api_key="key",
            project_id="proj",
            model_id="m",
            chat_url="http://127.0.0.1:9/chat",
            iam_url="http://127.0.0.1:9/token",
            timeout=2,
        )

        with pytest.raises(CollaboratorFailure):
            await client.generate("idea")
