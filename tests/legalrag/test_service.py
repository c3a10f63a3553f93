"""
Tests for the knowledge-base service facade.

Tests verify:
- Disabled, blank and skipped questions short-circuit without KB traffic
- Accepted answers are cached per (question, mode); hedged ones are not
- KB outages read as low confidence, internal failures as errors
- Plain search clamps limits, normalizes text and never raises
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from legalrag.service import KnowledgeBaseService, response_cache_key, sanitize_user_text
from libs.common.settings import Settings

THEFT_QUESTION = "What is the penalty for theft under Article 308?"
FINAL_PAY_QUESTION = "Can my employer withhold my final pay after I resign from work?"


def hit(entry_id, similarity, **fields):
    data = {"entry_id": entry_id, "title": f"Entry {entry_id}", "similarity": similarity}
    data.update(fields)
    return data


@pytest.fixture
def service(settings, kb_client, fast_executor):
    return KnowledgeBaseService(settings, client=kb_client, executor=fast_executor)


class TestSanitizeUserText:
    def test_strips_ui_steering_sentence(self):
        text = "What is bail?\n\nThe user's input fits the current mode. Please continue the reply."
        assert sanitize_user_text(text) == "What is bail?"

    def test_collapses_whitespace(self):
        assert sanitize_user_text("a   b\n\n\nc") == "a b\nc"

    def test_none_and_fully_stripped_input(self):
        assert sanitize_user_text(None) == ""
        only_steering = "The user's input fits the current mode, reply."
        assert sanitize_user_text(only_steering) == only_steering


def test_response_cache_key_normalizes_question():
    assert response_cache_key("  What IS Bail? ", "B") == "what is bail?::B"


class TestChatShortCircuits:
    @pytest.mark.asyncio
    async def test_disabled(self, kb_client, fake_kb, fast_executor):
        settings = Settings(app_env="test", kb_api_url="http://kb.test", kb_enabled=False)
        service = KnowledgeBaseService(settings, client=kb_client, executor=fast_executor)

        response = await service.chat_with_knowledge_base("hello")

        assert response.answer == ""
        assert response.sources == []
        assert response.error == "Knowledge base is disabled"
        assert response.metadata.confidence == 0.0
        assert response.metadata.retrieval_method == "disabled"
        assert fake_kb.requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("question", [None, "", "   "])
    async def test_empty_question(self, service, fake_kb, question):
        response = await service.chat_with_knowledge_base(question)

        assert response.error == "Empty question"
        assert response.metadata.retrieval_method == "empty"
        assert fake_kb.requests == []

    @pytest.mark.asyncio
    async def test_greeting_is_skipped(self, service, fake_kb):
        response = await service.chat_with_knowledge_base("hello")

        assert response.metadata.skip_reason == "Greeting"
        assert response.metadata.retrieval_method == "none"
        assert response.error == ""
        assert fake_kb.requests == []


class TestChatFlow:
    @pytest.mark.asyncio
    async def test_accepted_answer_is_cached(self, service, fake_kb):
        citation_hit = hit("rpc-308", 0.85, canonical_citation="RPC Art. 308")
        fake_kb.search_results("vector", [citation_hit])
        fake_kb.search_results("fast-path", [citation_hit])
        fake_kb.route("POST /chat", httpx.Response(200, json={"answer": "Theft is punished under Article 309..."}))

        response = await service.chat_with_knowledge_base(THEFT_QUESTION, mode="A")

        assert response.answer == "Theft is punished under Article 309..."
        assert response.is_kb_first
        assert response.metadata.retrieval_method == "hybrid"
        assert response.metadata.confidence == pytest.approx(0.965)
        assert [s.entry_id for s in response.sources] == ["rpc-308"]
        assert fake_kb.calls("POST /kb/search:lexical") == []
        fast_body = fake_kb.body(fake_kb.calls("POST /kb/search:fast-path")[0])
        assert fast_body["statutes_referenced"] == ["RPC Art. 308"]

        request_count = len(fake_kb.requests)
        cached = await service.chat_with_knowledge_base(THEFT_QUESTION.lower() + "  ", mode="A")
        assert cached == response
        assert len(fake_kb.requests) == request_count

    @pytest.mark.asyncio
    async def test_cache_is_per_mode(self, service, fake_kb):
        citation_hit = hit("rpc-308", 0.85, canonical_citation="RPC Art. 308")
        fake_kb.search_results("vector", [citation_hit])
        fake_kb.search_results("fast-path", [citation_hit])
        fake_kb.route("POST /chat", httpx.Response(200, json={"answer": "Grounded answer"}))

        await service.chat_with_knowledge_base(THEFT_QUESTION, mode="A")
        await service.chat_with_knowledge_base(THEFT_QUESTION, mode="B")

        assert len(fake_kb.calls("POST /chat")) == 2

    @pytest.mark.asyncio
    async def test_low_confidence_is_not_cached(self, service, fake_kb):
        fake_kb.search_results("vector", [hit("labor-1", 0.1)])
        fake_kb.search_results("lexical", [])

        response = await service.chat_with_knowledge_base(FINAL_PAY_QUESTION)

        assert "Confidence: 9.0%" in response.answer
        assert response.metadata.kb_first is False
        assert response.error == ""
        assert [s.entry_id for s in response.sources] == ["labor-1"]
        assert fake_kb.calls("POST /chat") == []
        assert len(service.response_cache) == 0

    @pytest.mark.asyncio
    async def test_unreachable_kb_reads_as_low_confidence(self, service, fake_kb, sleep_recorder):
        fake_kb.route("POST /kb/search", httpx.ConnectError("connection refused"))

        response = await service.chat_with_knowledge_base(FINAL_PAY_QUESTION)

        assert "Confidence: 0.0%" in response.answer
        assert response.error == ""
        assert response.sources == []
        assert response.metadata.retrieval_method == "none"
        assert sleep_recorder.delays

    @pytest.mark.asyncio
    async def test_internal_failure_becomes_error(self, settings, kb_client, fake_kb, fast_executor):
        generator = MagicMock()
        generator.generate = AsyncMock(side_effect=RuntimeError("boom"))
        service = KnowledgeBaseService(settings, client=kb_client, generator=generator, executor=fast_executor)

        response = await service.chat_with_knowledge_base(FINAL_PAY_QUESTION)

        assert response.error == "KB service error: boom"
        assert response.metadata.retrieval_method == "error"
        assert response.metadata.confidence == 0.0


class TestSearch:
    @pytest.mark.asyncio
    async def test_limit_is_clamped_and_text_normalized(self, service, fake_kb):
        fake_kb.search_results(None, [hit("a", 0.7), hit("b", 0.4)])

        results = await service.search_knowledge_base("  What IS Theft?  ", limit=50)

        assert [e.entry_id for e in results] == ["a", "b"]
        body = fake_kb.body(fake_kb.calls("POST /kb/search")[0])
        assert body == {"limit": 5, "query": "what is theft?"}

    @pytest.mark.asyncio
    async def test_limit_has_floor_of_one(self, service, fake_kb):
        fake_kb.search_results(None, [])

        await service.search_knowledge_base("theft", limit=0)

        assert fake_kb.body(fake_kb.requests[0])["limit"] == 1

    @pytest.mark.asyncio
    async def test_short_query_returns_nothing(self, service, fake_kb):
        assert await service.search_knowledge_base("hi") == []
        assert await service.search_knowledge_base(None) == []
        assert fake_kb.requests == []

    @pytest.mark.asyncio
    async def test_repeated_search_is_cached(self, service, fake_kb):
        fake_kb.search_results(None, [hit("a", 0.7)])

        await service.search_knowledge_base("theft")
        await service.search_knowledge_base("THEFT")

        assert len(fake_kb.requests) == 1

    @pytest.mark.asyncio
    async def test_search_failure_returns_empty(self, service, fake_kb):
        fake_kb.route("POST /kb/search", httpx.Response(500))

        assert await service.search_knowledge_base("theft") == []

    @pytest.mark.asyncio
    async def test_has_relevant_information(self, service, fake_kb):
        fake_kb.search_results(None, [hit("a", 0.5)])
        assert await service.has_relevant_information("bail hearing") is True

        fake_kb.search_results(None, [hit("b", 0.1)])
        assert await service.has_relevant_information("weekend arrest") is False

        fake_kb.search_results(None, [])
        assert await service.has_relevant_information("something else") is False


class TestEntriesAndHealth:
    @pytest.mark.asyncio
    async def test_get_entry(self, service, fake_kb):
        fake_kb.route(
            "GET /kb/entries/rpc-308",
            httpx.Response(200, json={"success": True, "entry": {"entry_id": "rpc-308", "title": "Theft"}}),
        )

        entry = await service.get_knowledge_base_entry(" rpc-308 ")

        assert entry.entry_id == "rpc-308"
        assert entry.title == "Theft"

    @pytest.mark.asyncio
    async def test_unknown_entry_is_none(self, service, fake_kb):
        assert await service.get_knowledge_base_entry("missing") is None
        assert await service.get_knowledge_base_entry("  ") is None

    @pytest.mark.asyncio
    async def test_is_healthy(self, service, fake_kb):
        fake_kb.route("GET /health", httpx.Response(200, json={"status": "ok"}))
        assert await service.is_healthy() is True

        fake_kb.route("GET /health", httpx.Response(503))
        assert await service.is_healthy() is False

    @pytest.mark.asyncio
    async def test_disabled_service_is_unhealthy(self, kb_client, fake_kb, fast_executor):
        settings = Settings(app_env="test", kb_api_url="http://kb.test", kb_enabled=False)
        service = KnowledgeBaseService(settings, client=kb_client, executor=fast_executor)

        assert await service.is_healthy() is False
        assert fake_kb.requests == []

    @pytest.mark.asyncio
    async def test_redis_mirror_is_pinged_but_optional(self, settings, kb_client, fake_kb, fast_executor, redis_client):
        fake_kb.route("GET /health", httpx.Response(200, json={"status": "ok"}))
        service = KnowledgeBaseService(settings, client=kb_client, executor=fast_executor, redis_client=redis_client)
        assert await service.is_healthy() is True

        broken = MagicMock()
        broken.ping = AsyncMock(side_effect=ConnectionError("redis down"))
        degraded = KnowledgeBaseService(settings, client=kb_client, executor=fast_executor, redis_client=broken)

        assert await degraded.is_healthy() is True
        broken.ping.assert_awaited_once()


@pytest.mark.asyncio
async def test_default_client_can_fall_back_to_raw_key():
    settings = Settings(app_env="test", kb_api_url="http://kb.test", kb_api_key="shared-secret")
    service = KnowledgeBaseService(settings)

    assert service.client._api_key == "shared-secret"
    await service.aclose()
