# tests/test_llm_interface.py
import json

import httpx
import pytest
from core.errors import InferenceError
from core.llm_interface import InferenceClient, calculate_confidence, estimate_tokens

from models.narration_models import RequestType


def make_client(narrator_settings, handler):
    return InferenceClient(
        config=narrator_settings, transport=httpx.MockTransport(handler)
    )


def record_backoff(client):
    delays = []

    async def fake_backoff(delay):
        delays.append(delay)

    client._backoff_delay = fake_backoff
    return delays


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd", 4) == 1
    assert estimate_tokens("abcde", 4) == 2


def test_calculate_confidence_thresholds(narrator_settings):
    assert calculate_confidence("short", narrator_settings) == 0.3
    assert calculate_confidence("Who goes there?", narrator_settings) == 0.5
    long_text = "The wind howls through the broken shutters. " * 3
    assert calculate_confidence(long_text, narrator_settings) == 0.9
    assert calculate_confidence("A plain sentence without stops", narrator_settings) == 0.7


@pytest.mark.asyncio
async def test_generate_sends_profile_options(narrator_settings):
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"response": "  The door creaks open.  "})

    client = make_client(narrator_settings, handler)
    response = await client.generate(
        "Describe the door", RequestType.COMBAT_NARRATION, {"temperature": 0.2}
    )
    await client.aclose()

    payload = seen[0]
    assert payload["model"] == "combat-model"
    assert payload["stream"] is False
    assert payload["options"]["temperature"] == 0.2
    assert payload["options"]["num_predict"] == 150
    assert response.content == "The door creaks open."
    assert response.metadata.model_used == "combat-model"
    assert response.metadata.token_count == estimate_tokens("The door creaks open.")
    assert client.usage.successful_requests == 1
    assert client.usage.total_attempts == 1


@pytest.mark.asyncio
async def test_generate_retries_with_exponential_backoff(narrator_settings):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, text="boom")

    client = make_client(narrator_settings, handler)
    delays = record_backoff(client)

    with pytest.raises(InferenceError) as exc_info:
        await client.generate("Describe the road", RequestType.SCENE_DESCRIPTION)
    await client.aclose()

    assert len(calls) == 3
    assert delays == [2.0, 4.0]
    assert exc_info.value.attempts == 3
    assert exc_info.value.status_code == 503
    assert client.usage.failed_requests == 1
    assert client.usage.total_attempts == 3


@pytest.mark.asyncio
async def test_generate_recovers_after_transient_failure(narrator_settings):
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503, text="loading")
        return httpx.Response(200, json={"response": "Recovered."})

    client = make_client(narrator_settings, handler)
    delays = record_backoff(client)
    response = await client.generate("Go on", RequestType.PLAYER_ACTION_RESPONSE)
    await client.aclose()

    assert response.content == "Recovered."
    assert delays == [2.0]
    assert client.usage.total_attempts == 2


@pytest.mark.asyncio
async def test_rate_limit_uses_fixed_delay(narrator_settings):
    def handler(request):
        return httpx.Response(429, text="slow down")

    client = make_client(narrator_settings, handler)
    delays = record_backoff(client)
    with pytest.raises(InferenceError) as exc_info:
        await client.generate("Go on", RequestType.PLAYER_ACTION_RESPONSE)
    await client.aclose()

    assert delays == [30.0, 30.0]
    assert exc_info.value.retry_after == 30.0


@pytest.mark.asyncio
async def test_connection_refused_uses_fixed_delay(narrator_settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(narrator_settings, handler)
    delays = record_backoff(client)
    with pytest.raises(InferenceError):
        await client.generate("Go on", RequestType.PLAYER_ACTION_RESPONSE)
    await client.aclose()

    assert delays == [10.0, 10.0]


@pytest.mark.asyncio
async def test_client_error_aborts_without_retry(narrator_settings):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(404, json={"error": "model not found"})

    client = make_client(narrator_settings, handler)
    delays = record_backoff(client)
    with pytest.raises(InferenceError) as exc_info:
        await client.generate("Go on", RequestType.NPC_DIALOGUE)
    await client.aclose()

    assert len(calls) == 1
    assert delays == []
    assert exc_info.value.attempts == 1


@pytest.mark.asyncio
async def test_missing_response_field_is_retried(narrator_settings):
    def handler(request):
        return httpx.Response(200, json={"done": True})

    client = make_client(narrator_settings, handler)
    record_backoff(client)
    with pytest.raises(InferenceError):
        await client.generate("Go on", RequestType.NPC_DIALOGUE)
    await client.aclose()
    assert client.request_count == 3


@pytest.mark.asyncio
async def test_empty_prompt_is_rejected(narrator_settings):
    def handler(request):  # pragma: no cover - must not be called
        raise AssertionError("backend should not be called")

    client = make_client(narrator_settings, handler)
    with pytest.raises(InferenceError) as exc_info:
        await client.generate("   ", RequestType.NPC_DIALOGUE)
    await client.aclose()
    assert exc_info.value.attempts == 0


@pytest.mark.asyncio
async def test_generate_stream_forwards_chunks(narrator_settings):
    lines = [
        {"response": "The ", "done": False},
        {"response": "gate ", "done": False},
        {"response": "opens.", "done": True},
    ]

    def handler(request):
        assert json.loads(request.content)["stream"] is True
        body = "\n".join(json.dumps(line) for line in lines) + "\n"
        return httpx.Response(200, content=body.encode("utf-8"))

    client = make_client(narrator_settings, handler)
    chunks = []
    response = await client.generate_stream(
        "Open the gate", RequestType.PLAYER_ACTION_RESPONSE, chunks.append
    )
    await client.aclose()

    assert chunks == ["The ", "gate ", "opens."]
    assert response.content == "The gate opens."


@pytest.mark.asyncio
async def test_health_and_list_models(narrator_settings):
    def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(
            200, json={"models": [{"name": "story-model"}, {"name": "combat-model"}]}
        )

    client = make_client(narrator_settings, handler)
    assert await client.health() is True
    assert await client.list_models() == ["story-model", "combat-model"]
    await client.aclose()


@pytest.mark.asyncio
async def test_health_reports_false_when_unreachable(narrator_settings):
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    client = make_client(narrator_settings, handler)
    assert await client.health() is False
    assert await client.list_models() == []
    await client.aclose()


@pytest.mark.asyncio
async def test_load_model_requests_single_token(narrator_settings):
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"response": "ok"})

    client = make_client(narrator_settings, handler)
    assert await client.load_model("story-model") is True
    await client.aclose()
    assert seen[0]["options"] == {"num_predict": 1}


@pytest.mark.asyncio
async def test_get_model_info_raises_on_failure(narrator_settings):
    def handler(request):
        return httpx.Response(404, json={"error": "unknown"})

    client = make_client(narrator_settings, handler)
    with pytest.raises(InferenceError):
        await client.get_model_info("ghost-model")
    await client.aclose()


@pytest.mark.asyncio
async def test_get_model_info_is_memoised(narrator_settings):
    calls = []

    def handler(request):
        calls.append(json.loads(request.content))
        return httpx.Response(200, json={"details": {"family": "qwen2"}})

    client = make_client(narrator_settings, handler)
    first = await client.get_model_info("story-model")
    second = await client.get_model_info("story-model")
    await client.aclose()

    assert first == second == {"details": {"family": "qwen2"}}
    assert calls == [{"name": "story-model"}]


@pytest.mark.asyncio
async def test_update_config_rebuilds_http_client(narrator_settings):
    def handler(request):
        return httpx.Response(200, json={"models": []})

    client = make_client(narrator_settings, handler)
    old_http = client._client
    await client.update_config(OLLAMA_URL="http://other.test", LLM_RETRY_ATTEMPTS=5)

    assert client.config.LLM_RETRY_ATTEMPTS == 5
    assert str(client._client.base_url).startswith("http://other.test")
    assert old_http.is_closed
    assert await client.health() is True
    await client.aclose()
