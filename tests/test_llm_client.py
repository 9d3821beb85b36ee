"""
LLM Client & Router Tests
=========================
Strict structured-output parsing, provider fallback, 429 handling, the
bounded tool loop and provider cooldown. HTTP goes through
httpx.MockTransport; no real provider is contacted.
"""
import asyncio
import json

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from autofix.core.errors import CompletionError
from autofix.llm.client import LLMClient, parse_structured_response
from autofix.llm.router import LLMRouter, ProviderConfig, ProviderHealth
from autofix.llm.tool_schemas import ParamType, ToolParam, ToolSpec
from autofix.models.fix_candidate import ValidationVerdict
from autofix.services.code_gateway import ContentBlock

PRIMARY = ProviderConfig(name="primary", api_key="k1", base_url="https://primary.test/v1", model="big",
                         fast_model="small", max_retries=2, supports_json_schema=True)
FALLBACK = ProviderConfig(name="fallback", api_key="k2", base_url="https://fallback.test/v1", model="other",
                          max_retries=1)


def _reply(content=None, tool_calls=None):
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return httpx.Response(200, json={"choices": [{"message": message}]})


def _client(handler, providers=(PRIMARY, FALLBACK)):
    client = LLMClient(LLMRouter(list(providers)), max_tool_rounds=2)
    client._http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------
def test_parse_accepts_fenced_json():
    raw = '```json\n{"score": "pass", "issues": []}\n```'
    response = parse_structured_response(raw, ValidationVerdict, "primary")
    assert response.success
    assert response.parsed.passed


@pytest.mark.parametrize("raw", [
    "",
    "The fix looks good to me.",
    '["pass"]',
    '{"score": "maybe"}',
    '{"issues": []}',
])
def test_parse_rejects_anything_not_matching_schema(raw):
    response = parse_structured_response(raw, ValidationVerdict, "primary")
    assert response.success is False
    assert response.parsed is None
    assert response.error


# ---------------------------------------------------------------------------
# Provider fallback
# ---------------------------------------------------------------------------
def test_primary_success_uses_json_schema_and_fast_model():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return _reply('{"score": "pass"}')

    async def run_test():
        client = _client(handler)
        verdict = await client.complete("judge this", ValidationVerdict, system_prompt="You judge.", fast=True)
        await client.close()
        return verdict

    verdict = asyncio.run(run_test())
    assert verdict.passed
    assert seen[0]["model"] == "small"
    assert seen[0]["response_format"]["type"] == "json_schema"
    assert seen[0]["messages"][0]["content"].startswith("You judge.")


def test_invalid_output_falls_back_to_next_provider():
    calls = {"primary": 0, "fallback": 0}

    def handler(request):
        if request.url.host == "primary.test":
            calls["primary"] += 1
            return _reply("Sure! The fix passes.")
        calls["fallback"] += 1
        assert json.loads(request.content)["response_format"] == {"type": "json_object"}
        return _reply('{"score": "fail", "issues": ["wrong line"], "feedback": "edit line 3"}')

    async def run_test():
        client = _client(handler)
        verdict = await client.complete("judge", ValidationVerdict)
        assert client.router.get_health("primary").consecutive_failures == 1
        await client.close()
        return verdict

    verdict = asyncio.run(run_test())
    assert verdict.feedback == "edit line 3"
    assert calls == {"primary": 2, "fallback": 1}


def test_rate_limit_skips_remaining_retries():
    calls = {"primary": 0}

    def handler(request):
        if request.url.host == "primary.test":
            calls["primary"] += 1
            return httpx.Response(429, json={"error": "rate limited"})
        return _reply('{"score": "pass"}')

    async def run_test():
        client = _client(handler)
        await client.complete("judge", ValidationVerdict)
        await client.close()

    asyncio.run(run_test())
    assert calls["primary"] == 1


def test_all_providers_failing_raises_completion_error():
    def handler(request):
        return httpx.Response(500, json={"error": "down"})

    async def run_test():
        client = _client(handler)
        with pytest.raises(CompletionError) as exc:
            await client.complete("judge", ValidationVerdict)
        await client.close()
        return str(exc.value)

    message = asyncio.run(run_test())
    assert "primary: HTTP 500" in message
    assert "fallback: HTTP 500" in message


def test_no_configured_provider_raises():
    async def run_test():
        client = LLMClient(LLMRouter([ProviderConfig(name="x", api_key="", base_url="", model="m")]))
        with pytest.raises(CompletionError):
            await client.complete("judge", ValidationVerdict)

    asyncio.run(run_test())


# ---------------------------------------------------------------------------
# Tool loop
# ---------------------------------------------------------------------------
def _gateway():
    gateway = MagicMock()
    gateway.list_tools = AsyncMock(return_value=[
        ToolSpec("read_file", "Read a file", [ToolParam("path", ParamType.STRING, "Path")]),
    ])
    gateway.call_tool = AsyncMock(return_value=[ContentBlock(text="const a = 1;")])
    return gateway


def test_tool_calls_are_executed_and_results_returned():
    bodies = []

    def handler(request):
        body = json.loads(request.content)
        bodies.append(body)
        if len(bodies) == 1:
            return _reply(tool_calls=[{
                "id": "call_1", "type": "function",
                "function": {"name": "read_file", "arguments": '{"path": "src/a.js"}'},
            }])
        return _reply('{"score": "pass"}')

    gateway = _gateway()

    async def run_test():
        client = _client(handler, providers=(PRIMARY,))
        verdict = await client.complete("analyse", ValidationVerdict, tools=gateway)
        await client.close()
        return verdict

    assert asyncio.run(run_test()).passed
    gateway.call_tool.assert_awaited_once_with("read_file", {"path": "src/a.js"})
    assert bodies[0]["tools"][0]["function"]["name"] == "read_file"
    tool_message = bodies[1]["messages"][-1]
    assert tool_message == {"role": "tool", "tool_call_id": "call_1", "content": "const a = 1;"}


def test_tool_loop_is_bounded_and_last_round_has_no_tools():
    bodies = []

    def handler(request):
        body = json.loads(request.content)
        bodies.append(body)
        if "tools" in body:
            return _reply(tool_calls=[{
                "id": f"call_{len(bodies)}", "type": "function",
                "function": {"name": "read_file", "arguments": "not json"},
            }])
        return _reply('{"score": "pass"}')

    gateway = _gateway()

    async def run_test():
        client = _client(handler, providers=(PRIMARY,))
        await client.complete("analyse", ValidationVerdict, tools=gateway)
        await client.close()

    asyncio.run(run_test())
    assert len(bodies) == 3
    assert "tools" not in bodies[-1]
    assert "response_format" in bodies[-1]
    gateway.call_tool.assert_not_awaited()
    assert bodies[1]["messages"][-1]["content"].startswith("Error:")


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------
def test_unconfigured_providers_are_never_candidates():
    router = LLMRouter([PRIMARY, ProviderConfig(name="nokey", api_key=" ", base_url="", model="m")])
    assert [p.name for p in router.candidates()] == ["primary"]


def test_provider_cooldown_and_recovery():
    health = ProviderHealth(max_failures=2)
    health.record_failure()
    assert health.is_healthy
    health.record_failure()
    assert not health.is_healthy
    for _ in range(health.cooldown_remaining):
        health.tick_cooldown()
    assert health.is_healthy
    assert health.consecutive_failures == 1


def test_unhealthy_provider_skipped_in_favour_of_fallback():
    router = LLMRouter([PRIMARY, FALLBACK])
    for _ in range(router.get_health("primary").max_failures):
        router.report_failure("primary")
    assert [p.name for p in router.candidates()] == ["fallback"]
    assert router.provider_health_state["primary"]["is_healthy"] is False
