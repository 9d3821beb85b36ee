"""
LLM Client
==========
Asynchronous completion service used for incident analysis, model-assisted
fix application (Tier 3) and judge verdicts.

    complete(prompt, output_model, ...) -> output_model instance

Strict Output Contract:
    - Every request names a pydantic output model; its JSON schema is sent to
      the provider (json_schema response format where supported, JSON mode
      plus an inline schema otherwise)
    - The reply must parse as a JSON object that validates against the model
    - Markdown code fences are stripped; nothing else is repaired
    - Free-form text, missing fields or wrong types are failures, never
      "best effort" results

Provider Fallback:
    - Providers come from LLMRouter in health order
    - Each provider gets max_retries attempts; HTTP 429 skips straight to the
      next provider
    - When every provider fails, CompletionError is raised

Tool Use:
    - When a Code Access Gateway is passed, its tools are offered to the
      model and tool calls are executed in a bounded loop (MAX_TOOL_ROUNDS);
      the final round is sent without tools to force an answer
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from autofix.core.config import MAX_TOOL_ROUNDS
from autofix.core.errors import CompletionError, ToolArgumentError
from autofix.llm.router import LLMRouter, ProviderConfig
from autofix.llm.tool_schemas import build_tool_definitions

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class CompletionService(Protocol):
    async def complete(
        self,
        prompt: str,
        output_model: Type[T],
        system_prompt: str = "",
        tools: Any = None,
        fast: bool = False,
    ) -> T:
        ...


# ---------------------------------------------------------------------------
# LLM Response
# ---------------------------------------------------------------------------
@dataclass
class LLMResponse:
    """Outcome of one provider attempt."""
    parsed: Optional[BaseModel]
    provider_name: str
    raw_response: str = ""
    success: bool = True
    error: str = ""


def _strip_fences(raw: str) -> str:
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.find("\n")
        if first_newline != -1:
            cleaned = cleaned[first_newline + 1:]
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3].rstrip()
    return cleaned


def parse_structured_response(raw: str, output_model: Type[BaseModel], provider_name: str) -> LLMResponse:
    """
    Strictly validate a provider reply against `output_model`.

    Parameters
    ----------
    raw : str
        Raw message content returned by the provider.
    output_model : type of BaseModel
        Expected output schema.
    provider_name : str
        Provider that produced the reply.

    Returns
    -------
    LLMResponse
        success=False with `error` set when the reply is empty, not JSON,
        not an object, or fails model validation.
    """
    if not raw or not raw.strip():
        return LLMResponse(None, provider_name, raw, success=False, error="Empty response")

    cleaned = _strip_fences(raw)
    try:
        data = json.loads(cleaned)
    except (json.JSONDecodeError, ValueError) as e:
        return LLMResponse(None, provider_name, raw, success=False, error=f"Response is not valid JSON: {e}")

    if not isinstance(data, dict):
        return LLMResponse(None, provider_name, raw, success=False, error="Expected JSON object")

    try:
        parsed = output_model.model_validate(data)
    except ValidationError as e:
        return LLMResponse(
            None, provider_name, raw, success=False,
            error=f"Schema validation failed: {e.error_count()} error(s)",
        )
    return LLMResponse(parsed, provider_name, raw)


def _schema_instruction(output_model: Type[BaseModel]) -> str:
    schema = json.dumps(output_model.model_json_schema(), indent=2)
    return (
        "\n\nRespond with a single JSON object only, no prose and no code fences. "
        f"It must validate against this JSON schema:\n{schema}"
    )


# ---------------------------------------------------------------------------
# LLM Client
# ---------------------------------------------------------------------------
class LLMClient:
    """
    Async HTTP client for OpenAI-compatible providers.

    Usage:
        client = LLMClient(router)
        verdict = await client.complete(prompt, ValidationVerdict, system_prompt=JUDGE_SYSTEM_PROMPT)
        await client.close()
    """

    def __init__(self, router: Optional[LLMRouter] = None, max_tool_rounds: int = MAX_TOOL_ROUNDS) -> None:
        self.router = router or LLMRouter()
        self.max_tool_rounds = max_tool_rounds
        self._http: Optional[httpx.AsyncClient] = None

    async def _get_http(self) -> httpx.AsyncClient:
        """Lazy-initialise the HTTP client."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(60.0))
        return self._http

    async def close(self) -> None:
        if self._http and not self._http.is_closed:
            await self._http.aclose()
            self._http = None

    async def complete(
        self,
        prompt: str,
        output_model: Type[T],
        system_prompt: str = "",
        tools: Any = None,
        fast: bool = False,
    ) -> T:
        """
        Run one structured completion with provider fallback.

        Parameters
        ----------
        prompt : str
            User prompt.
        output_model : type of BaseModel
            Schema the reply must satisfy.
        system_prompt : str
            System instructions; the schema instruction is appended.
        tools : CodeAccessGateway, optional
            Connected gateway whose tools the model may call.
        fast : bool
            Use each provider's fast model.

        Returns
        -------
        BaseModel
            Validated instance of `output_model`.

        Raises
        ------
        CompletionError
            When no provider produced a schema-valid response.
        """
        errors: List[str] = []
        for provider in self.router.candidates():
            response = await self.call(prompt, system_prompt, output_model, provider, tools=tools, fast=fast)
            if response.success and response.parsed is not None:
                self.router.report_success(provider.name)
                return response.parsed
            self.router.report_failure(provider.name)
            errors.append(f"{provider.name}: {response.error}")

        raise CompletionError(
            f"No provider returned a valid {output_model.__name__}"
            + (f" ({'; '.join(errors)})" if errors else " (no provider configured)")
        )

    async def call(
        self,
        user_prompt: str,
        system_prompt: str,
        output_model: Type[BaseModel],
        provider: ProviderConfig,
        tools: Any = None,
        fast: bool = False,
    ) -> LLMResponse:
        """Send a prompt to one provider, retrying up to provider.max_retries."""
        last_error = ""
        for attempt in range(1, provider.max_retries + 1):
            try:
                raw = await self._call_openai_compatible(
                    user_prompt, system_prompt, output_model, provider, tools, fast,
                )
                response = parse_structured_response(raw, output_model, provider.name)
                if response.success:
                    return response
                last_error = response.error
                logger.warning("Provider %s attempt %d: %s", provider.name, attempt, response.error)

            except httpx.TimeoutException:
                last_error = "timeout"
                logger.warning("Provider %s attempt %d: timeout", provider.name, attempt)
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                last_error = f"HTTP {status}"
                logger.warning("Provider %s attempt %d: HTTP %d", provider.name, attempt, status)
                if status == 429:
                    break
            except httpx.HTTPError as e:
                last_error = str(e)
                logger.warning("Provider %s attempt %d: %s", provider.name, attempt, e)

        return LLMResponse(
            None, provider.name, success=False,
            error=last_error or f"All {provider.max_retries} retries exhausted",
        )

    async def _call_openai_compatible(
        self,
        user_prompt: str,
        system_prompt: str,
        output_model: Type[BaseModel],
        provider: ProviderConfig,
        tools: Any,
        fast: bool,
    ) -> str:
        http = await self._get_http()
        url = f"{provider.base_url}/chat/completions"
        headers = {
            "Authorization": f"Bearer {provider.api_key}",
            "Content-Type": "application/json",
        }
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": system_prompt + _schema_instruction(output_model)},
            {"role": "user", "content": user_prompt},
        ]
        if provider.supports_json_schema:
            response_format = {
                "type": "json_schema",
                "json_schema": {"name": output_model.__name__, "schema": output_model.model_json_schema()},
            }
        else:
            response_format = {"type": "json_object"}

        tool_definitions = build_tool_definitions(await tools.list_tools()) if tools is not None else []

        for round_number in range(self.max_tool_rounds + 1):
            payload: Dict[str, Any] = {
                "model": provider.model_for(fast),
                "messages": messages,
                "temperature": 0.1,
            }
            offer_tools = tool_definitions and round_number < self.max_tool_rounds
            if offer_tools:
                payload["tools"] = tool_definitions
            else:
                payload["response_format"] = response_format

            resp = await http.post(url, json=payload, headers=headers, timeout=provider.timeout_seconds)
            resp.raise_for_status()
            choices = resp.json().get("choices") or [{}]
            message = choices[0].get("message") or {}

            tool_calls = message.get("tool_calls") or []
            if not tool_calls or not offer_tools:
                return message.get("content") or ""

            messages.append({"role": "assistant", "content": message.get("content"), "tool_calls": tool_calls})
            for call in tool_calls:
                messages.append({
                    "role": "tool",
                    "tool_call_id": call.get("id", ""),
                    "content": await self._run_tool(tools, call),
                })
        return ""

    @staticmethod
    async def _run_tool(gateway: Any, call: Dict[str, Any]) -> str:
        function = call.get("function") or {}
        name = function.get("name", "")
        try:
            args = json.loads(function.get("arguments") or "{}")
            blocks = await gateway.call_tool(name, args)
        except (json.JSONDecodeError, ToolArgumentError) as e:
            # Reported back so the model can correct its call
            return f"Error: {e}"
        return "\n".join(block.text for block in blocks)
