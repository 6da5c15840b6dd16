"""Chat completion clients with tool calling for each supported provider.

Messages use the OpenAI chat shape (``role``/``content``/``tool_calls``/
``tool_call_id``) everywhere; provider clients convert at the edge.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Protocol
from urllib import error, request

from pydantic import BaseModel, Field

from agent_conductor.config.models import AIConfig

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "anthropic": "claude-opus-4-20250514",
    "openai-compatible": "gpt-4o",
    "ollama": "llama3.2",
}


class ChatToolCall(BaseModel):
    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ChatCompletion(BaseModel):
    text: str | None = None
    tool_calls: list[ChatToolCall] = Field(default_factory=list)


class ChatClientError(RuntimeError):
    """Provider failure carrying a message that is safe to show to the user."""

    def __init__(self, message: str, *, status_code: int | None = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retryable = retryable


class ChatClient(Protocol):
    def complete(
        self,
        *,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> ChatCompletion: ...


class _HttpChatClient:
    def __init__(
        self,
        *,
        model: str,
        timeout_s: float = 60.0,
        max_retries: int = 2,
        backoff_s: float = 2.0,
    ) -> None:
        self.model = model
        self.timeout_s = timeout_s
        self.max_retries = max(0, max_retries)
        self.backoff_s = max(0.0, backoff_s)

    def _request_with_retry(self, fn: Callable[[], ChatCompletion]) -> ChatCompletion:
        last_error: ChatClientError | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return fn()
            except ChatClientError as exc:
                last_error = exc
                logger.warning(
                    "LLM request failed attempt=%d/%d model=%s status=%s reason=%s",
                    attempt + 1,
                    self.max_retries + 1,
                    self.model,
                    exc.status_code,
                    exc.message,
                )
                if not exc.retryable or attempt >= self.max_retries:
                    break
                delay = 5.0 * (attempt + 1) if exc.status_code == 429 else self.backoff_s * (attempt + 1)
                if delay > 0:
                    time.sleep(delay)
        if last_error is None:
            raise ChatClientError("LLM request failed with unknown error")
        raise last_error

    def _post_json(self, url: str, body: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        req = request.Request(
            url=url,
            data=json.dumps(body).encode("utf-8"),
            method="POST",
            headers={"Content-Type": "application/json", **headers},
        )
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                raw = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raw_error = exc.read().decode("utf-8", errors="replace")
            raise ChatClientError(
                parse_api_error(exc.code, raw_error),
                status_code=exc.code,
                retryable=is_retryable(exc.code, raw_error),
            ) from exc
        except error.URLError as exc:
            raise ChatClientError(
                f"Cannot reach the AI provider: {exc.reason}", retryable=True
            ) from exc
        except TimeoutError as exc:
            raise ChatClientError("The AI provider timed out.", retryable=True) from exc

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ChatClientError("AI provider returned a non-JSON response") from exc
        if not isinstance(parsed, dict):
            raise ChatClientError("AI provider returned an unexpected response")
        return parsed


class OpenAIChatClient(_HttpChatClient):
    """OpenAI chat completions API, also used for OpenAI-compatible endpoints."""

    def __init__(self, *, api_key: str, base_url: str = OPENAI_BASE_URL, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")

    def complete(
        self,
        *,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> ChatCompletion:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "temperature": 0.7,
        }
        if tools:
            body["tools"] = to_openai_tools(tools)
            body["parallel_tool_calls"] = False

        def _call() -> ChatCompletion:
            response_json = self._post_json(
                f"{self.base_url}/chat/completions",
                body,
                {"Authorization": f"Bearer {self.api_key}"},
            )
            return parse_openai_response(response_json)

        return self._request_with_retry(_call)


class OllamaChatClient(_HttpChatClient):
    def __init__(self, *, base_url: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")

    def complete(
        self,
        *,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> ChatCompletion:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "stream": False,
        }
        if tools:
            body["tools"] = to_openai_tools(tools)

        def _call() -> ChatCompletion:
            return parse_ollama_response(self._post_json(f"{self.base_url}/api/chat", body, {}))

        return self._request_with_retry(_call)


class AnthropicChatClient(_HttpChatClient):
    def __init__(self, *, api_key: str, url: str = ANTHROPIC_URL, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.api_key = api_key
        self.url = url

    def complete(
        self,
        *,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> ChatCompletion:
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": 4096,
            "messages": to_anthropic_messages(messages),
            "temperature": 0.7,
        }
        if system_prompt:
            body["system"] = system_prompt
        if tools:
            body["tools"] = [
                {
                    "name": tool["name"],
                    "description": tool.get("description", ""),
                    "input_schema": tool.get("parameters") or {"type": "object", "properties": {}},
                }
                for tool in tools
            ]

        def _call() -> ChatCompletion:
            response_json = self._post_json(
                self.url,
                body,
                {"x-api-key": self.api_key, "anthropic-version": ANTHROPIC_VERSION},
            )
            return parse_anthropic_response(response_json)

        return self._request_with_retry(_call)


def build_chat_client(
    config: AIConfig,
    *,
    timeout_s: float = 60.0,
    max_retries: int = 2,
    backoff_s: float = 2.0,
) -> ChatClient:
    """Create the client for ``config.provider``."""
    options = {"timeout_s": timeout_s, "max_retries": max_retries, "backoff_s": backoff_s}
    provider = config.provider
    configured_model = config.default_model.strip()
    if provider == "openai":
        return OpenAIChatClient(
            api_key=config.openai_api_key,
            model=configured_model or DEFAULT_MODELS["openai"],
            **options,
        )
    if provider == "anthropic":
        return AnthropicChatClient(
            api_key=config.anthropic_api_key,
            model=configured_model or DEFAULT_MODELS["anthropic"],
            **options,
        )
    if provider == "openai-compatible":
        return OpenAIChatClient(
            api_key=config.openai_compatible_api_key,
            base_url=config.openai_compatible_base_url,
            model=config.openai_compatible_model.strip() or DEFAULT_MODELS["openai-compatible"],
            **options,
        )
    if provider == "ollama":
        model = configured_model.removeprefix("ollama-") or DEFAULT_MODELS["ollama"]
        return OllamaChatClient(base_url=config.ollama_base_url, model=model, **options)
    raise ValueError(f"Unsupported provider: {provider}")


def to_openai_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool["name"],
                "description": tool.get("description", ""),
                "parameters": tool.get("parameters") or {"type": "object", "properties": {}},
            },
        }
        for tool in tools
    ]


def to_anthropic_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert OpenAI-shaped messages to Anthropic content blocks."""
    converted: list[dict[str, Any]] = []
    for message in messages:
        role = message.get("role")
        if role == "system":
            continue
        if role == "assistant" and message.get("tool_calls"):
            content: list[dict[str, Any]] = []
            if message.get("content"):
                content.append({"type": "text", "text": message["content"]})
            for call in message["tool_calls"]:
                function = call.get("function", {})
                content.append(
                    {
                        "type": "tool_use",
                        "id": call.get("id", ""),
                        "name": function.get("name", ""),
                        "input": _safe_json_object(function.get("arguments")),
                    }
                )
            converted.append({"role": "assistant", "content": content})
        elif role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": message.get("tool_call_id", ""),
                "content": message.get("content") or "",
            }
            previous = converted[-1] if converted else None
            if (
                previous is not None
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
                and previous["content"]
                and previous["content"][0].get("type") == "tool_result"
            ):
                previous["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
        else:
            converted.append({"role": role, "content": message.get("content") or ""})
    return converted


def parse_openai_response(response_json: dict[str, Any]) -> ChatCompletion:
    choices = response_json.get("choices") or []
    if not choices:
        raise ChatClientError("Empty response from AI provider")
    message = choices[0].get("message") or {}
    tool_calls = [
        ChatToolCall(
            id=str(call.get("id", "")),
            name=str(call.get("function", {}).get("name", "")),
            args=_safe_json_object(call.get("function", {}).get("arguments")),
        )
        for call in message.get("tool_calls") or []
    ]
    return ChatCompletion(text=_text_content(message.get("content")), tool_calls=tool_calls)


def parse_ollama_response(response_json: dict[str, Any]) -> ChatCompletion:
    message = response_json.get("message")
    if not isinstance(message, dict):
        raise ChatClientError("Empty response from Ollama")
    stamp = int(time.time() * 1000)
    tool_calls = [
        ChatToolCall(
            id=f"ollama-tc-{stamp}-{index}",
            name=str(call.get("function", {}).get("name", "")),
            args=_safe_json_object(call.get("function", {}).get("arguments")),
        )
        for index, call in enumerate(message.get("tool_calls") or [])
    ]
    return ChatCompletion(text=message.get("content") or None, tool_calls=tool_calls)


def parse_anthropic_response(response_json: dict[str, Any]) -> ChatCompletion:
    if response_json.get("error"):
        err = response_json["error"]
        raise ChatClientError(
            err.get("message") or "Unknown error from Anthropic",
            retryable=err.get("type") == "overloaded_error",
        )
    text: str | None = None
    tool_calls: list[ChatToolCall] = []
    for block in response_json.get("content") or []:
        if block.get("type") == "text":
            text = (text or "") + block.get("text", "")
        elif block.get("type") == "tool_use":
            tool_calls.append(
                ChatToolCall(
                    id=str(block.get("id", "")),
                    name=str(block.get("name", "")),
                    args=block.get("input") or {},
                )
            )
    return ChatCompletion(text=text, tool_calls=tool_calls)


def parse_api_error(status_code: int, body: str) -> str:
    """Turn a provider error body into a short message for the conversation."""
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        parsed = None
    err = parsed.get("error") if isinstance(parsed, dict) else None
    message = code = ""
    if isinstance(err, dict):
        message = str(err.get("message") or err.get("msg") or "")
        code = str(err.get("code") or err.get("type") or "")
    if code == "tool_use_failed" or "Failed to call a function" in message:
        return "The AI model had trouble calling a tool. Retrying with adjusted parameters..."
    if code == "rate_limit_exceeded" or status_code == 429:
        return "Rate limited by the AI provider. Waiting before retrying..."
    if code in {"insufficient_quota", "billing_hard_limit_reached"}:
        return "API quota exceeded. Please check your API key billing."
    if code == "invalid_api_key" or status_code == 401:
        return "Invalid API key. Please check your AI settings."
    if code == "model_not_found" or status_code == 404:
        return "Model not found. Please check your AI model setting."
    if code == "context_length_exceeded":
        return "The conversation is too long for this model. Try starting a new conversation."
    if message:
        return message
    return f"Request failed (HTTP {status_code}). Please try again."


def is_retryable(status_code: int, body: str) -> bool:
    if status_code == 429 or status_code >= 500:
        return True
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        return False
    err = parsed.get("error") if isinstance(parsed, dict) else None
    return isinstance(err, dict) and err.get("code") == "overloaded"


def _text_content(content: Any) -> str | None:
    if isinstance(content, str):
        return content or None
    if isinstance(content, list):
        segments = [
            item["text"]
            for item in content
            if isinstance(item, dict) and isinstance(item.get("text"), str)
        ]
        merged = "".join(segments)
        return merged or None
    return None


def _safe_json_object(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
