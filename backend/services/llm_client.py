"""
LLM Client - one OpenAI SDK client per provider handle.

Anthropic, Google and xAI are reached through their OpenAI-compatible
endpoints, so a single wire format serves every provider. The orchestrator
works with plain dicts:

    {"message": {"role": "assistant", "content": "...", "tool_calls": [...]},
     "usage": {"promptTokens": n, "completionTokens": m}, "model": "..."}

Tool call arguments are dicts on our side and JSON strings on the wire;
tool results are stored as dicts and serialized on the way out.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import httpx
from openai import OpenAI

from services.providers import ModelHandle

logger = logging.getLogger(__name__)


def _encode_arguments(arguments: Any) -> str:
    if isinstance(arguments, str):
        return arguments
    return json.dumps(arguments or {})


def _decode_arguments(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Model sent unparseable tool arguments, using none: {raw[:200]}")
        return {}


def _to_wire(message: Dict[str, Any]) -> Dict[str, Any]:
    """One conversation entry in chat-completions shape."""
    role = message.get("role", "user")
    content = message.get("content", "")

    if role == "tool":
        return {
            "role": "tool",
            "tool_call_id": message.get("tool_call_id", "call_0"),
            "content": content if isinstance(content, str) else json.dumps(content),
        }

    calls = message.get("tool_calls") if role == "assistant" else None
    if not calls:
        return {"role": role, "content": content}

    wire_calls = []
    for index, call in enumerate(calls):
        function = call.get("function", call)
        wire_calls.append({
            "id": call.get("id", f"call_{index}"),
            "type": "function",
            "function": {"name": function.get("name", ""), "arguments": _encode_arguments(function.get("arguments"))},
        })
    # Empty assistant text must be null alongside tool_calls
    return {"role": role, "content": content or None, "tool_calls": wire_calls}


def _from_wire_tool_calls(message: Any) -> List[Dict[str, Any]]:
    return [
        {"id": call.id, "function": {"name": call.function.name, "arguments": _decode_arguments(call.function.arguments)}}
        for call in (getattr(message, "tool_calls", None) or [])
    ]


def _translate_usage(usage: Any) -> Dict[str, int]:
    if usage is None:
        return {"promptTokens": 0, "completionTokens": 0}
    return {
        "promptTokens": getattr(usage, "prompt_tokens", 0) or 0,
        "completionTokens": getattr(usage, "completion_tokens", 0) or 0,
    }


class LLMClient:
    """One OpenAI SDK client bound to a provider handle."""

    def __init__(self, handle: ModelHandle, timeout: float = 30.0):
        """
        Args:
            handle: Provider/model handle from the ProviderSelector
            timeout: SDK request timeout in seconds
        """
        self.handle = handle
        self._timeout = timeout
        # A missing key still yields a client; the first call fails instead.
        self._openai = OpenAI(
            base_url=handle.base_url,
            api_key=handle.api_key or "missing-credential",
            timeout=timeout,
            max_retries=0,
        )

    @property
    def model(self) -> str:
        return self.handle.model_id

    def is_healthy(self, timeout: float = 3.0) -> bool:
        """Cheap reachability check against the provider's model listing."""
        if not self.handle.available:
            return False
        base_url = (self.handle.base_url or "https://api.openai.com/v1").rstrip("/")
        try:
            resp = httpx.get(
                f"{base_url}/models",
                headers={"Authorization": f"Bearer {self.handle.api_key}"},
                timeout=timeout,
            )
            return resp.status_code == 200
        except httpx.HTTPError:
            return False

    def chat(
        self,
        messages: List[Dict] = None,
        tools: Optional[List[Dict]] = None,
        system: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Call the chat completions endpoint.

        Args:
            messages: Internal message dicts
            tools: OpenAI function-tool definitions
            system: Optional system prompt prepended to messages

        Returns:
            Dict with "message", "usage" and "model" keys
        """
        wire_messages = [_to_wire(m) for m in messages or []]
        if system:
            wire_messages.insert(0, {"role": "system", "content": system})

        kwargs: Dict[str, Any] = {
            "model": self.handle.model_id,
            "messages": wire_messages,
            "max_completion_tokens": self.handle.max_output_tokens,
            "temperature": self.handle.temperature,
        }
        if tools:
            kwargs["tools"] = tools

        response = self._openai.chat.completions.create(**kwargs)
        choice = response.choices[0].message if response.choices else None

        message: Dict[str, Any] = {"role": "assistant", "content": (choice.content if choice else "") or ""}
        tool_calls = _from_wire_tool_calls(choice)
        if tool_calls:
            message["tool_calls"] = tool_calls

        return {
            "message": message,
            "usage": _translate_usage(getattr(response, "usage", None)),
            "model": self.handle.model_id,
        }
