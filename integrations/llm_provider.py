"""
LLM provider abstraction supporting OpenAI and Anthropic.
Provides a unified streaming interface yielding text deltas and completed tool calls.
"""

import hashlib
import json
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Dict, Any, Optional
from openai import AsyncOpenAI
from anthropic import AsyncAnthropic

from config import settings
from models.schemas import Message, ToolCallDefinition
from observability import trace_logger


# OpenAI rejects tool-call ids longer than this
_OPENAI_MAX_TOOL_CALL_ID = 40
_OPENAI_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")


@dataclass
class ModelChunk:
    """One increment of a streamed model response."""
    text: str = ""
    tool_calls: List[ToolCallDefinition] = field(default_factory=list)


def parse_tool_arguments(raw: Optional[str]) -> Dict[str, Any]:
    """Decode streamed argument JSON, keeping undecodable payloads as raw text."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {"raw": raw}
    return parsed if isinstance(parsed, dict) else {"raw": parsed}


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    name: str = "base"

    def __init__(
        self,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ):
        self.model = model or settings.llm_model
        self.temperature = settings.llm_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.llm_max_tokens

    @abstractmethod
    def stream_chat(
        self,
        system_prompt: str,
        messages: List[Message],
        tools: Optional[List[Dict[str, Any]]] = None
    ) -> AsyncIterator[ModelChunk]:
        """Stream a response to the conversation, optionally offering tools."""
        pass


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    name = "openai"

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        api_key = api_key or settings.openai_api_key
        if not api_key:
            raise ValueError("OPENAI_API_KEY not configured")
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url or settings.openai_base_url)

    @staticmethod
    def _wire_id(call_id: Optional[str]) -> Optional[str]:
        if call_id is None or len(call_id) <= _OPENAI_MAX_TOOL_CALL_ID:
            return call_id
        return "call_" + hashlib.sha1(call_id.encode()).hexdigest()[:32]

    def _to_openai(self, message: Message) -> Dict[str, Any]:
        if message.role == "tool":
            return {
                "role": "tool",
                "tool_call_id": self._wire_id(message.tool_call_id),
                "content": message.content,
            }
        if message.role == "assistant" and message.tool_calls:
            return {
                "role": "assistant",
                "content": message.content or None,
                "tool_calls": [
                    {
                        "id": self._wire_id(call.id),
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                    }
                    for call in message.tool_calls
                ],
            }
        payload: Dict[str, Any] = {"role": message.role, "content": message.content}
        if message.role == "user" and message.name and _OPENAI_NAME_PATTERN.match(message.name):
            payload["name"] = message.name
        return payload

    @staticmethod
    def _finish(slot: Dict[str, Any]) -> ToolCallDefinition:
        return ToolCallDefinition(
            id=slot["id"] or f"call_{uuid.uuid4().hex[:24]}",
            name=slot["name"],
            arguments=parse_tool_arguments(slot["arguments"]),
        )

    async def stream_chat(
        self,
        system_prompt: str,
        messages: List[Message],
        tools: Optional[List[Dict[str, Any]]] = None
    ) -> AsyncIterator[ModelChunk]:
        request: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "system", "content": system_prompt}]
            + [self._to_openai(m) for m in messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
        }
        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"

        try:
            stream = await self.client.chat.completions.create(**request)
            pending: Dict[int, Dict[str, Any]] = {}
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta

                if delta is not None and delta.content:
                    yield ModelChunk(text=delta.content)

                for fragment in (delta.tool_calls if delta is not None else None) or []:
                    # A new index means every lower-indexed call is complete
                    finished = [i for i in pending if i < fragment.index]
                    if finished:
                        yield ModelChunk(tool_calls=[self._finish(pending.pop(i)) for i in sorted(finished)])
                    slot = pending.setdefault(
                        fragment.index, {"id": None, "name": "", "arguments": ""}
                    )
                    if fragment.id:
                        slot["id"] = fragment.id
                    if fragment.function is not None:
                        if fragment.function.name:
                            slot["name"] = fragment.function.name
                        if fragment.function.arguments:
                            slot["arguments"] += fragment.function.arguments

                if choice.finish_reason and pending:
                    yield ModelChunk(tool_calls=[self._finish(pending[i]) for i in sorted(pending)])
                    pending = {}

            if pending:
                yield ModelChunk(tool_calls=[self._finish(pending[i]) for i in sorted(pending)])
        except Exception as e:
            trace_logger.error_occurred(
                error_type="llm_stream_error",
                error_message=str(e),
                context={"provider": self.name, "model": self.model}
            )
            raise


class AnthropicProvider(LLMProvider):
    """Anthropic Claude messages provider."""

    name = "anthropic"

    def __init__(self, api_key: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        api_key = api_key or settings.anthropic_api_key
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY not configured")
        self.client = AsyncAnthropic(api_key=api_key)

    @staticmethod
    def _tool_schema(definition: Dict[str, Any]) -> Dict[str, Any]:
        function = definition.get("function", definition)
        return {
            "name": function["name"],
            "description": function.get("description", ""),
            "input_schema": function.get("parameters") or {"type": "object", "properties": {}},
        }

    @staticmethod
    def _blocks(message: Message) -> List[Dict[str, Any]]:
        if message.role == "tool":
            return [{
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": message.content,
            }]
        blocks: List[Dict[str, Any]] = []
        if message.content:
            blocks.append({"type": "text", "text": message.content})
        for call in message.tool_calls or []:
            blocks.append({
                "type": "tool_use",
                "id": call.id,
                "name": call.name,
                "input": call.arguments,
            })
        return blocks

    def _to_anthropic(self, system_prompt: str, messages: List[Message]):
        """Split out system text and merge consecutive same-role turns."""
        system_parts = [system_prompt]
        converted: List[Dict[str, Any]] = []
        for message in messages:
            if message.role == "system":
                system_parts.append(message.content)
                continue
            role = "assistant" if message.role == "assistant" else "user"
            blocks = self._blocks(message)
            if not blocks:
                continue
            if converted and converted[-1]["role"] == role:
                converted[-1]["content"].extend(blocks)
            else:
                converted.append({"role": role, "content": blocks})
        return "\n\n".join(p for p in system_parts if p), converted

    async def stream_chat(
        self,
        system_prompt: str,
        messages: List[Message],
        tools: Optional[List[Dict[str, Any]]] = None
    ) -> AsyncIterator[ModelChunk]:
        system, converted = self._to_anthropic(system_prompt, messages)
        request: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": system,
            "messages": converted,
        }
        if tools:
            request["tools"] = [self._tool_schema(t) for t in tools]

        try:
            async with self.client.messages.stream(**request) as stream:
                current: Optional[Dict[str, Any]] = None
                async for event in stream:
                    if event.type == "content_block_start" and event.content_block.type == "tool_use":
                        current = {
                            "id": event.content_block.id,
                            "name": event.content_block.name,
                            "arguments": "",
                        }
                    elif event.type == "content_block_delta":
                        if event.delta.type == "text_delta":
                            yield ModelChunk(text=event.delta.text)
                        elif event.delta.type == "input_json_delta" and current is not None:
                            current["arguments"] += event.delta.partial_json
                    elif event.type == "content_block_stop" and current is not None:
                        yield ModelChunk(tool_calls=[ToolCallDefinition(
                            id=current["id"],
                            name=current["name"],
                            arguments=parse_tool_arguments(current["arguments"]),
                        )])
                        current = None
        except Exception as e:
            trace_logger.error_occurred(
                error_type="llm_stream_error",
                error_message=str(e),
                context={"provider": self.name, "model": self.model}
            )
            raise


class BoundModel:
    """A provider paired with the tool definitions it may call."""

    def __init__(self, provider: LLMProvider, tools: Optional[List[Dict[str, Any]]] = None):
        self.provider = provider
        self.tools = tools or []

    def stream(self, system_prompt: str, messages: List[Message]) -> AsyncIterator[ModelChunk]:
        return self.provider.stream_chat(system_prompt, messages, self.tools or None)


def get_llm_provider(provider: Optional[str] = None, **kwargs) -> LLMProvider:
    """Factory function to get configured LLM provider."""
    provider_map = {
        "openai": OpenAIProvider,
        "anthropic": AnthropicProvider,
    }

    name = provider or settings.llm_provider
    provider_class = provider_map.get(name)
    if not provider_class:
        raise ValueError(f"Unknown LLM provider: {name}")

    return provider_class(**kwargs)
