"""LLM provider integrations."""

from integrations.llm_provider import (
    LLMProvider, OpenAIProvider, AnthropicProvider,
    BoundModel, ModelChunk, get_llm_provider, parse_tool_arguments
)

__all__ = [
    "LLMProvider", "OpenAIProvider", "AnthropicProvider",
    "BoundModel", "ModelChunk", "get_llm_provider", "parse_tool_arguments"
]
