"""
Process-wide caches: persona prompts and tool-bound model clients.

Both are bounded and evict the oldest entry first. They are built once and
shared across requests; nothing request-specific is stored in them.
"""

import json
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Optional, Tuple, TypeVar

from agent.personas import build_prompt, sanitize_context
from config import settings
from integrations.llm_provider import BoundModel, get_llm_provider
from models.schemas import AgentType, RequestContext, UserProfile
from observability import trace_logger
from tools.base import ToolCatalog


K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class BoundedCache(Generic[K, V]):
    """Insertion-ordered cache evicting the oldest entry beyond capacity."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._entries: "OrderedDict[K, V]" = OrderedDict()

    def get(self, key: K) -> Optional[V]:
        return self._entries.get(key)

    def put(self, key: K, value: V) -> None:
        self._entries[key] = value
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)

    def get_or_create(self, key: K, factory: Callable[[], V]) -> V:
        value = self._entries.get(key)
        if value is None:
            value = factory()
            self.put(key, value)
        return value

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def circuit_breaker_warning(tool_name: Optional[str], failures: int) -> str:
    return (
        f'CIRCUIT BREAKER ALERT: Tool "{tool_name}" has failed {failures} times in a row. '
        "DO NOT call it again. Try a different approach or ask user for clarification."
    )


class PromptCache:
    """Memoises persona base prompts per sanitised context."""

    def __init__(self, capacity: Optional[int] = None, threshold: Optional[int] = None):
        self._cache: BoundedCache[str, str] = BoundedCache(capacity or settings.prompt_cache_size)
        self.threshold = threshold or settings.circuit_breaker_threshold

    @staticmethod
    def cache_key(agent: AgentType, ctx: RequestContext, profile: Optional[UserProfile]) -> str:
        safe = sanitize_context(ctx)
        profile_data = profile.model_dump(exclude_none=True) if profile else {}
        if safe.is_empty() and not profile_data:
            return f"{agent.value}:empty"
        fingerprint = json.dumps(
            {"ctx": safe.model_dump(exclude_none=True), "settings": profile_data},
            sort_keys=True,
        )
        return f"{agent.value}:{fingerprint}"

    def base_prompt(self, agent: AgentType, ctx: RequestContext, profile: Optional[UserProfile] = None) -> str:
        key = self.cache_key(agent, ctx, profile)
        return self._cache.get_or_create(key, lambda: build_prompt(agent, ctx, profile))

    def system_prompt(
        self,
        agent: AgentType,
        ctx: RequestContext,
        profile: Optional[UserProfile] = None,
        failures: int = 0,
        failing_tool: Optional[str] = None
    ) -> str:
        """Base prompt plus the uncached circuit-breaker warning when tripped."""
        prompt = self.base_prompt(agent, ctx, profile)
        if failures >= self.threshold:
            prompt += "\n\n" + circuit_breaker_warning(failing_tool, failures)
        return prompt

    def __len__(self) -> int:
        return len(self._cache)


ModelKey = Tuple[str, str, float, bool]


class ModelClientCache:
    """Model clients keyed by provider, model, temperature and tool binding."""

    def __init__(
        self,
        catalog: ToolCatalog,
        capacity: Optional[int] = None,
        factory: Optional[Callable[[bool], BoundModel]] = None
    ):
        self.catalog = catalog
        self._cache: BoundedCache[ModelKey, BoundModel] = BoundedCache(capacity or settings.model_cache_size)
        self._factory = factory or self._create

    def _create(self, with_tools: bool) -> BoundModel:
        provider = get_llm_provider()
        tools = self.catalog.definitions() if with_tools else []
        trace_logger.model_created(provider=provider.name, model=provider.model, tool_count=len(tools))
        return BoundModel(provider, tools)

    def get(self, with_tools: bool) -> BoundModel:
        key = (settings.llm_provider, settings.llm_model, settings.llm_temperature, with_tools)
        return self._cache.get_or_create(key, lambda: self._factory(with_tools))

    def for_agent(self, agent: AgentType) -> BoundModel:
        """The router converses only; specialists get the full catalogue."""
        return self.get(with_tools=agent != AgentType.ROUTER)

    def __len__(self) -> int:
        return len(self._cache)
