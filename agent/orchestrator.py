"""
Orchestrator - runs the persona state machine and streams its events.
"""

import asyncio
import time
from contextlib import suppress
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional

from agent.cache import ModelClientCache, PromptCache
from agent.events import AgentSwitchEvent, FinalEvent
from agent.nodes import AgentNode, Emit, ToolExecutionNode
from agent.personas import PERSONAS
from agent.router import RoutingDecision, route
from agent.state import ConversationState, build_initial_state
from config import settings
from models.schemas import AgentType, ConversationStatus, OrchestratorInput, SPECIALISTS
from observability import trace_logger
from tools import build_default_catalog
from tools.base import ToolCatalog


END = "__end__"
TOOLS = "tools"

Node = Callable[[ConversationState, Emit], Awaitable[None]]
Transition = Callable[[ConversationState], str]


def after_router(state: ConversationState) -> str:
    """The router only converses."""
    return END


def after_specialist(state: ConversationState) -> str:
    """Conditional edge: run tools if the persona produced new tool calls."""
    if state.pending_tool_calls():
        return TOOLS
    return END


def after_tools(state: ConversationState) -> str:
    """Conditional edge: results go back to the persona that asked for them."""
    if state.status == ConversationStatus.COMPLETED:
        return END
    return state.current_agent.value


_CLOSED = object()


class EventChannel:
    """Per-request queue between the running state machine and the consumer."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def emit(self, event) -> None:
        if self._closed:
            raise RuntimeError("Event channel is closed")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    async def __aiter__(self):
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


class StateMachine:
    """
    Named nodes joined by pure transition functions.

    Graph structure:
    1. entry -> persona chosen by the router
    2. router -> END
    3. specialist -> [tools OR END]
    4. tools -> [requesting specialist OR END when the call completed]
    """

    def __init__(self, max_hops: int):
        self.max_hops = max_hops
        self.nodes: Dict[str, Node] = {}
        self.edges: Dict[str, Transition] = {}

    def add_node(self, name: str, node: Node) -> None:
        self.nodes[name] = node

    def add_conditional_edges(self, name: str, transition: Transition) -> None:
        self.edges[name] = transition

    def next_state(self, name: str, state: ConversationState) -> str:
        return self.edges[name](state)

    async def run(self, entry: str, state: ConversationState, emit: Emit) -> int:
        """Execute from entry until END or the hop limit. Returns hops taken."""
        name, hops = entry, 0
        while name != END:
            if hops >= self.max_hops:
                trace_logger.warning(
                    f"Hop limit of {self.max_hops} reached, ending turn",
                    last_node=name,
                    dropped_tool_calls=state.drop_pending_tool_calls()
                )
                break
            hops += 1
            await self.nodes[name](state, emit)
            name = self.next_state(name, state)
        return hops


class Orchestrator:
    """
    Streams one conversational turn.

    The caches are shared across requests; the channel, state and state
    machine are built fresh for every turn.
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        models: ModelClientCache,
        prompts: PromptCache,
        max_hops: Optional[int] = None,
        tool_node: Optional[ToolExecutionNode] = None
    ):
        self.catalog = catalog
        self.models = models
        self.prompts = prompts
        self.max_hops = max_hops or settings.max_graph_hops
        self.tool_node = tool_node or ToolExecutionNode(catalog)

    @classmethod
    def from_settings(cls) -> "Orchestrator":
        catalog = build_default_catalog()
        return cls(catalog=catalog, models=ModelClientCache(catalog), prompts=PromptCache())

    def build_machine(self) -> StateMachine:
        machine = StateMachine(self.max_hops)
        machine.add_node(AgentType.ROUTER.value, AgentNode(AgentType.ROUTER, self.models, self.prompts))
        machine.add_conditional_edges(AgentType.ROUTER.value, after_router)
        for agent in SPECIALISTS:
            machine.add_node(agent.value, AgentNode(agent, self.models, self.prompts))
            machine.add_conditional_edges(agent.value, after_specialist)
        machine.add_node(TOOLS, self.tool_node)
        machine.add_conditional_edges(TOOLS, after_tools)
        return machine

    @staticmethod
    def switch_event(state: ConversationState, decision: RoutingDecision) -> AgentSwitchEvent:
        source, target = PERSONAS[state.current_agent], PERSONAS[decision.agent]
        return AgentSwitchEvent(
            from_agent=state.current_agent,
            to=decision.agent,
            reason=(
                f"{source.emoji} → {target.emoji} Switching to {target.display_name} "
                f"({round(decision.confidence * 100)}% match)"
            ),
            confidence=decision.confidence,
            previous_turn_count=state.agent_turn_count,
        )

    async def _drive(self, state: ConversationState, channel: EventChannel) -> None:
        with trace_logger.trace():
            started = time.perf_counter()
            trace_logger.orchestration_started(
                message_count=len(state.messages),
                current_agent=state.current_agent.value,
                has_context=not state.request_context.is_empty()
            )
            try:
                decision = route(state)
                trace_logger.routing_decision(
                    current_agent=state.current_agent.value,
                    selected_agent=decision.agent.value,
                    confidence=decision.confidence,
                    reason=decision.reason,
                    scores=decision.scores
                )
                if decision.agent != state.current_agent:
                    channel.emit(self.switch_event(state, decision))

                hops = await self.build_machine().run(decision.agent.value, state, channel.emit)

                trace_logger.orchestration_completed(
                    current_agent=state.current_agent.value,
                    status=state.status.value,
                    hops=hops,
                    duration_ms=round((time.perf_counter() - started) * 1000, 1)
                )
            except Exception as e:
                trace_logger.error_occurred(
                    error_type="orchestration_error",
                    error_message=str(e),
                    context={"current_agent": state.current_agent.value}
                )
                raise
            finally:
                channel.close()

    async def run(self, request: OrchestratorInput) -> AsyncIterator:
        """
        Stream every event of one turn, then a final event with the end state.

        Errors raised by the state machine surface after the events already
        emitted. Abandoning the iterator cancels the running turn.
        """
        state = build_initial_state(request)
        channel = EventChannel()
        task = asyncio.create_task(self._drive(state, channel))
        try:
            async for event in channel:
                yield event
            await task
        finally:
            if not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
        yield FinalEvent(state=state)
