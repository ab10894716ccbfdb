"""
Tests for tool execution: at-most-once, retries, timeouts and the circuit breaker.
"""

import asyncio

import pytest

from agent.events import ToolCallEvent, ToolResultEvent
from agent.nodes import ToolExecutionNode
from agent.state import ConversationState
from models.schemas import (
    AgentType, ConversationStatus, Message, SharedSecrets, ToolCallDefinition
)
from tools.base import PermanentError, ToolDisplay, ToolError, TransientError

from conftest import FakeTool


def state_with_calls(*calls: ToolCallDefinition, **kwargs) -> ConversationState:
    kwargs.setdefault("current_agent", AgentType.SUPPORT)
    kwargs.setdefault("status", ConversationStatus.CALLING)
    return ConversationState(
        messages=[
            Message(role="user", content="my wifi is down"),
            Message(role="assistant", content="", tool_calls=list(calls)),
        ],
        **kwargs
    )


def call(call_id: str, name: str = "firecrawl_search", **arguments) -> ToolCallDefinition:
    return ToolCallDefinition(id=call_id, name=name, arguments=arguments)


def node_for(*tools, **kwargs) -> ToolExecutionNode:
    from tools.base import ToolCatalog
    kwargs.setdefault("backoff_base", 0)
    kwargs.setdefault("backoff_max", 0)
    return ToolExecutionNode(ToolCatalog(list(tools)), **kwargs)


async def run_node(node, state):
    events = []
    await node(state, events.append)
    return events


class TestToolExecution:
    """Test the happy path and bookkeeping."""

    @pytest.mark.asyncio
    async def test_success_emits_events_and_tool_message(self):
        search = FakeTool(
            "firecrawl_search",
            outcomes=["results"],
            display=ToolDisplay("Web Search", "Searching the web for relevant information", 3000),
        )
        state = state_with_calls(call("c1", query="isp outage"))

        events = await run_node(node_for(search), state)

        assert isinstance(events[0], ToolCallEvent)
        assert events[0].metadata.display_name == "Web Search"
        assert events[0].metadata.estimated_duration == 3000
        assert events[0].metadata.agent_type == AgentType.SUPPORT
        assert isinstance(events[1], ToolResultEvent)
        assert events[1].output == "results"
        assert not events[1].is_error

        last = state.messages[-1]
        assert last.role == "tool"
        assert last.tool_call_id == "c1"
        assert last.content == "results"
        assert state.processed_tool_call_ids == ["c1"]

    @pytest.mark.asyncio
    async def test_structured_output_serialised_as_json(self):
        tool = FakeTool("firecrawl_extract", outcomes=[{"answer": 42}])
        state = state_with_calls(call("c1", "firecrawl_extract"))

        await run_node(node_for(tool), state)
        assert state.messages[-1].content == '{"answer": 42}'

    @pytest.mark.asyncio
    async def test_calls_run_once_in_order(self):
        tool = FakeTool("firecrawl_search", outcomes=["a", "b"])
        state = state_with_calls(call("c1", query="one"), call("c2", query="two"))
        node = node_for(tool)

        await run_node(node, state)
        events = await run_node(node, state)

        assert tool.calls == [{"query": "one"}, {"query": "two"}]
        assert events == []

    @pytest.mark.asyncio
    async def test_previously_processed_ids_are_skipped(self):
        tool = FakeTool("firecrawl_search")
        state = state_with_calls(call("c1"), processed_tool_call_ids=["c1"])

        await run_node(node_for(tool), state)
        assert tool.calls == []

    @pytest.mark.asyncio
    async def test_no_pending_calls_normalises_routing(self):
        state = ConversationState(messages=[Message(role="user", content="hi")])
        await run_node(node_for(), state)
        assert state.status == ConversationStatus.COLLECTING

    @pytest.mark.asyncio
    async def test_unknown_tool_is_a_warning_not_a_failure(self):
        state = state_with_calls(call("c1", "teleport"), consecutive_tool_failures=2, last_failed_tool="x")

        events = await run_node(node_for(), state)

        assert events[0].metadata.display_name == "teleport"
        assert events[0].metadata.description == "Executing teleport"
        assert events[0].metadata.estimated_duration == 2000
        assert events[1].output == {"warning": "Unknown tool: teleport"}
        assert state.consecutive_tool_failures == 0

    @pytest.mark.asyncio
    async def test_processed_ids_trimmed(self):
        tool = FakeTool("firecrawl_search")
        state = state_with_calls(
            call("new"),
            processed_tool_call_ids=[f"old{i}" for i in range(25)],
        )

        await run_node(node_for(tool, retention=20), state)

        assert len(state.processed_tool_call_ids) == 20
        assert state.processed_tool_call_ids[-1] == "new"


class TestRetries:
    """Test bounded retries and timeouts."""

    def test_transient_and_permanent_share_base_error(self):
        assert issubclass(TransientError, ToolError)
        assert issubclass(PermanentError, ToolError)
        assert not issubclass(PermanentError, TransientError)

    @pytest.mark.asyncio
    async def test_read_only_tool_retried_until_success(self):
        tool = FakeTool("firecrawl_search", outcomes=[TransientError("503"), TransientError("503"), "ok"])
        state = state_with_calls(call("c1"))

        events = await run_node(node_for(tool), state)

        assert len(tool.calls) == 3
        assert events[-1].output == "ok"
        assert state.consecutive_tool_failures == 0

    @pytest.mark.asyncio
    async def test_exhausted_retries_report_attempts(self):
        tool = FakeTool("firecrawl_search", outcomes=[TransientError("boom")] * 3)
        state = state_with_calls(call("c1"))

        events = await run_node(node_for(tool), state)

        assert len(tool.calls) == 3
        assert events[-1].is_error
        assert state.messages[-1].content == "Tool firecrawl_search failed after 3 attempts: boom"
        assert state.consecutive_tool_failures == 1
        assert state.last_failed_tool == "firecrawl_search"

    @pytest.mark.asyncio
    async def test_permanent_errors_not_retried(self):
        tool = FakeTool("firecrawl_search", outcomes=[PermanentError("bad args")])
        state = state_with_calls(call("c1"))

        await run_node(node_for(tool), state)

        assert len(tool.calls) == 1
        assert state.messages[-1].content == "Tool firecrawl_search failed after 1 attempts: bad args"

    @pytest.mark.asyncio
    async def test_side_effecting_tool_attempted_once(self):
        tool = FakeTool("start_call", outcomes=[TransientError("busy"), "never"], read_only=False)
        state = state_with_calls(call("c1", "start_call"))

        await run_node(node_for(tool), state)

        assert len(tool.calls) == 1
        assert state.status == ConversationStatus.CALLING

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self):
        class SlowTool(FakeTool):
            async def execute(self, arguments, secrets):
                await asyncio.sleep(5)

        state = state_with_calls(call("c1", "slow"))
        events = await run_node(node_for(SlowTool("slow"), timeout=0.05), state)

        assert events[-1].is_error
        assert "timed out" in state.messages[-1].content
        assert state.consecutive_tool_failures == 1

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried(self):
        class SlowTool(FakeTool):
            async def execute(self, arguments, secrets):
                self.calls.append(arguments)
                await asyncio.sleep(5)

        tool = SlowTool("slow")
        state = state_with_calls(call("c1", "slow"))
        await run_node(node_for(tool, timeout=0.05), state)

        assert len(tool.calls) == 1
        assert state.messages[-1].content == "Tool slow failed after 1 attempts: timed out after 0.05s"

    @pytest.mark.asyncio
    async def test_deadline_covers_every_attempt(self):
        class HangsOnRetry(FakeTool):
            async def execute(self, arguments, secrets):
                self.calls.append(arguments)
                if len(self.calls) == 1:
                    raise TransientError("503")
                await asyncio.sleep(5)
                return "late"

        tool = HangsOnRetry("firecrawl_crawl")
        loop = asyncio.get_running_loop()
        started = loop.time()

        result = await tool.execute_with_retry({}, timeout=0.1, backoff_base=0, backoff_max=0)

        assert not result.success
        assert result.data is None
        assert result.error == "timed out after 0.1s"
        assert result.attempts == 2
        assert len(tool.calls) == 2
        assert loop.time() - started < 1

    @pytest.mark.asyncio
    async def test_cancellation_propagates_without_retry(self):
        started = asyncio.Event()

        class HangingTool(FakeTool):
            async def execute(self, arguments, secrets):
                self.calls.append(arguments)
                started.set()
                await asyncio.sleep(10)

        tool = HangingTool("firecrawl_crawl")
        task = asyncio.create_task(
            tool.execute_with_retry({}, timeout=5, backoff_base=0, backoff_max=0)
        )
        await asyncio.wait_for(started.wait(), timeout=1)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert len(tool.calls) == 1


class TestCircuitBreaker:
    """Test skipping a tool after repeated failures."""

    @pytest.mark.asyncio
    async def test_open_breaker_skips_execution(self):
        tool = FakeTool("firecrawl_search")
        state = state_with_calls(
            call("c4"),
            consecutive_tool_failures=3,
            last_failed_tool="firecrawl_search",
        )

        events = await run_node(node_for(tool), state)

        assert tool.calls == []
        assert events[-1].is_error
        message = "Circuit breaker: firecrawl_search has failed 3 times, skipping execution"
        assert events[-1].output == {"error": message}
        assert state.messages[-1].content == message
        assert state.consecutive_tool_failures == 3

    @pytest.mark.asyncio
    async def test_breaker_only_applies_to_failing_tool(self):
        other = FakeTool("firecrawl_scrape")
        state = state_with_calls(
            call("c1", "firecrawl_scrape"),
            consecutive_tool_failures=3,
            last_failed_tool="firecrawl_search",
        )

        await run_node(node_for(other), state)

        assert len(other.calls) == 1
        assert state.consecutive_tool_failures == 0

    @pytest.mark.asyncio
    async def test_failures_accumulate_then_trip(self):
        tool = FakeTool("firecrawl_search", outcomes=[TransientError("down")] * 9)
        node = node_for(tool)
        state = state_with_calls(call("c1"))

        for i in range(2, 5):
            await run_node(node, state)
            state.messages.append(Message(role="assistant", content="", tool_calls=[call(f"c{i}")]))

        assert state.consecutive_tool_failures == 3
        events = await run_node(node, state)
        assert len(tool.calls) == 9
        assert "Circuit breaker" in events[-1].output["error"]

    @pytest.mark.asyncio
    async def test_different_tool_failure_resets_count_to_one(self):
        scrape = FakeTool("firecrawl_scrape", outcomes=[PermanentError("nope")])
        state = state_with_calls(
            call("c1", "firecrawl_scrape"),
            consecutive_tool_failures=2,
            last_failed_tool="firecrawl_search",
        )

        await run_node(node_for(scrape), state)

        assert state.consecutive_tool_failures == 1
        assert state.last_failed_tool == "firecrawl_scrape"


class TestCallCompletion:
    """Test the call-initiation tool completing the turn."""

    @pytest.mark.asyncio
    async def test_start_call_success_completes(self):
        starter = FakeTool("start_call", outcomes=[{"callId": "abc"}], read_only=False, completes_call=True)
        state = state_with_calls(call("c1", "start_call"))

        await run_node(node_for(starter), state)

        assert state.status == ConversationStatus.COMPLETED
        assert state.call_result == {"callId": "abc"}

    @pytest.mark.asyncio
    async def test_secrets_available_to_tools(self):
        seen = []

        class SecretTool(FakeTool):
            async def execute(self, arguments, secrets):
                seen.append(secrets.issue_id)
                return "ok"

        state = state_with_calls(call("c1", "peek"), shared_secrets=SharedSecrets(issue_id="issue-9"))
        await run_node(node_for(SecretTool("peek")), state)
        assert seen == ["issue-9"]
