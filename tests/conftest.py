"""
Test fixtures for the call orchestrator test suite.
"""

import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add project root to path
ROOT_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT_DIR))

# Configure before importing anything that reads settings
os.environ["LOG_FILE"] = ""
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ["LLM_PROVIDER"] = "openai"

from integrations.llm_provider import ModelChunk  # noqa: E402
from models.schemas import Message, SharedSecrets, ToolCallDefinition  # noqa: E402
from tools.base import Tool, ToolCatalog, ToolDisplay  # noqa: E402


class ScriptedModel:
    """Stands in for a tool-bound model: replays one chunk script per call."""

    def __init__(self, scripts: Optional[List[List[Any]]] = None):
        self.scripts = list(scripts or [])
        self.prompts: List[str] = []
        self.seen_messages: List[List[Message]] = []

    def add(self, *chunks: Any) -> "ScriptedModel":
        self.scripts.append(list(chunks))
        return self

    async def stream(self, system_prompt: str, messages: List[Message]):
        self.prompts.append(system_prompt)
        self.seen_messages.append(list(messages))
        script = self.scripts.pop(0) if self.scripts else [ModelChunk(text="")]
        for chunk in script:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk


class FakeModels:
    """Model cache double returning the same scripted model for every persona."""

    def __init__(self, model: ScriptedModel):
        self.model = model
        self.requested: List[bool] = []

    def for_agent(self, agent) -> ScriptedModel:
        self.requested.append(agent.value != "router")
        return self.model


class FakeTool(Tool):
    """Tool whose outcomes are scripted: values are returned, exceptions raised."""

    def __init__(
        self,
        name: str,
        outcomes: Optional[List[Any]] = None,
        read_only: bool = True,
        completes_call: bool = False,
        display: Optional[ToolDisplay] = None
    ):
        super().__init__(
            name,
            f"Fake {name}",
            {"type": "object", "properties": {}},
            display,
        )
        self.read_only = read_only
        self.completes_call = completes_call
        self.outcomes = list(outcomes or [])
        self.calls: List[Dict[str, Any]] = []

    async def execute(self, arguments: Dict[str, Any], secrets: SharedSecrets) -> Any:
        self.calls.append(arguments)
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def text(value: str) -> ModelChunk:
    return ModelChunk(text=value)


def tool_call(call_id: str, name: str, **arguments: Any) -> ModelChunk:
    return ModelChunk(tool_calls=[ToolCallDefinition(id=call_id, name=name, arguments=arguments)])


def user(content: str) -> Dict[str, str]:
    return {"role": "user", "content": content}


@pytest.fixture
def scripted_model():
    return ScriptedModel()


@pytest.fixture
def fake_models(scripted_model):
    return FakeModels(scripted_model)


@pytest.fixture
def make_catalog():
    def _make(*tools: Tool) -> ToolCatalog:
        return ToolCatalog(list(tools))
    return _make
