"""
Base tool abstraction with structured result handling.
All tools return ToolResult with success/failure status.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, Iterator, List, Optional
from tenacity import (
    AsyncRetrying, RetryCallState, retry_if_not_exception_type,
    stop_after_attempt, stop_after_delay, wait_exponential
)

from config import settings
from models.schemas import SharedSecrets
from observability import trace_logger


class ToolError(Exception):
    """Base class for tool execution failures."""
    pass


class TransientError(ToolError):
    """Exception for transient errors that should be retried."""
    pass


class PermanentError(ToolError):
    """Exception for permanent errors that should not be retried."""
    pass


@dataclass
class ToolResult:
    """Structured result from tool execution."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "attempts": self.attempts
        }


@dataclass(frozen=True)
class ToolDisplay:
    """User-facing description attached to tool-call events."""
    display_name: str
    description: str
    estimated_duration_ms: int = 2000

    @classmethod
    def fallback(cls, tool_name: str) -> "ToolDisplay":
        return cls(display_name=tool_name, description=f"Executing {tool_name}")


class Tool(ABC):
    """Abstract base class for all tools."""

    #: Read-only tools may be attempted several times; side-effecting ones once.
    read_only: bool = True
    #: Success of this tool completes the conversation.
    completes_call: bool = False

    def __init__(
        self,
        name: str,
        description: str,
        parameters: Dict[str, Any],
        display: Optional[ToolDisplay] = None
    ):
        self.name = name
        self.description = description
        self.parameters = parameters
        self.display = display or ToolDisplay.fallback(name)

    @property
    def max_attempts(self) -> int:
        return settings.tool_max_attempts if self.read_only else 1

    @abstractmethod
    async def execute(self, arguments: Dict[str, Any], secrets: SharedSecrets) -> Any:
        """Run the tool once. Raise on failure."""
        pass

    def definition(self) -> Dict[str, Any]:
        """Function definition offered to the model."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def display_arguments(self, arguments: Dict[str, Any], secrets: SharedSecrets) -> Dict[str, Any]:
        """Arguments as shown in tool-call events."""
        return dict(arguments)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        trace_logger.tool_retry(
            tool_name=self.name,
            attempt=retry_state.attempt_number,
            max_attempts=self.max_attempts,
            error=str(error)
        )

    async def execute_with_retry(
        self,
        arguments: Dict[str, Any],
        secrets: Optional[SharedSecrets] = None,
        timeout: Optional[float] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None
    ) -> ToolResult:
        """
        Execute the tool with bounded retries and a hard timeout.

        Retries up to max_attempts with exponential backoff. PermanentError
        is never retried. The timeout is one deadline shared by every attempt
        and backoff sleep; reaching it ends the sequence as a failure.
        Failures are returned, never raised. Cancellation propagates.
        """
        secrets = secrets or SharedSecrets()
        timeout = settings.tool_timeout_seconds if timeout is None else timeout
        base = settings.tool_backoff_base_seconds if backoff_base is None else backoff_base
        cap = settings.tool_backoff_max_seconds if backoff_max is None else backoff_max
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        attempts = 0

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts) | stop_after_delay(timeout),
            wait=wait_exponential(multiplier=base, max=cap),
            retry=retry_if_not_exception_type(
                (PermanentError, asyncio.TimeoutError, asyncio.CancelledError)
            ),
            before_sleep=self._log_retry,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        raise asyncio.TimeoutError()
                    output = await asyncio.wait_for(self.execute(arguments, secrets), timeout=remaining)
        except asyncio.TimeoutError:
            return ToolResult(
                success=False,
                error=f"timed out after {timeout:g}s",
                attempts=max(attempts, 1)
            )
        except Exception as e:
            return ToolResult(success=False, error=str(e) or type(e).__name__, attempts=attempts)

        return ToolResult(success=True, data=output, attempts=attempts)


class ToolCatalog:
    """Registry of the tools offered to specialist personas."""

    def __init__(self, tools: Optional[List[Tool]] = None):
        self._tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def display_for(self, name: str) -> ToolDisplay:
        tool = self.get(name)
        return tool.display if tool else ToolDisplay.fallback(name)

    def definitions(self) -> List[Dict[str, Any]]:
        return [tool.definition() for tool in self._tools.values()]

    def names(self) -> List[str]:
        return list(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)
