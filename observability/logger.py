"""
Structured logging with trace IDs for observability.
All routing decisions, agent runs, tool calls, and errors are logged.
"""

import logging
import json
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Optional
from pathlib import Path
from contextlib import contextmanager
from pythonjsonlogger import jsonlogger

from config import settings


# Scoped per task so concurrent turns never share a trace id
_current_trace_id: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)


class TraceLogger:
    """Structured logger with trace ID support for orchestration observability."""

    def __init__(self, name: str = "call_orchestrator"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, settings.log_level))

        if settings.log_file:
            # Ensure log directory exists
            log_file_path = Path(settings.log_file)
            log_file_path.parent.mkdir(parents=True, exist_ok=True)

            # File handler with JSON formatting
            file_handler = logging.FileHandler(settings.log_file)
            json_formatter = jsonlogger.JsonFormatter(
                fmt='%(asctime)s %(name)s %(levelname)s %(message)s',
                rename_fields={'levelname': 'level', 'asctime': 'timestamp'}
            )
            file_handler.setFormatter(json_formatter)
            self.logger.addHandler(file_handler)

        # Console handler with readable formatting
        console_handler = logging.StreamHandler()
        console_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        console_handler.setFormatter(console_formatter)
        self.logger.addHandler(console_handler)

    def generate_trace_id(self) -> str:
        """Generate a new trace ID."""
        return str(uuid.uuid4())

    @property
    def current_trace_id(self) -> Optional[str]:
        return _current_trace_id.get()

    @contextmanager
    def trace(self, trace_id: Optional[str] = None):
        """Context manager for trace ID."""
        token = _current_trace_id.set(trace_id or self.generate_trace_id())
        try:
            yield _current_trace_id.get()
        finally:
            _current_trace_id.reset(token)

    def _log(self, level: str, event: str, **kwargs):
        """Internal log method with trace ID."""
        log_data = {
            "trace_id": _current_trace_id.get() or "unknown",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
            **kwargs
        }

        log_method = getattr(self.logger, level.lower())
        log_method(json.dumps(log_data, default=str), extra=log_data)

    def orchestration_started(
        self,
        message_count: int,
        current_agent: str,
        has_context: bool,
        **kwargs
    ):
        """Log the start of one driver pass."""
        self._log(
            "info",
            "orchestration_started",
            message_count=message_count,
            current_agent=current_agent,
            has_context=has_context,
            **kwargs
        )

    def routing_decision(
        self,
        current_agent: str,
        selected_agent: str,
        confidence: float,
        reason: str,
        scores: Optional[Dict[str, int]] = None,
        **kwargs
    ):
        """Log router decision."""
        self._log(
            "debug",
            "routing_decision",
            current_agent=current_agent,
            selected_agent=selected_agent,
            confidence=confidence,
            reason=reason,
            scores=scores or {},
            **kwargs
        )

    def agent_started(
        self,
        agent: str,
        run_id: str,
        message_count: int,
        consecutive_failures: int,
        **kwargs
    ):
        """Log persona execution start."""
        self._log(
            "info",
            "agent_start",
            agent=agent,
            run_id=run_id,
            message_count=message_count,
            consecutive_failures=consecutive_failures,
            **kwargs
        )

    def agent_completed(
        self,
        agent: str,
        run_id: str,
        response_length: int,
        tool_calls: int,
        status: str,
        **kwargs
    ):
        """Log persona execution end."""
        self._log(
            "info",
            "agent_end",
            agent=agent,
            run_id=run_id,
            response_length=response_length,
            tool_calls=tool_calls,
            status=status,
            **kwargs
        )

    def model_created(
        self,
        provider: str,
        model: str,
        tool_count: int,
        **kwargs
    ):
        """Log model client construction."""
        self._log(
            "info",
            "model_created",
            provider=provider,
            model=model,
            tool_count=tool_count,
            **kwargs
        )

    def tool_called(
        self,
        tool_name: str,
        call_id: str,
        max_attempts: int,
        **kwargs
    ):
        """Log tool invocation."""
        self._log(
            "info",
            "tool_called",
            tool_name=tool_name,
            call_id=call_id,
            max_attempts=max_attempts,
            **kwargs
        )

    def tool_result(
        self,
        tool_name: str,
        success: bool,
        error: Optional[str] = None,
        attempts: int = 1,
        **kwargs
    ):
        """Log tool result."""
        self._log(
            "info" if success else "warning",
            "tool_result",
            tool_name=tool_name,
            success=success,
            error=error,
            attempts=attempts,
            **kwargs
        )

    def tool_retry(
        self,
        tool_name: str,
        attempt: int,
        max_attempts: int,
        error: str,
        **kwargs
    ):
        """Log a retry after a failed attempt."""
        self._log(
            "info",
            "tool_retry",
            tool_name=tool_name,
            attempt=attempt,
            max_attempts=max_attempts,
            error=error,
            **kwargs
        )

    def circuit_breaker_triggered(
        self,
        tool_name: str,
        failures: int,
        **kwargs
    ):
        """Log a tool call skipped by the circuit breaker."""
        self._log(
            "warning",
            "circuit_breaker_triggered",
            tool_name=tool_name,
            failures=failures,
            **kwargs
        )

    def error_occurred(
        self,
        error_type: str,
        error_message: str,
        context: Optional[Dict] = None,
        **kwargs
    ):
        """Log error."""
        self._log(
            "error",
            "error_occurred",
            error_type=error_type,
            error_message=error_message,
            context=context or {},
            **kwargs
        )

    def orchestration_completed(
        self,
        current_agent: str,
        status: str,
        hops: int,
        duration_ms: float,
        **kwargs
    ):
        """Log the end of one driver pass."""
        self._log(
            "info",
            "orchestration_completed",
            current_agent=current_agent,
            status=status,
            hops=hops,
            duration_ms=duration_ms,
            **kwargs
        )

    def debug(self, message: str, **kwargs):
        """Debug level log."""
        self._log("debug", "debug", detail=message, **kwargs)

    def info(self, message: str, **kwargs):
        """Info level log."""
        self._log("info", "info", detail=message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Warning level log."""
        self._log("warning", "warning", detail=message, **kwargs)

    def error(self, message: str, **kwargs):
        """Error level log."""
        self._log("error", "error", detail=message, **kwargs)


# Global logger instance
trace_logger = TraceLogger()
