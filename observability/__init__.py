"""Observability: structured trace logging for orchestration runs."""

from observability.logger import TraceLogger, trace_logger

__all__ = ["TraceLogger", "trace_logger"]
