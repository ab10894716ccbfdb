"""Tool integrations with error handling."""

from typing import Optional

import httpx

from tools.base import (
    Tool, ToolCatalog, ToolDisplay, ToolResult,
    ToolError, TransientError, PermanentError
)
from tools.firecrawl import (
    FirecrawlSearchTool, FirecrawlScrapeTool, FirecrawlCrawlTool,
    FirecrawlExtractTool, firecrawl_tools, format_documents
)
from tools.call import StartCallTool, enrich_call_context


def build_default_catalog(transport: Optional[httpx.AsyncBaseTransport] = None) -> ToolCatalog:
    """Research tools plus call initiation."""
    return ToolCatalog([*firecrawl_tools(transport=transport), StartCallTool(transport=transport)])


__all__ = [
    "Tool", "ToolCatalog", "ToolDisplay", "ToolResult",
    "ToolError", "TransientError", "PermanentError",
    "FirecrawlSearchTool", "FirecrawlScrapeTool", "FirecrawlCrawlTool",
    "FirecrawlExtractTool", "firecrawl_tools", "format_documents",
    "StartCallTool", "enrich_call_context", "build_default_catalog"
]
