"""
Web research tools backed by the Firecrawl HTTP API.
"""

import asyncio
import json
from typing import Dict, Any, List, Optional, Type, TypeVar, Union
import httpx
from pydantic import BaseModel, Field, ValidationError, AnyHttpUrl

from config import settings
from models.schemas import SharedSecrets
from observability import trace_logger
from tools.base import Tool, ToolDisplay, ToolError, TransientError, PermanentError


PREVIEW_CHARS = 2000
PREVIEW_DOCS = 3
_TERMINAL_CRAWL_STATES = {"completed", "failed", "cancelled"}

ArgsT = TypeVar("ArgsT", bound=BaseModel)


class SearchArgs(BaseModel):
    query: str = Field(..., min_length=1)
    limit: Optional[int] = Field(None, gt=0, le=50)
    params: Optional[Dict[str, Any]] = None


class PageArgs(BaseModel):
    url: AnyHttpUrl
    params: Optional[Dict[str, Any]] = None


class ExtractionQuery(BaseModel):
    name: Optional[str] = None
    query: str = Field(..., min_length=1)


class ExtractArgs(BaseModel):
    url: AnyHttpUrl
    queries: List[Union[str, ExtractionQuery]] = Field(..., min_length=1)
    params: Optional[Dict[str, Any]] = None


_PARAMS_SCHEMA = {"type": "object", "additionalProperties": True}


def format_documents(docs: List[Dict[str, Any]]) -> str:
    """Summarise scraped pages: total count plus a preview of the first few."""
    if not docs:
        return "No documents returned by Firecrawl."

    documents = []
    for index, doc in enumerate(docs[:PREVIEW_DOCS]):
        metadata = doc.get("metadata") or {}
        content = doc.get("markdown") or doc.get("content") or ""
        if len(content) > PREVIEW_CHARS:
            content = content[:PREVIEW_CHARS] + "…"
        documents.append({
            "index": index,
            "source": metadata.get("sourceURL") or metadata.get("url") or "unknown",
            "metadata": metadata,
            "contentPreview": content,
        })

    return json.dumps({"documentCount": len(docs), "documents": documents}, indent=2)


class FirecrawlTool(Tool):
    """Shared HTTP plumbing for the Firecrawl tools."""

    def __init__(
        self,
        name: str,
        description: str,
        parameters: Dict[str, Any],
        display: ToolDisplay,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        super().__init__(name, description, parameters, display)
        self.api_key = api_key if api_key is not None else settings.firecrawl_api_key
        self.base_url = (base_url or settings.firecrawl_base_url).rstrip("/")
        self.transport = transport

    def _parse(self, model: Type[ArgsT], arguments: Dict[str, Any]) -> ArgsT:
        try:
            return model.model_validate(arguments)
        except ValidationError as e:
            raise PermanentError(f"Invalid arguments for {self.name}: {e}") from e

    def _client(self) -> httpx.AsyncClient:
        if not self.api_key:
            raise PermanentError("FIRECRAWL_API_KEY environment variable is required for Firecrawl tools.")
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=settings.tool_timeout_seconds,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Any:
        async with self._client() as client:
            try:
                response = await client.request(method, path, json=body)
            except httpx.TransportError as e:
                raise TransientError(f"Firecrawl {path} unreachable: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientError(f"Firecrawl {path} failed: {response.status_code} {response.text}")
        if response.status_code >= 400:
            raise PermanentError(f"Firecrawl {path} failed: {response.status_code} {response.text}")
        return response.json()

    @staticmethod
    def _merge(payload: Dict[str, Any], params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if params:
            payload.update(params)
        return payload


class FirecrawlSearchTool(FirecrawlTool):
    """Web search returning the raw Firecrawl result."""

    def __init__(self, **kwargs):
        super().__init__(
            name="firecrawl_search",
            description="Search the web for relevant pages using Firecrawl's search API.",
            parameters={
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "The search query to look up."},
                    "limit": {
                        "type": "number",
                        "description": "Maximum number of results to return (max 50).",
                        "minimum": 1,
                        "maximum": 50,
                    },
                    "params": {**_PARAMS_SCHEMA, "description": "Additional Firecrawl search parameters (optional)."},
                },
                "required": ["query"],
            },
            display=ToolDisplay("Web Search", "Searching the web for relevant information", 3000),
            **kwargs
        )

    async def execute(self, arguments: Dict[str, Any], secrets: SharedSecrets) -> str:
        args = self._parse(SearchArgs, arguments)
        payload: Dict[str, Any] = {"query": args.query}
        if args.limit is not None:
            payload["limit"] = args.limit
        result = await self._request("POST", "/search", self._merge(payload, args.params))
        return json.dumps(result, indent=2)


class FirecrawlScrapeTool(FirecrawlTool):
    """Single-page scrape summarised as a document preview."""

    def __init__(self, **kwargs):
        super().__init__(
            name="firecrawl_scrape",
            description="Scrape a single page and return structured markdown using Firecrawl.",
            parameters={
                "type": "object",
                "properties": {
                    "url": {"type": "string", "description": "The URL to scrape."},
                    "params": {**_PARAMS_SCHEMA, "description": "Additional Firecrawl scrape parameters (optional)."},
                },
                "required": ["url"],
            },
            display=ToolDisplay("Page Scrape", "Reading a web page for details", 4000),
            **kwargs
        )

    async def execute(self, arguments: Dict[str, Any], secrets: SharedSecrets) -> str:
        args = self._parse(PageArgs, arguments)
        payload = self._merge({"url": str(args.url), "formats": ["markdown"]}, args.params)
        result = await self._request("POST", "/scrape", payload)
        data = result.get("data") if isinstance(result, dict) else None
        return format_documents([data] if data else [])


class FirecrawlCrawlTool(FirecrawlTool):
    """Site crawl that polls the job until it finishes."""

    def __init__(self, poll_interval: Optional[float] = None, **kwargs):
        super().__init__(
            name="firecrawl_crawl",
            description="Crawl an entire domain and return aggregated markdown from Firecrawl.",
            parameters={
                "type": "object",
                "properties": {
                    "url": {"type": "string", "description": "The root URL to crawl."},
                    "params": {**_PARAMS_SCHEMA, "description": "Additional Firecrawl crawl parameters (optional)."},
                },
                "required": ["url"],
            },
            display=ToolDisplay("Site Crawl", "Crawling a website for relevant pages", 15000),
            **kwargs
        )
        self.poll_interval = (
            settings.firecrawl_crawl_poll_interval if poll_interval is None else poll_interval
        )

    async def execute(self, arguments: Dict[str, Any], secrets: SharedSecrets) -> str:
        args = self._parse(PageArgs, arguments)
        job = await self._request("POST", "/crawl", self._merge({"url": str(args.url)}, args.params))
        job_id = job.get("id") if isinstance(job, dict) else None
        if not job_id:
            raise ToolError(f"Firecrawl crawl did not return a job id: {job}")

        while True:
            status = await self._request("GET", f"/crawl/{job_id}")
            state = status.get("status")
            if state in _TERMINAL_CRAWL_STATES:
                break
            trace_logger.debug(f"Crawl {job_id} still {state}")
            await asyncio.sleep(self.poll_interval)

        if state != "completed":
            raise ToolError(f"Firecrawl crawl {job_id} ended with status {state}")
        return format_documents(status.get("data") or [])


class FirecrawlExtractTool(FirecrawlTool):
    """Structured extraction answering queries about one page."""

    def __init__(self, **kwargs):
        super().__init__(
            name="firecrawl_extract",
            description="Extract structured answers from a page using Firecrawl's extraction queries.",
            parameters={
                "type": "object",
                "properties": {
                    "url": {"type": "string", "description": "The URL to extract data from."},
                    "queries": {
                        "type": "array",
                        "description": "One or more extraction queries (strings or objects with name/query).",
                        "items": {
                            "anyOf": [
                                {"type": "string"},
                                {
                                    "type": "object",
                                    "properties": {
                                        "name": {"type": "string"},
                                        "query": {"type": "string"},
                                    },
                                    "required": ["query"],
                                },
                            ]
                        },
                        "minItems": 1,
                    },
                    "params": {**_PARAMS_SCHEMA, "description": "Additional Firecrawl extraction parameters (optional)."},
                },
                "required": ["url", "queries"],
            },
            display=ToolDisplay("Page Extraction", "Pulling specific answers from a web page", 5000),
            **kwargs
        )

    async def execute(self, arguments: Dict[str, Any], secrets: SharedSecrets) -> str:
        args = self._parse(ExtractArgs, arguments)
        queries = [q if isinstance(q, str) else q.model_dump(exclude_none=True) for q in args.queries]
        payload = self._merge({"url": str(args.url), "queries": queries}, args.params)
        result = await self._request("POST", "/extract", payload)
        return json.dumps(result, indent=2)


def firecrawl_tools(**kwargs) -> List[FirecrawlTool]:
    """All Firecrawl tools sharing one set of connection options."""
    return [
        FirecrawlSearchTool(**kwargs),
        FirecrawlScrapeTool(**kwargs),
        FirecrawlCrawlTool(**kwargs),
        FirecrawlExtractTool(**kwargs),
    ]
