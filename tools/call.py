"""
Call-initiation tool: enrich the model's call context with trusted profile
data and forward it to the call service as a JSON-RPC tools/call request.
"""

import json
import uuid
from typing import Dict, Any, List, Optional
import httpx
from pydantic import ValidationError

from config import settings
from models.call_context import StartCallArguments, StartCallToolArguments
from models.schemas import SharedSecrets, UserProfile
from observability import trace_logger
from tools.base import Tool, ToolDisplay, ToolError, TransientError, PermanentError


def _append_missing(entries: List[str], value: Optional[str], label: str) -> None:
    """Append "label: value" unless some entry already mentions the value."""
    if value and not any(value in entry for entry in entries):
        entries.append(f"{label}: {value}")


def enrich_call_context(context: Dict[str, Any], profile: UserProfile) -> Dict[str, Any]:
    """
    Fill caller, availability and verification details from the user profile.

    Values the model supplied always win; profile values only fill gaps.
    """
    caller = context.get("caller") or {}
    availability = context.get("availability") or {}

    identifiers = [str(i) for i in caller.get("identifiers") or [] if i]
    _append_missing(identifiers, profile.phone, "Phone")
    _append_missing(identifiers, profile.email, "Email")
    _append_missing(identifiers, profile.address, "Address")

    verification = [str(v) for v in context.get("verification") or [] if v]
    _append_missing(verification, profile.phone, "Phone")
    _append_missing(verification, profile.email, "Email")
    _append_missing(verification, profile.address, "Service address")
    _append_missing(verification, profile.birthdate, "Date of birth")

    return {
        **context,
        "caller": {
            "name": caller.get("name") or profile.full_name or "User",
            "callback": caller.get("callback") or profile.phone,
            "identifiers": identifiers,
            "org": caller.get("org"),
            "employer": caller.get("employer"),
        },
        "availability": {
            "timezone": availability.get("timezone") or profile.timezone or "UTC",
            "preferredWindows": availability.get("preferredWindows"),
        },
        "verification": verification,
    }


class StartCallTool(Tool):
    """Place an outbound call on the user's behalf."""

    read_only = False
    completes_call = True

    def __init__(
        self,
        service_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        schema = StartCallToolArguments.model_json_schema(by_alias=True)
        super().__init__(
            name="start_call",
            description=(
                "Start an outbound phone call. Provide the full call context: who to call, "
                "why, the desired outcome and the caller details gathered from the user."
            ),
            parameters=schema,
            display=ToolDisplay("Phone Call", "Initiating a phone call on your behalf", 5000),
        )
        self.service_url = service_url or settings.call_service_url
        self.transport = transport

    def display_arguments(self, arguments: Dict[str, Any], secrets: SharedSecrets) -> Dict[str, Any]:
        shown = {k: v for k, v in arguments.items() if k != "authToken"}
        issue_id = secrets.issue_id or arguments.get("issueId")
        if issue_id:
            shown["issueId"] = issue_id
        return shown

    def build_arguments(self, arguments: Dict[str, Any], secrets: SharedSecrets) -> StartCallArguments:
        """Resolve session ids, enrich the context and validate the result."""
        issue_id = secrets.issue_id or arguments.get("issueId")
        auth_token = secrets.auth_token or arguments.get("authToken")
        if not issue_id:
            raise PermanentError("Missing issueId for start_call tool.")
        if not auth_token:
            raise PermanentError("Missing authToken for start_call tool.")

        context = arguments.get("context")
        if not isinstance(context, dict):
            context = {}
        if secrets.settings is not None:
            context = enrich_call_context(context, secrets.settings)

        try:
            return StartCallArguments.model_validate({
                "issueId": issue_id,
                "authToken": auth_token,
                "context": context,
            })
        except ValidationError as e:
            raise PermanentError(f"Invalid start_call context: {e}") from e

    async def execute(self, arguments: Dict[str, Any], secrets: SharedSecrets) -> Dict[str, Any]:
        merged = self.build_arguments(arguments, secrets)
        request = {
            "jsonrpc": "2.0",
            "id": uuid.uuid4().hex,
            "method": "tools/call",
            "params": {
                "name": "start_call",
                "arguments": merged.model_dump(by_alias=True, exclude_none=True),
            },
        }

        trace_logger.info(
            "Forwarding start_call to call service",
            issue_id=merged.issue_id,
            contact=merged.context.contact.name
        )

        async with httpx.AsyncClient(timeout=settings.tool_timeout_seconds, transport=self.transport) as client:
            try:
                response = await client.post(self.service_url, json=request)
            except httpx.TransportError as e:
                raise TransientError(f"Call service unreachable: {e}") from e

        if response.is_error:
            raise ToolError(f"Failed calling start_call tool: {response.status_code} {response.text}")

        try:
            payload = response.json()
        except json.JSONDecodeError as e:
            raise ToolError(f"Call service returned invalid JSON: {response.text[:200]}") from e

        if isinstance(payload, dict) and payload.get("error"):
            error = payload["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ToolError(f"start_call rejected: {message}")

        result = payload.get("result", payload) if isinstance(payload, dict) else payload
        return result if isinstance(result, dict) else {"result": result}
