"""
Tests for call-context enrichment and the start_call JSON-RPC transport.
"""

import json

import httpx
import pytest

from models.schemas import SharedSecrets, UserProfile
from tools.base import PermanentError, ToolError
from tools.call import StartCallTool, enrich_call_context


CONTEXT = {
    "callPurpose": "Get the internet fixed",
    "contact": {"type": "business", "name": "Xfinity", "phoneNumber": "+18009346489"},
    "caller": {"name": "J. Doe", "identifiers": ["Account number: 123"]},
    "issue": {"summary": "No internet since Monday"},
}

PROFILE = UserProfile(
    first_name="Jane",
    last_name="Doe",
    phone="+15550001111",
    email="jane@example.com",
    address="1 Main St",
    timezone="America/Los_Angeles",
    birthdate="1990-01-01",
)


class TestEnrichment:
    """Test merging trusted profile data into the call context."""

    def test_model_values_win(self):
        enriched = enrich_call_context(CONTEXT, PROFILE)
        assert enriched["caller"]["name"] == "J. Doe"
        assert enriched["callPurpose"] == "Get the internet fixed"

    def test_profile_fills_gaps(self):
        enriched = enrich_call_context({"contact": CONTEXT["contact"]}, PROFILE)
        assert enriched["caller"]["name"] == "Jane Doe"
        assert enriched["caller"]["callback"] == "+15550001111"
        assert enriched["availability"]["timezone"] == "America/Los_Angeles"

    def test_identifiers_and_verification_extended(self):
        enriched = enrich_call_context(CONTEXT, PROFILE)
        assert enriched["caller"]["identifiers"] == [
            "Account number: 123",
            "Phone: +15550001111",
            "Email: jane@example.com",
            "Address: 1 Main St",
        ]
        assert enriched["verification"] == [
            "Phone: +15550001111",
            "Email: jane@example.com",
            "Service address: 1 Main St",
            "Date of birth: 1990-01-01",
        ]

    def test_values_already_mentioned_not_repeated(self):
        context = {
            **CONTEXT,
            "caller": {"name": "Jane", "identifiers": ["Call back on +15550001111"]},
            "verification": ["Email on file jane@example.com"],
        }
        enriched = enrich_call_context(context, PROFILE)
        assert not any(i.startswith("Phone:") for i in enriched["caller"]["identifiers"])
        assert not any(v.startswith("Email:") for v in enriched["verification"])

    def test_defaults_without_profile_values(self):
        enriched = enrich_call_context({}, UserProfile())
        assert enriched["caller"]["name"] == "User"
        assert enriched["availability"]["timezone"] == "UTC"
        assert enriched["verification"] == []

    def test_single_name_used_alone(self):
        enriched = enrich_call_context({}, UserProfile(last_name="Doe"))
        assert enriched["caller"]["name"] == "Doe"


def recording_transport(response: httpx.Response, seen: list) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return response
    return httpx.MockTransport(handler)


SECRETS = SharedSecrets(issue_id="issue-1", auth_token="secret-token", settings=PROFILE)


class TestStartCallTool:
    """Test the JSON-RPC call to the call service."""

    @pytest.mark.asyncio
    async def test_posts_json_rpc_request(self):
        seen = []
        tool = StartCallTool(
            service_url="http://calls.test/api/mcp",
            transport=recording_transport(
                httpx.Response(200, json={"jsonrpc": "2.0", "id": "1", "result": {"callId": "c-1"}}), seen
            ),
        )

        result = await tool.execute({"context": CONTEXT}, SECRETS)

        assert result == {"callId": "c-1"}
        body = seen[0]
        assert body["jsonrpc"] == "2.0"
        assert body["method"] == "tools/call"
        assert body["params"]["name"] == "start_call"
        arguments = body["params"]["arguments"]
        assert arguments["issueId"] == "issue-1"
        assert arguments["authToken"] == "secret-token"
        assert arguments["context"]["contact"]["name"] == "Xfinity"
        assert arguments["context"]["caller"]["callback"] == "+15550001111"

    @pytest.mark.asyncio
    async def test_payload_without_result_returned_whole(self):
        tool = StartCallTool(transport=recording_transport(httpx.Response(200, json={"ok": True}), []))
        assert await tool.execute({"context": CONTEXT}, SECRETS) == {"ok": True}

    @pytest.mark.asyncio
    async def test_http_error_fails(self):
        tool = StartCallTool(transport=recording_transport(httpx.Response(502, text="bad gateway"), []))
        with pytest.raises(ToolError, match="502"):
            await tool.execute({"context": CONTEXT}, SECRETS)

    @pytest.mark.asyncio
    async def test_json_rpc_error_member_fails(self):
        tool = StartCallTool(transport=recording_transport(
            httpx.Response(200, json={"jsonrpc": "2.0", "id": "1", "error": {"code": -32000, "message": "no credits"}}),
            [],
        ))
        with pytest.raises(ToolError, match="no credits"):
            await tool.execute({"context": CONTEXT}, SECRETS)

    @pytest.mark.asyncio
    async def test_missing_session_ids_fail_without_request(self):
        seen = []
        tool = StartCallTool(transport=recording_transport(httpx.Response(200, json={}), seen))
        with pytest.raises(PermanentError, match="issueId"):
            await tool.execute({"context": CONTEXT}, SharedSecrets(auth_token="t"))
        with pytest.raises(PermanentError, match="authToken"):
            await tool.execute({"context": CONTEXT}, SharedSecrets(issue_id="i"))
        assert seen == []

    @pytest.mark.asyncio
    async def test_model_supplied_ids_used_as_fallback(self):
        seen = []
        tool = StartCallTool(transport=recording_transport(httpx.Response(200, json={"result": {}}), seen))
        await tool.execute({"issueId": "i-2", "authToken": "t-2", "context": CONTEXT}, SharedSecrets())
        assert seen[0]["params"]["arguments"]["issueId"] == "i-2"

    @pytest.mark.asyncio
    async def test_invalid_context_is_permanent(self):
        tool = StartCallTool(transport=recording_transport(httpx.Response(200, json={}), []))
        with pytest.raises(PermanentError):
            await tool.execute({"context": {"callPurpose": "x"}}, SharedSecrets(issue_id="i", auth_token="t"))

    def test_display_arguments_hide_auth_token(self):
        tool = StartCallTool()
        shown = tool.display_arguments({"context": CONTEXT, "authToken": "leak"}, SECRETS)
        assert shown["issueId"] == "issue-1"
        assert "authToken" not in shown

    def test_definition_exposes_context_schema(self):
        definition = StartCallTool().definition()
        assert definition["function"]["name"] == "start_call"
        assert "context" in definition["function"]["parameters"]["properties"]
