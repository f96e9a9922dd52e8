"""Agent Mail JSON-RPC client tests against an in-process mock transport."""

from __future__ import annotations

import json
from typing import Any, Dict, List

import httpx
import pytest

from brenner_agent.agent_mail import (
    AgentMailClient,
    AgentMailError,
    build_endpoint,
    extract_message_id,
    resource_uri,
    thread_from_export,
    to_thread_messages,
)
from brenner_agent.config import AgentMailSettings
from brenner_agent.retry import RetryConfig

FAST_RETRY = RetryConfig(max_attempts=3, base_delay=0, max_delay=0)

THREAD = {
    "project": "/abs/project",
    "thread_id": "RS-1",
    "messages": [
        {
            "id": 11,
            "thread_id": "RS-1",
            "subject": "DELTA[gen]: slate",
            "created_ts": "2026-01-05T10:00:00Z",
            "body_md": "body",
            "from": "BlueLake",
            "to": ["RedForest"],
            "importance": "normal",
        }
    ],
}


def _rpc_result(result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": "1", "result": result}


def _client(handler, **settings) -> AgentMailClient:
    return AgentMailClient(
        settings=AgentMailSettings(**settings),
        retry_config=FAST_RETRY,
        transport=httpx.MockTransport(handler),
    )


class TestReadThread:
    @pytest.mark.asyncio
    async def test_reads_thread_resource(self):
        seen: List[Dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json=_rpc_result({"contents": [{"text": json.dumps(THREAD)}]}))

        async with _client(handler) as client:
            thread = await client.read_thread("/abs/project", "RS-1")

        assert seen[0]["method"] == "resources/read"
        assert seen[0]["params"]["uri"] == (
            "resource://thread/RS-1?project=%2Fabs%2Fproject&include_bodies=true"
        )
        assert thread.thread_id == "RS-1"
        message = thread.messages[0]
        assert message.sender == "BlueLake"
        assert to_thread_messages(thread)[0].body == "body"

    @pytest.mark.asyncio
    async def test_bearer_token_and_endpoint(self):
        captured: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            captured.append(request)
            return httpx.Response(200, json=_rpc_result({"contents": [{"text": json.dumps(THREAD)}]}))

        async with _client(handler, base_url="http://mail:9000/", path="mcp", bearer_token="tok") as client:
            await client.read_thread("/abs/project", "RS-1")

        assert str(captured[0].url) == "http://mail:9000/mcp/"
        assert captured[0].headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_bad_thread_payload(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=_rpc_result({"contents": [{"text": '{"messages": "nope"}'}]}))

        async with _client(handler) as client:
            with pytest.raises(AgentMailError):
                await client.read_thread("/abs/project", "RS-1")


class TestSendMessage:
    @pytest.mark.asyncio
    async def test_send_message_arguments_and_id(self):
        seen: List[Dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(
                200,
                json=_rpc_result({"structuredContent": {"deliveries": [{"payload": {"id": 42}}]}}),
            )

        async with _client(handler) as client:
            sent = await client.send_message(
                project_key="/abs/project",
                sender="BlueLake",
                to=["RedForest"],
                subject="COMPILED: v1 RS-1 artifact",
                body_md="# artifact",
                thread_id="RS-1",
            )

        params = seen[0]["params"]
        assert seen[0]["method"] == "tools/call"
        assert params["name"] == "send_message"
        assert params["arguments"] == {
            "project_key": "/abs/project",
            "sender_name": "BlueLake",
            "to": ["RedForest"],
            "subject": "COMPILED: v1 RS-1 artifact",
            "body_md": "# artifact",
            "ack_required": False,
            "thread_id": "RS-1",
        }
        assert sent.message_id == 42


class TestErrors:
    @pytest.mark.asyncio
    async def test_rpc_error_is_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": "1", "error": {"code": -32602, "message": "bad"}})

        async with _client(handler) as client:
            with pytest.raises(AgentMailError) as excinfo:
                await client.tools_call("send_message", {})

        assert len(calls) == 1
        assert excinfo.value.rpc_error == {"code": -32602, "message": "bad"}

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json=_rpc_result({"ok": True}))

        async with _client(handler) as client:
            assert await client.call("health_check") == {"ok": True}
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="gateway")

        async with _client(handler) as client:
            with pytest.raises(AgentMailError, match="unreachable"):
                await client.call("health_check")

    @pytest.mark.asyncio
    async def test_client_error_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"detail": "unauthorized"})

        async with _client(handler) as client:
            with pytest.raises(AgentMailError) as excinfo:
                await client.call("health_check")
        assert excinfo.value.status_code == 401

    @pytest.mark.asyncio
    async def test_non_json_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        async with _client(handler) as client:
            with pytest.raises(AgentMailError, match="non-JSON"):
                await client.call("health_check")

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            with pytest.raises(AgentMailError, match="unreachable"):
                await client.call("health_check")


class TestHelpers:
    def test_build_endpoint(self):
        assert build_endpoint("http://h:1/", "/mcp/") == "http://h:1/mcp/"
        assert build_endpoint("http://h:1", "api") == "http://h:1/api/"

    def test_resource_uri(self):
        assert resource_uri("thread/T", {"a": None, "b": False}) == "resource://thread/T?b=false"
        assert resource_uri("inbox/x") == "resource://inbox/x"

    def test_extract_message_id(self):
        assert extract_message_id({}) is None
        assert extract_message_id({"structuredContent": {"deliveries": []}}) is None
        assert extract_message_id({"structuredContent": {"deliveries": [{"payload": {"id": 7}}]}}) == 7

    def test_thread_from_export_accepts_message_list(self):
        thread = thread_from_export(THREAD["messages"], "RS-1")
        assert thread.thread_id == "RS-1"
        assert thread.messages[0].id == 11

    def test_thread_from_export_rejects_garbage(self):
        with pytest.raises(AgentMailError):
            thread_from_export({"messages": [{"id": "x"}]}, "RS-1")
