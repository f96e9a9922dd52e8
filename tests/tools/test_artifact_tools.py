"""Workspace tool tests: parse, compile, lint and publish."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

import httpx
import pytest

from brenner_agent.agent_mail import AgentMailClient
from brenner_agent.config import AgentMailSettings
from brenner_agent.domain.artifact import artifact_to_dict, create_empty_artifact
from brenner_agent.observability import CompileObserver
from brenner_agent.retry import RetryConfig
from brenner_agent.tools import (
    ArtifactCompileTool,
    ArtifactLintTool,
    ArtifactPublishTool,
    DeltaParseTool,
)
from brenner_agent.tools.artifact_publish import normalize_recipients


def _write_thread(workspace: Path, messages: List[Dict[str, Any]]) -> str:
    (workspace / "thread.json").write_text(json.dumps(messages), encoding="utf-8")
    return "thread.json"


def _mock_client_factory(handler):
    def factory() -> AgentMailClient:
        return AgentMailClient(
            settings=AgentMailSettings(),
            retry_config=RetryConfig(max_attempts=1, base_delay=0, max_delay=0),
            transport=httpx.MockTransport(handler),
        )

    return factory


class TestDeltaParseTool:
    @pytest.mark.asyncio
    async def test_parse_file(self, tmp_path):
        body = (
            "Intro\n\n```delta\n"
            '{"operation": "ADD", "section": "hypothesis_slate", "payload": {"claim": "c"}}\n'
            "```\n\n```delta\n{\"operation\": \"ADD\"}\n```\n"
        )
        (tmp_path / "msg.md").write_text(body, encoding="utf-8")

        result = await DeltaParseTool(str(tmp_path)).execute(path="msg.md")

        assert result.success
        assert result.data["total_blocks"] == 2
        assert result.data["valid_count"] == 1
        assert result.data["invalid"][0]["code"] == "MISSING_REQUIRED_FIELD"

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        result = await DeltaParseTool(str(tmp_path)).execute(path="nope.md")
        assert not result.success
        assert "File not found" in result.error


class TestArtifactCompileTool:
    @pytest.mark.asyncio
    async def test_compile_from_export(self, tmp_path, publishable_thread):
        messages_path = _write_thread(tmp_path, publishable_thread)
        observer = CompileObserver(thread_id="RS-1")

        result = await ArtifactCompileTool(str(tmp_path), observer=observer).execute(
            thread_id="RS-1", messages_path=messages_path
        )

        assert result.success, result.error
        assert result.data["publishable"]
        assert result.data["version"] == 1
        md_path = tmp_path / "artifacts" / "RS-1.v1.md"
        json_path = tmp_path / "artifacts" / "RS-1.v1.json"
        assert md_path.read_text(encoding="utf-8") == result.data["markdown"]
        assert json.loads(json_path.read_text(encoding="utf-8"))["thread_id"] == "RS-1"
        assert "PUBLISHABLE" in result.output
        assert [e.event_type for e in observer.events] == ["parse", "merge", "lint"]

    @pytest.mark.asyncio
    async def test_requires_a_source(self, tmp_path):
        result = await ArtifactCompileTool(str(tmp_path)).execute(thread_id="RS-1")
        assert not result.success
        assert "messages_path or project_key" in result.error

    @pytest.mark.asyncio
    async def test_fetches_thread_from_mail(self, tmp_path, publishable_thread):
        thread = {"project": "/abs/project", "thread_id": "RS-1", "messages": publishable_thread}

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={"jsonrpc": "2.0", "id": "1", "result": {"contents": [{"text": json.dumps(thread)}]}},
            )

        observer = CompileObserver(thread_id="RS-1")
        tool = ArtifactCompileTool(str(tmp_path), client_factory=_mock_client_factory(handler), observer=observer)
        result = await tool.execute(thread_id="RS-1", project_key="/abs/project", output_path="out/RS-1.md")

        assert result.success, result.error
        assert (tmp_path / "out" / "RS-1.md").exists()
        assert (tmp_path / "out" / "RS-1.json").exists()
        assert observer.events[0].event_type == "thread_fetch"

    @pytest.mark.asyncio
    async def test_mail_failure_is_reported(self, tmp_path):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        observer = CompileObserver(thread_id="RS-1")
        tool = ArtifactCompileTool(str(tmp_path), client_factory=_mock_client_factory(handler), observer=observer)
        result = await tool.execute(thread_id="RS-1", project_key="/abs/project")

        assert not result.success
        assert "unreachable" in result.error
        assert observer.get_stats()["errors"] == 1


class TestArtifactLintTool:
    @pytest.mark.asyncio
    async def test_lint_compiled_artifact(self, tmp_path, publishable_thread):
        messages_path = _write_thread(tmp_path, publishable_thread)
        await ArtifactCompileTool(str(tmp_path)).execute(thread_id="RS-1", messages_path=messages_path)

        result = await ArtifactLintTool(str(tmp_path)).execute(path="artifacts/RS-1.v1.json")

        assert result.success
        assert result.data["valid"]
        assert result.data["summary"]["errors"] == 0

    @pytest.mark.asyncio
    async def test_lint_empty_artifact_fails(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text(json.dumps(artifact_to_dict(create_empty_artifact("RS-9"))), encoding="utf-8")

        result = await ArtifactLintTool(str(tmp_path)).execute(path=str(path))

        assert result.success
        assert not result.data["valid"]
        assert "EH-001" in [i["code"] for i in result.data["issues"]]

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        result = await ArtifactLintTool(str(tmp_path)).execute(path="missing.json")
        assert not result.success


class TestArtifactPublishTool:
    @pytest.mark.asyncio
    async def test_publish_sends_compiled_message(self, tmp_path):
        (tmp_path / "RS-1.v2.md").write_text("# artifact\n", encoding="utf-8")
        seen: List[Dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": "1",
                    "result": {"structuredContent": {"deliveries": [{"payload": {"id": 77}}]}},
                },
            )

        observer = CompileObserver(thread_id="RS-1")
        tool = ArtifactPublishTool(str(tmp_path), client_factory=_mock_client_factory(handler), observer=observer)
        result = await tool.execute(
            path="RS-1.v2.md",
            thread_id="RS-1",
            version=2,
            project_key="/abs/project",
            sender=" BlueLake ",
            to="RedForest, GreenCastle, RedForest",
        )

        assert result.success, result.error
        arguments = seen[0]["params"]["arguments"]
        assert arguments["subject"] == "COMPILED: v2 RS-1 artifact"
        assert arguments["sender_name"] == "BlueLake"
        assert arguments["to"] == ["RedForest", "GreenCastle"]
        assert arguments["body_md"] == "# artifact\n"
        assert result.data["message_id"] == 77
        assert observer.events[-1].event_type == "publish"

    @pytest.mark.asyncio
    async def test_recipients_required(self, tmp_path):
        result = await ArtifactPublishTool(str(tmp_path)).execute(
            path="x.md", thread_id="RS-1", version=1, project_key="/p", sender="BlueLake", to=" , "
        )
        assert not result.success
        assert "recipient" in result.error

    @pytest.mark.asyncio
    async def test_missing_markdown(self, tmp_path):
        result = await ArtifactPublishTool(str(tmp_path)).execute(
            path="x.md", thread_id="RS-1", version=1, project_key="/p", sender="BlueLake", to=["RedForest"]
        )
        assert not result.success
        assert "File not found" in result.error


def test_normalize_recipients():
    assert normalize_recipients("a, b,,a") == ["a", "b"]
    assert normalize_recipients([" x ", "y"]) == ["x", "y"]
    assert normalize_recipients(None) == []


def test_tool_schema():
    schema = ArtifactCompileTool().to_schema()
    assert schema["function"]["name"] == "artifact_compile"
    assert schema["function"]["parameters"]["required"] == ["thread_id"]
    assert "required" not in schema["function"]["parameters"]["properties"]["thread_id"]
