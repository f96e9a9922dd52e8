"""Artifact compile tool - replay a thread into a rendered artifact."""

from __future__ import annotations

import json
import time
from typing import Callable, Dict, List, Mapping, Optional

from .base import ToolResult, WorkspaceTool
from ..agent_mail import AgentMailClient, thread_from_export, to_thread_messages
from ..domain.artifact import Section, artifact_from_dict, artifact_to_dict
from ..domain.thread_compiler import CompileResult, ThreadMessage, compile_thread
from ..observability import CompileObserver

ClientFactory = Callable[[], AgentMailClient]


class ArtifactCompileTool(WorkspaceTool):
    """Compile a research thread into canonical markdown plus artifact JSON."""

    name = "artifact_compile"
    description = """Compile a research thread: parse every delta block, merge them in
timestamp order, lint the result and render canonical markdown. Messages come from a
saved thread export (messages_path) or are fetched live from Agent Mail (project_key).
Writes <output_path> (markdown) and the matching .json artifact."""
    parameters = {
        "thread_id": {
            "type": "string",
            "description": "Thread identifier; becomes the artifact identity",
            "required": True,
        },
        "messages_path": {
            "type": "string",
            "description": "Path to a thread export JSON (thread object or message list)",
        },
        "project_key": {
            "type": "string",
            "description": "Agent Mail project key to fetch the thread from",
        },
        "base_path": {
            "type": "string",
            "description": "Optional artifact JSON to merge onto instead of an empty artifact",
        },
        "output_path": {
            "type": "string",
            "description": "Markdown output path (default: artifacts/<thread_id>.v<N>.md)",
        },
    }

    def __init__(
        self,
        workspace_dir: str = ".",
        client_factory: Optional[ClientFactory] = None,
        observer: Optional[CompileObserver] = None,
        section_limits: Optional[Mapping[Section, int]] = None,
    ):
        super().__init__(workspace_dir)
        self.client_factory = client_factory or AgentMailClient
        self.observer = observer
        self.section_limits = section_limits

    async def execute(
        self,
        thread_id: str,
        messages_path: Optional[str] = None,
        project_key: Optional[str] = None,
        base_path: Optional[str] = None,
        output_path: Optional[str] = None,
    ) -> ToolResult:
        try:
            if not messages_path and not project_key:
                return ToolResult(success=False, output="", error="Either messages_path or project_key is required")

            if messages_path:
                messages = to_thread_messages(thread_from_export(self._read_json(messages_path), thread_id))
            else:
                messages = await self._fetch_thread(project_key or "", thread_id)

            base = artifact_from_dict(self._read_json(base_path)) if base_path else None
            result = compile_thread(thread_id, messages, base=base, limits=self.section_limits)
            self._observe(result)

            if not result.ok or result.artifact is None:
                errors = result.merge.errors if result.merge else []
                detail = "; ".join(f"{e.code}: {e.message}" for e in errors)
                return ToolResult(
                    success=False,
                    output="",
                    error=f"Artifact merge failed (blocking publish): {detail}",
                    data=result.to_dict(),
                )

            md_path = output_path or f"artifacts/{thread_id}.v{result.version}.md"
            written_md = self._write_text(md_path, result.markdown)
            json_path = written_md.with_suffix(".json")
            json_path.write_text(
                json.dumps(artifact_to_dict(result.artifact), indent=2, sort_keys=True, ensure_ascii=False) + "\n",
                encoding="utf-8",
            )

            data = result.to_dict()
            data.update(
                {
                    "markdown_path": str(written_md),
                    "artifact_path": str(json_path),
                    "markdown": result.markdown,
                }
            )
            return ToolResult(success=True, output=self._format_summary(result, str(written_md)), data=data)
        except Exception as e:
            if self.observer:
                self.observer.log_error("compile", str(e), {"thread_id": thread_id})
            return ToolResult(success=False, output="", error=str(e))

    async def _fetch_thread(self, project_key: str, thread_id: str) -> List[ThreadMessage]:
        started = time.perf_counter()
        async with self.client_factory() as client:
            thread = await client.read_thread(project_key, thread_id, include_bodies=True)
        messages = to_thread_messages(thread)
        if self.observer:
            self.observer.log_thread_fetch(project_key, len(messages), (time.perf_counter() - started) * 1000)
        return messages

    def _observe(self, result: CompileResult) -> None:
        if not self.observer:
            return
        stats = result.stats
        self.observer.log_parse(stats.total_blocks, stats.valid_blocks, stats.invalid_blocks)
        if result.merge:
            self.observer.log_merge(
                result.merge.applied_count, result.merge.skipped_count, len(result.merge.warnings)
            )
        if result.lint:
            self.observer.log_lint(result.lint.valid, result.lint.summary["errors"], result.lint.summary["warnings"])

    def _format_summary(self, result: CompileResult, md_path: str) -> str:
        merge = result.merge
        lint = result.lint
        status = "PUBLISHABLE" if result.publishable else "NOT PUBLISHABLE"
        lines = [
            f"## Compiled {result.thread_id} v{result.version}: {status}",
            "",
            f"- Messages: {result.stats.message_count} ({result.stats.delta_message_count} with deltas)",
            f"- Delta blocks: {result.stats.valid_blocks} valid, {result.stats.invalid_blocks} invalid",
        ]
        if merge:
            lines.append(f"- Merge: {merge.applied_count} applied, {merge.skipped_count} skipped")
        if lint:
            summary: Dict[str, int] = lint.summary
            lines.append(
                f"- Lint: {summary['errors']} errors, {summary['warnings']} warnings, {summary['info']} info"
            )
        lines.append(f"- Written: {md_path}")

        if result.invalid_deltas:
            lines.append("")
            lines.append("### Rejected delta blocks")
            for d in result.invalid_deltas:
                lines.append(f"- {d.agent or 'unknown'} ({d.location}): {d.reason}")
        if merge and merge.warnings:
            lines.append("")
            lines.append("### Merge warnings")
            for w in merge.warnings:
                target = f" {w.target_id}" if w.target_id else ""
                lines.append(f"- [{w.code}]{target}: {w.message}")
        return "\n".join(lines)
