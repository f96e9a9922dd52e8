"""Artifact lint tool - run the guardrail battery over a saved artifact."""

from __future__ import annotations

from .base import ToolResult, WorkspaceTool
from ..domain.artifact import artifact_from_dict
from ..domain.artifact_linter import format_lint_report_human, lint_artifact


class ArtifactLintTool(WorkspaceTool):
    """Lint an artifact JSON file produced by ``artifact_compile``."""

    name = "artifact_lint"
    description = """Lint a compiled artifact (JSON) against the research guardrails and
return errors, warnings and info findings. The artifact is publishable only when
there are no errors."""
    parameters = {
        "path": {
            "type": "string",
            "description": "Path to the artifact JSON file",
            "required": True,
        },
    }

    async def execute(self, path: str) -> ToolResult:
        try:
            artifact = artifact_from_dict(self._read_json(path))
            report = lint_artifact(artifact)
            return ToolResult(
                success=True,
                output=format_lint_report_human(report, artifact_name=artifact.thread_id),
                data=report.to_dict(),
            )
        except Exception as e:
            return ToolResult(success=False, output="", error=str(e))
