"""Delta parse tool - report the delta blocks found in a message file."""

from __future__ import annotations

from .base import ToolResult, WorkspaceTool
from ..domain.delta_parser import format_parse_report, parse_delta_message, payload_summary


class DeltaParseTool(WorkspaceTool):
    """Parse the delta blocks in a markdown message body."""

    name = "delta_parse"
    description = """Parse every ```delta fenced block in a markdown file and report which
blocks are valid deltas and why the others were rejected."""
    parameters = {
        "path": {
            "type": "string",
            "description": "Path to the markdown file holding the message body",
            "required": True,
        },
    }

    async def execute(self, path: str) -> ToolResult:
        try:
            file_path = self._resolve_path(path)
            if not file_path.exists():
                return ToolResult(success=False, output="", error=f"File not found: {path}")

            result = parse_delta_message(file_path.read_text(encoding="utf-8"))
            return ToolResult(
                success=True,
                output=format_parse_report(result, source=path),
                data={
                    "total_blocks": result.total_blocks,
                    "valid_count": result.valid_count,
                    "invalid_count": result.invalid_count,
                    "deltas": [payload_summary(d) for d in result.valid_deltas],
                    "invalid": [
                        {"block_index": d.block_index, "code": d.code, "reason": d.reason}
                        for d in result.invalid_deltas
                    ],
                },
            )
        except Exception as e:
            return ToolResult(success=False, output="", error=str(e))
