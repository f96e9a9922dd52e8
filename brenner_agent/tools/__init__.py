"""Brenner Agent Tools - Workspace and Agent Mail bound artifact operations."""

from .base import BaseTool, ToolResult, WorkspaceTool
from .delta_parse import DeltaParseTool
from .artifact_compile import ArtifactCompileTool
from .artifact_lint import ArtifactLintTool
from .artifact_publish import ArtifactPublishTool

__all__ = [
    "BaseTool",
    "ToolResult",
    "WorkspaceTool",
    "DeltaParseTool",
    "ArtifactCompileTool",
    "ArtifactLintTool",
    "ArtifactPublishTool",
]
