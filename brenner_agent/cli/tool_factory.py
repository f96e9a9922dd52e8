"""Tool factory - Creates tool instances for the CLI."""

from typing import Dict, Optional

from brenner_agent.agent_mail import AgentMailClient
from brenner_agent.config import BrennerConfig
from brenner_agent.observability import CompileObserver
from brenner_agent.tools import (
    ArtifactCompileTool,
    ArtifactLintTool,
    ArtifactPublishTool,
    BaseTool,
    DeltaParseTool,
)


def create_tools(
    workspace_dir: str,
    config: Optional[BrennerConfig] = None,
    observer: Optional[CompileObserver] = None,
) -> Dict[str, BaseTool]:
    """Create all available tools.

    Args:
        workspace_dir: Working directory for file-based tools
        config: Resolved configuration (Agent Mail endpoint, retry policy, merge limits)
        observer: Optional observer shared by the compile and publish tools

    Returns:
        Dictionary mapping tool names to tool instances
    """
    config = config or BrennerConfig()

    def client_factory() -> AgentMailClient:
        return AgentMailClient(settings=config.agent_mail, retry_config=config.retry)

    return {
        "delta_parse": DeltaParseTool(workspace_dir),
        "artifact_lint": ArtifactLintTool(workspace_dir),
        "artifact_compile": ArtifactCompileTool(
            workspace_dir,
            client_factory=client_factory,
            observer=observer,
            section_limits=config.section_limits,
        ),
        "artifact_publish": ArtifactPublishTool(workspace_dir, client_factory=client_factory, observer=observer),
    }
