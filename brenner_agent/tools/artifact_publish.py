"""Artifact publish tool - post compiled markdown back to the thread."""

from __future__ import annotations

import time
from typing import Callable, List, Optional, Union

from .base import ToolResult, WorkspaceTool
from ..agent_mail import AgentMailClient
from ..domain.thread_subjects import compiled_subject
from ..observability import CompileObserver


class ArtifactPublishTool(WorkspaceTool):
    """Send a compiled artifact to the thread as a COMPILED message."""

    name = "artifact_publish"
    description = """Publish a compiled artifact markdown file to its Agent Mail thread
as a 'COMPILED: v<N> <thread> artifact' message."""
    parameters = {
        "path": {"type": "string", "description": "Compiled markdown file", "required": True},
        "thread_id": {"type": "string", "description": "Thread to publish into", "required": True},
        "version": {"type": "integer", "description": "Artifact version being published", "required": True},
        "project_key": {"type": "string", "description": "Agent Mail project key", "required": True},
        "sender": {"type": "string", "description": "Publishing agent name", "required": True},
        "to": {"type": "array", "description": "Recipient agent names", "required": True},
        "subject": {"type": "string", "description": "Optional subject override"},
    }

    def __init__(
        self,
        workspace_dir: str = ".",
        client_factory: Optional[Callable[[], AgentMailClient]] = None,
        observer: Optional[CompileObserver] = None,
    ):
        super().__init__(workspace_dir)
        self.client_factory = client_factory or AgentMailClient
        self.observer = observer

    async def execute(
        self,
        path: str,
        thread_id: str,
        version: int,
        project_key: str,
        sender: str,
        to: Union[List[str], str],
        subject: Optional[str] = None,
    ) -> ToolResult:
        try:
            recipients = normalize_recipients(to)
            if not recipients:
                return ToolResult(success=False, output="", error="At least one recipient is required")
            if not sender.strip():
                return ToolResult(success=False, output="", error="Sender name is required")

            file_path = self._resolve_path(path)
            if not file_path.exists():
                return ToolResult(success=False, output="", error=f"File not found: {path}")
            body = file_path.read_text(encoding="utf-8")

            final_subject = compiled_subject(thread_id, version, subject)
            started = time.perf_counter()
            async with self.client_factory() as client:
                sent = await client.send_message(
                    project_key=project_key,
                    sender=sender.strip(),
                    to=recipients,
                    subject=final_subject,
                    body_md=body,
                    thread_id=thread_id,
                )
            if self.observer:
                self.observer.log_publish(final_subject, recipients, (time.perf_counter() - started) * 1000)

            suffix = f" (message {sent.message_id})" if sent.message_id is not None else ""
            return ToolResult(
                success=True,
                output=f"Published '{final_subject}' to {', '.join(recipients)}{suffix}",
                data={"subject": final_subject, "recipients": recipients, "message_id": sent.message_id},
            )
        except Exception as e:
            if self.observer:
                self.observer.log_error("publish", str(e), {"thread_id": thread_id})
            return ToolResult(success=False, output="", error=str(e))


def normalize_recipients(to: Union[List[str], str, None]) -> List[str]:
    """Split, trim and de-duplicate recipients, keeping first-seen order."""
    raw = to.split(",") if isinstance(to, str) else list(to or [])
    recipients: List[str] = []
    for name in raw:
        name = name.strip() if isinstance(name, str) else ""
        if name and name not in recipients:
            recipients.append(name)
    return recipients
