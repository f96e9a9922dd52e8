"""Async client for the Agent Mail coordination service.

Agent Mail speaks JSON-RPC 2.0 over HTTP. Thread history is read through
``resources/read`` and messages are posted through the ``send_message``
tool.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import AgentMailSettings
from .domain.thread_compiler import ThreadMessage
from .retry import PermanentError, RetryConfig, TransientError, retry_with_backoff, RETRYABLE_STATUS_CODES

logger = logging.getLogger(__name__)


class AgentMailError(Exception):
    """Agent Mail request failed (HTTP error, JSON-RPC error or bad payload)."""

    def __init__(self, message: str, status_code: Optional[int] = None, rpc_error: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.rpc_error = rpc_error


class AgentMailMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int
    thread_id: Optional[str] = None
    subject: str = ""
    created_ts: str
    body_md: Optional[str] = None
    sender: Optional[str] = Field(default=None, alias="from")
    to: list[str] = Field(default_factory=list)


class AgentMailThread(BaseModel):
    model_config = ConfigDict(extra="ignore")

    project: str = ""
    thread_id: str
    messages: list[AgentMailMessage] = Field(default_factory=list)


class SendResult(BaseModel):
    message_id: Optional[int] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class AgentMailClient:
    """JSON-RPC client bound to one Agent Mail endpoint."""

    def __init__(
        self,
        settings: Optional[AgentMailSettings] = None,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or AgentMailSettings()
        self.retry_config = retry_config or RetryConfig()
        self.endpoint = build_endpoint(self.settings.base_url, self.settings.path)

        headers = {"Accept": "application/json, text/event-stream", "Content-Type": "application/json"}
        if self.settings.bearer_token:
            headers["Authorization"] = f"Bearer {self.settings.bearer_token}"
        self.client = httpx.AsyncClient(timeout=self.settings.timeout_seconds, headers=headers, transport=transport)

    async def __aenter__(self) -> "AgentMailClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    # -- JSON-RPC ----------------------------------------------------------

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Send one JSON-RPC request (with retries) and return its ``result``."""
        payload = {"jsonrpc": "2.0", "id": str(uuid.uuid4()), "method": method, "params": params or {}}
        try:
            return await retry_with_backoff(self._post_once, self.retry_config, payload)
        except PermanentError as exc:
            if isinstance(exc.__cause__, AgentMailError):
                raise exc.__cause__ from None
            raise AgentMailError(str(exc)) from exc
        except (TransientError, httpx.TransportError) as exc:
            raise AgentMailError(f"Agent Mail unreachable at {self.endpoint}: {exc}") from exc

    async def _post_once(self, payload: Dict[str, Any]) -> Any:
        response = await self.client.post(self.endpoint, json=payload)
        text = response.text

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise TransientError(f"Agent Mail HTTP {response.status_code}: {text[:400]}")

        try:
            data = json.loads(text) if text else None
        except json.JSONDecodeError:
            raise AgentMailError(
                f"Agent Mail non-JSON response (HTTP {response.status_code}): {text[:400]}",
                status_code=response.status_code,
            ) from None

        if response.is_error:
            raise AgentMailError(f"Agent Mail HTTP {response.status_code}: {data}", status_code=response.status_code)
        if not isinstance(data, dict):
            raise AgentMailError(f"Agent Mail malformed JSON: {data!r}", status_code=response.status_code)
        if data.get("error"):
            raise AgentMailError(f"Agent Mail MCP error: {json.dumps(data['error'])}", rpc_error=data["error"])
        return data.get("result")

    async def tools_call(self, name: str, arguments: Dict[str, Any]) -> Any:
        return await self.call("tools/call", {"name": name, "arguments": arguments})

    async def resources_read(self, uri: str) -> Any:
        return await self.call("resources/read", {"uri": uri})

    # -- Operations --------------------------------------------------------

    async def read_thread(self, project_key: str, thread_id: str, include_bodies: bool = True) -> AgentMailThread:
        uri = resource_uri(f"thread/{thread_id}", {"project": project_key, "include_bodies": include_bodies})
        logger.info(f"Reading thread {thread_id} from {project_key}")
        text = read_first_resource_text(await self.resources_read(uri))
        try:
            return AgentMailThread.model_validate_json(text)
        except ValidationError as exc:
            raise AgentMailError(f"Agent Mail thread payload is invalid: {exc}") from exc

    async def send_message(
        self,
        project_key: str,
        sender: str,
        to: List[str],
        subject: str,
        body_md: str,
        thread_id: Optional[str] = None,
        ack_required: bool = False,
    ) -> SendResult:
        arguments: Dict[str, Any] = {
            "project_key": project_key,
            "sender_name": sender,
            "to": to,
            "subject": subject,
            "body_md": body_md,
            "ack_required": ack_required,
        }
        if thread_id:
            arguments["thread_id"] = thread_id
        logger.info(f"Sending '{subject}' as {sender} to {', '.join(to)}")
        result = await self.tools_call("send_message", arguments)
        raw = result if isinstance(result, dict) else {}
        return SendResult(message_id=extract_message_id(raw), raw=raw)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_endpoint(base_url: str, path: str) -> str:
    base = base_url.rstrip("/")
    path = path if path.startswith("/") else f"/{path}"
    if not path.endswith("/"):
        path = f"{path}/"
    return f"{base}{path}"


def resource_uri(path: str, query: Optional[Dict[str, Any]] = None) -> str:
    params = []
    for key, value in (query or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        params.append((key, str(value)))
    uri = f"resource://{path}"
    return f"{uri}?{urlencode(params)}" if params else uri


def read_first_resource_text(result: Any) -> str:
    if not isinstance(result, dict):
        raise AgentMailError(f"Agent Mail malformed resources/read response: {result!r}")
    contents = result.get("contents")
    if not isinstance(contents, list) or not contents:
        raise AgentMailError("Agent Mail resources/read response missing contents")
    first = contents[0]
    if not isinstance(first, dict) or not isinstance(first.get("text"), str):
        raise AgentMailError("Agent Mail resources/read response missing first.text")
    return first["text"]


def extract_message_id(result: Dict[str, Any]) -> Optional[int]:
    structured = result.get("structuredContent")
    if not isinstance(structured, dict):
        return None
    deliveries = structured.get("deliveries")
    if not isinstance(deliveries, list) or not deliveries:
        return None
    first = deliveries[0]
    payload = first.get("payload") if isinstance(first, dict) else None
    if isinstance(payload, dict) and isinstance(payload.get("id"), int):
        return payload["id"]
    return None


def to_thread_messages(thread: AgentMailThread) -> List[ThreadMessage]:
    """Convert mail service messages into domain :class:`ThreadMessage` values."""
    return [
        ThreadMessage(
            id=m.id,
            sender=(m.sender or "").strip(),
            created_ts=m.created_ts,
            subject=m.subject,
            body=m.body_md or "",
        )
        for m in thread.messages
    ]


def thread_from_export(data: Any, thread_id: str = "") -> AgentMailThread:
    """Validate a saved thread export (a thread object or a bare message list)."""
    if isinstance(data, list):
        data = {"thread_id": thread_id, "messages": data}
    if isinstance(data, dict) and not data.get("thread_id"):
        data = dict(data, thread_id=thread_id)
    try:
        return AgentMailThread.model_validate(data)
    except ValidationError as exc:
        raise AgentMailError(f"Thread export is invalid: {exc}") from exc
