"""Pytest configuration for domain package tests."""

from __future__ import annotations

import itertools
import json
from typing import Any, Dict, List, Optional

import pytest

from brenner_agent.domain.artifact import Delta
from brenner_agent.domain.delta_parser import parse_delta_block
from brenner_agent.domain.thread_compiler import ThreadMessage


@pytest.fixture
def make_delta():
    """Build a validated Delta through the parser, failing loudly if it is rejected."""
    ids = itertools.count(1)

    def _make(
        operation: str,
        section: str,
        payload: Optional[Dict[str, Any]] = None,
        target_id: Optional[str] = None,
        agent: str = "BlueLake",
        timestamp: str = "2026-01-01T00:00:00Z",
        rationale: Optional[str] = None,
    ) -> Delta:
        data: Dict[str, Any] = {"operation": operation, "section": section, "target_id": target_id}
        if payload is not None:
            data["payload"] = payload
        if rationale is not None:
            data["rationale"] = rationale
        parsed = parse_delta_block(json.dumps(data), message_id=next(ids), agent=agent, timestamp=timestamp)
        assert isinstance(parsed, Delta), parsed.reason
        return parsed

    return _make


@pytest.fixture
def thread_messages(publishable_thread) -> List[ThreadMessage]:
    return [
        ThreadMessage(
            id=m["id"],
            sender=m["from"],
            created_ts=m["created_ts"],
            subject=m["subject"],
            body=m["body_md"],
        )
        for m in publishable_thread
    ]
