"""Compile a research thread's message history into a published artifact.

``compile_thread`` replays the whole history every time: parse every
non-COMPILED message, merge all valid deltas onto an empty (or given) base,
lint and render. Two runs over the same messages give identical output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .artifact import Artifact, Delta, Section, create_empty_artifact
from .artifact_linter import LintReport, lint_artifact
from .artifact_merge import MergeResult, merge_artifact
from .artifact_renderer import render_artifact_markdown
from .delta_parser import InvalidDelta, parse_delta_message
from .linting import RuleRunner
from .thread_subjects import COMPILED, KICKOFF, classify_subject, next_compiled_version

UNKNOWN_AGENT = "unknown"


@dataclass(frozen=True)
class ThreadMessage:
    """One message of a thread, as delivered by the mail service."""

    id: int
    sender: str
    created_ts: str
    subject: str = ""
    body: str = ""


@dataclass
class CompileStats:
    message_count: int = 0
    delta_message_count: int = 0
    total_blocks: int = 0
    valid_blocks: int = 0
    invalid_blocks: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "message_count": self.message_count,
            "delta_message_count": self.delta_message_count,
            "total_blocks": self.total_blocks,
            "valid_blocks": self.valid_blocks,
            "invalid_blocks": self.invalid_blocks,
        }


@dataclass
class CompileResult:
    ok: bool
    thread_id: str
    version: int
    artifact: Optional[Artifact] = None
    markdown: str = ""
    lint: Optional[LintReport] = None
    merge: Optional[MergeResult] = None
    invalid_deltas: List[InvalidDelta] = field(default_factory=list)
    stats: CompileStats = field(default_factory=CompileStats)

    @property
    def publishable(self) -> bool:
        return self.ok and self.lint is not None and self.lint.valid

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "thread_id": self.thread_id,
            "version": self.version,
            "publishable": self.publishable,
            "stats": self.stats.to_dict(),
            "merge": self.merge.to_dict() if self.merge else None,
            "lint": self.lint.to_dict() if self.lint else None,
            "invalid_deltas": [
                {
                    "message_id": d.message_id,
                    "block_index": d.block_index,
                    "agent": d.agent,
                    "code": d.code,
                    "reason": d.reason,
                }
                for d in self.invalid_deltas
            ],
        }


def order_messages(messages: Sequence[ThreadMessage]) -> List[ThreadMessage]:
    """Stable sort by ``created_ts``; equal timestamps keep arrival order."""
    return sorted(messages, key=lambda m: m.created_ts)


def collect_deltas(messages: Sequence[ThreadMessage], stats: Optional[CompileStats] = None):
    """Parse every non-COMPILED message; return ``(valid, invalid)`` delta lists."""
    stats = stats if stats is not None else CompileStats()
    valid: List[Delta] = []
    invalid: List[InvalidDelta] = []
    for message in messages:
        if classify_subject(message.subject).kind == COMPILED:
            continue
        result = parse_delta_message(
            message.body,
            message_id=message.id,
            agent=(message.sender or "").strip() or UNKNOWN_AGENT,
            timestamp=message.created_ts,
        )
        if result.total_blocks:
            stats.delta_message_count += 1
        stats.total_blocks += result.total_blocks
        stats.valid_blocks += result.valid_count
        stats.invalid_blocks += result.invalid_count
        valid.extend(result.valid_deltas)
        invalid.extend(result.invalid_deltas)
    return valid, invalid


def compile_thread(
    thread_id: str,
    messages: Sequence[ThreadMessage],
    base: Optional[Artifact] = None,
    runner: Optional[RuleRunner] = None,
    limits: Optional[Mapping[Section, int]] = None,
) -> CompileResult:
    """Parse, merge, lint and render one thread.

    Without *base* the merge starts from an empty artifact created at the
    kickoff timestamp, versioned so the result carries the next COMPILED
    version number.
    """
    ordered = order_messages(messages)
    next_version = next_compiled_version(ordered)
    stats = CompileStats(message_count=len(ordered))

    if base is None:
        base = create_empty_artifact(thread_id, created_at=_kickoff_timestamp(ordered), version=next_version - 1)

    valid, invalid = collect_deltas(ordered, stats)
    merge = merge_artifact(base, valid, limits=limits)
    if not merge.ok or merge.artifact is None:
        return CompileResult(
            ok=False,
            thread_id=thread_id,
            version=base.version + 1,
            merge=merge,
            invalid_deltas=invalid,
            stats=stats,
        )

    artifact = merge.artifact
    artifact.status = "active"
    lint = lint_artifact(artifact, runner=runner)
    return CompileResult(
        ok=True,
        thread_id=thread_id,
        version=artifact.version,
        artifact=artifact,
        markdown=render_artifact_markdown(artifact),
        lint=lint,
        merge=merge,
        invalid_deltas=invalid,
        stats=stats,
    )


def _kickoff_timestamp(messages: Sequence[ThreadMessage]) -> str:
    for message in messages:
        if classify_subject(message.subject).kind == KICKOFF:
            return message.created_ts
    return messages[0].created_ts if messages else ""
