"""Subject-line conventions for research thread messages."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

KICKOFF = "kickoff"
DELTA = "delta"
COMPILED = "compiled"
CRITIQUE = "critique"
ACK = "ack"
CLAIM = "claim"
HANDOFF = "handoff"
BLOCKED = "blocked"
QUESTION = "question"
INFO = "info"
UNKNOWN = "unknown"

_DELTA_RE = re.compile(r"^DELTA\[([^\]]+)\]:", re.IGNORECASE)

# Checked in order after DELTA.
SUBJECT_PATTERNS = [
    (KICKOFF, re.compile(r"^(KICKOFF:|\[[^\]]+\]\s+Brenner Loop kickoff\b)", re.IGNORECASE)),
    (COMPILED, re.compile(r"^COMPILED:", re.IGNORECASE)),
    (CRITIQUE, re.compile(r"^CRITIQUE:", re.IGNORECASE)),
    (ACK, re.compile(r"^ACK:", re.IGNORECASE)),
    (CLAIM, re.compile(r"^CLAIM:", re.IGNORECASE)),
    (HANDOFF, re.compile(r"^HANDOFF:", re.IGNORECASE)),
    (BLOCKED, re.compile(r"^BLOCKED:", re.IGNORECASE)),
    (QUESTION, re.compile(r"^QUESTION:", re.IGNORECASE)),
    (INFO, re.compile(r"^INFO:", re.IGNORECASE)),
]

_VERSION_RE = re.compile(r"v(\d+)", re.IGNORECASE)


class _HasSubject(Protocol):
    subject: str


@dataclass(frozen=True)
class SubjectInfo:
    kind: str
    role_tag: Optional[str] = None


def normalize_role_tag(raw: str) -> str:
    """``"Test Designer"`` -> ``"test_designer"``."""
    tag = re.sub(r"[\s-]+", "_", raw.strip().lower())
    return re.sub(r"[^a-z0-9_]", "", tag)


def classify_subject(subject: str) -> SubjectInfo:
    trimmed = (subject or "").strip()
    match = _DELTA_RE.match(trimmed)
    if match:
        return SubjectInfo(kind=DELTA, role_tag=normalize_role_tag(match.group(1)))
    for kind, pattern in SUBJECT_PATTERNS:
        if pattern.match(trimmed):
            return SubjectInfo(kind=kind)
    return SubjectInfo(kind=UNKNOWN)


def extract_version(subject: str) -> Optional[int]:
    """``"COMPILED: v3 RS-1 artifact"`` -> 3; None when no ``vN`` token."""
    match = _VERSION_RE.search(subject or "")
    return int(match.group(1)) if match else None


def next_compiled_version(messages: Iterable[_HasSubject]) -> int:
    """Highest published ``vN`` + 1, else COMPILED count + 1, else 1."""
    compiled = [m for m in messages if classify_subject(m.subject).kind == COMPILED]
    versions = [v for v in (extract_version(m.subject) for m in compiled) if v is not None]
    if versions:
        return max(versions) + 1
    if compiled:
        return len(compiled) + 1
    return 1


def compiled_subject(thread_id: str, version: int, subject: Optional[str] = None) -> str:
    text = (subject or "").strip()
    if not text:
        return f"COMPILED: v{version} {thread_id} artifact"
    if re.match(r"^COMPILED:", text, re.IGNORECASE):
        return text
    return f"COMPILED: {text}"
