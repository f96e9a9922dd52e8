"""Pure domain logic for extracting delta blocks from agent message bodies.

A delta block is a fenced block tagged ``delta`` (backtick or ``:::`` fences)
holding one JSON object. Parsing never raises: every block comes back either
as a :class:`~brenner_agent.domain.artifact.Delta` or as an
:class:`InvalidDelta` carrying a specific reason.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .artifact import (
    RESEARCH_THREAD_ID,
    SECTION_ID_PREFIXES,
    Delta,
    Operation,
    Section,
    empty_payload,
    parse_replace_marker,
    payload_from_dict,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

VALID_OPERATIONS = [op.value for op in Operation]
VALID_SECTIONS = [section.value for section in Section]

# Closing fence must repeat the opening fence, so a ``` block can nest inside ````.
DELTA_BLOCK_RE = re.compile(
    r"(`{3,})delta(?:[ \t][^\n]*)?\r?\n(.*?)\1|(:{3,})delta(?:[ \t][^\n]*)?\r?\n(.*?)\3",
    re.DOTALL,
)

_COMMENT_RE = re.compile(r'("(?:[^"\\]|\\.)*")|(//[^\n]*)|(/\*.*?\*/)', re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")

# Deepest list/object nesting a block may carry; deeper blocks are malformed.
MAX_NESTING_DEPTH = 32

MALFORMED_BLOCK = "MALFORMED_BLOCK"
MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
UNKNOWN_OPERATION = "UNKNOWN_OPERATION"
UNKNOWN_SECTION = "UNKNOWN_SECTION"
INVALID_TARGET_ID = "INVALID_TARGET_ID"
UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
INVALID_FIELD_TYPE = "INVALID_FIELD_TYPE"


@dataclass
class InvalidDelta:
    """A delta block that failed parsing or validation."""

    code: str
    reason: str
    raw: str
    block_index: int
    message_id: Optional[int] = None
    agent: str = ""
    timestamp: str = ""

    @property
    def location(self) -> str:
        if self.message_id is None:
            return f"block {self.block_index}"
        return f"message {self.message_id}, block {self.block_index}"


ParsedDelta = Union[Delta, InvalidDelta]


@dataclass
class DeltaParseResult:
    """All delta blocks found in one message body, in block order."""

    deltas: List[ParsedDelta] = field(default_factory=list)

    @property
    def valid_deltas(self) -> List[Delta]:
        return [d for d in self.deltas if isinstance(d, Delta)]

    @property
    def invalid_deltas(self) -> List[InvalidDelta]:
        return [d for d in self.deltas if isinstance(d, InvalidDelta)]

    @property
    def total_blocks(self) -> int:
        return len(self.deltas)

    @property
    def valid_count(self) -> int:
        return len(self.valid_deltas)

    @property
    def invalid_count(self) -> int:
        return len(self.invalid_deltas)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_delta_message(
    body: str,
    message_id: Optional[int] = None,
    agent: str = "",
    timestamp: str = "",
) -> DeltaParseResult:
    """Parse every delta block in *body*.

    *message_id*, *agent* and *timestamp* are stamped onto each result so
    rejected blocks can be traced back to the message they came from.
    """
    result = DeltaParseResult()
    for index, block in enumerate(extract_delta_blocks(body or "")):
        result.deltas.append(
            parse_delta_block(block, index, message_id=message_id, agent=agent, timestamp=timestamp)
        )
    return result


def extract_valid_deltas(body: str) -> List[Delta]:
    """Convenience wrapper returning only the well-formed deltas in *body*."""
    return parse_delta_message(body).valid_deltas


def extract_delta_blocks(body: str) -> List[str]:
    """Return the stripped contents of every ``delta`` fenced block."""
    blocks: List[str] = []
    for match in DELTA_BLOCK_RE.finditer(body):
        content = match.group(2) if match.group(2) is not None else match.group(4)
        content = (content or "").strip()
        if content:
            blocks.append(content)
    return blocks


def parse_delta_block(
    block: str,
    block_index: int = 0,
    message_id: Optional[int] = None,
    agent: str = "",
    timestamp: str = "",
) -> ParsedDelta:
    """Decode and validate one block body."""

    def _invalid(code: str, detail: str) -> InvalidDelta:
        return InvalidDelta(
            code=code,
            reason=f"{code}: {detail}",
            raw=block,
            block_index=block_index,
            message_id=message_id,
            agent=agent,
            timestamp=timestamp,
        )

    try:
        data = json.loads(block)
    except RecursionError:
        return _invalid(MALFORMED_BLOCK, f"delta is nested deeper than {MAX_NESTING_DEPTH} levels")
    except ValueError as first_error:
        try:
            data = json.loads(sanitize_json(block))
        except RecursionError:
            return _invalid(MALFORMED_BLOCK, f"delta is nested deeper than {MAX_NESTING_DEPTH} levels")
        except ValueError:
            return _invalid(MALFORMED_BLOCK, str(first_error))

    if not isinstance(data, dict):
        return _invalid(MALFORMED_BLOCK, "delta is not an object")
    if nesting_depth(data) > MAX_NESTING_DEPTH:
        return _invalid(MALFORMED_BLOCK, f"delta is nested deeper than {MAX_NESTING_DEPTH} levels")

    operation = data.get("operation")
    if operation is None:
        return _invalid(MISSING_REQUIRED_FIELD, "operation")
    if operation not in VALID_OPERATIONS:
        return _invalid(UNKNOWN_OPERATION, f"'{operation}' (expected one of {', '.join(VALID_OPERATIONS)})")
    op = Operation(operation)

    section_value = data.get("section")
    if section_value is None:
        return _invalid(MISSING_REQUIRED_FIELD, "section")
    if section_value not in VALID_SECTIONS:
        return _invalid(UNKNOWN_SECTION, f"'{section_value}'")
    section = Section(section_value)

    target_id = data.get("target_id")
    if op is Operation.ADD and target_id is not None:
        return _invalid(INVALID_TARGET_ID, "ADD must not carry a target_id")

    if section is Section.RESEARCH_THREAD:
        if op is not Operation.EDIT:
            return _invalid(UNSUPPORTED_OPERATION, f"research_thread only supports EDIT (got {op.value})")
        if target_id is not None and target_id != RESEARCH_THREAD_ID:
            return _invalid(INVALID_TARGET_ID, f"research_thread target_id must be 'RT' or null (got {target_id!r})")
        target_id = RESEARCH_THREAD_ID
    elif op is not Operation.ADD:
        if not isinstance(target_id, str) or not target_id.strip():
            return _invalid(MISSING_REQUIRED_FIELD, f"target_id for {op.value}")
        target_id = target_id.strip()
        if not validate_target_id_prefix(target_id, section):
            return _invalid(
                INVALID_TARGET_ID,
                f"'{target_id}' is not a {section.value} id (expected {SECTION_ID_PREFIXES[section]}<n>)",
            )

    raw_payload = data.get("payload")
    if op in (Operation.ADD, Operation.EDIT) and not isinstance(raw_payload, dict):
        return _invalid(MISSING_REQUIRED_FIELD, "payload")
    if op is Operation.KILL and raw_payload is not None and not isinstance(raw_payload, dict):
        return _invalid(INVALID_FIELD_TYPE, "payload")

    rationale = data.get("rationale", "")
    if rationale is None:
        rationale = ""
    if not isinstance(rationale, str):
        return _invalid(INVALID_FIELD_TYPE, "rationale")

    kill_reason: Optional[str] = None
    replace_fields = frozenset()
    if op is Operation.KILL:
        payload = empty_payload(section)
        reason = (raw_payload or {}).get("reason")
        if reason is not None and not isinstance(reason, str):
            return _invalid(INVALID_FIELD_TYPE, "reason")
        kill_reason = reason
    else:
        payload, bad_field = payload_from_dict(section, raw_payload)
        if payload is None:
            return _invalid(INVALID_FIELD_TYPE, str(bad_field))
        replace_fields, replace_ok = parse_replace_marker(raw_payload)
        if not replace_ok:
            return _invalid(INVALID_FIELD_TYPE, "replace")

    delta_id = f"{message_id}:{block_index}" if message_id is not None else f"block:{block_index}"
    return Delta(
        delta_id=delta_id,
        operation=op,
        section=section,
        target_id=target_id if op is not Operation.ADD else None,
        payload=payload,
        rationale=rationale,
        replace_fields=replace_fields,
        kill_reason=kill_reason,
        raw=block,
        message_id=message_id,
        agent=agent,
        timestamp=timestamp,
    )


def sanitize_json(text: str) -> str:
    """Strip ``//`` and ``/* */`` comments and trailing commas outside strings."""

    def _keep_strings(match: "re.Match[str]") -> str:
        return match.group(1) if match.group(1) is not None else ""

    cleaned = _COMMENT_RE.sub(_keep_strings, text)
    return _TRAILING_COMMA_RE.sub(r"\1", cleaned)


# ---------------------------------------------------------------------------
# Utilities
# ---------------------------------------------------------------------------


def nesting_depth(value: Any) -> int:
    """Depth of nested lists and objects in a decoded JSON value (scalars are 0)."""
    depth = 0
    level = [value]
    while level:
        containers = [v for v in level if isinstance(v, (dict, list))]
        if not containers:
            break
        depth += 1
        level = [child for c in containers for child in (c.values() if isinstance(c, dict) else c)]
    return depth


def get_section_id_prefix(section: Union[Section, str]) -> str:
    return SECTION_ID_PREFIXES[Section(section)]


def validate_target_id_prefix(target_id: str, section: Union[Section, str]) -> bool:
    """True when *target_id* looks like ``<prefix><n>`` for *section*."""
    prefix = get_section_id_prefix(section)
    return re.fullmatch(rf"{re.escape(prefix)}\d+", target_id) is not None


def format_parse_report(result: DeltaParseResult, source: str = "message") -> str:
    """Render a :class:`DeltaParseResult` as a short human-readable report."""
    lines = [
        f"## Delta parse: {source}",
        f"{result.total_blocks} block(s): {result.valid_count} valid, {result.invalid_count} invalid",
        "",
    ]
    for entry in result.deltas:
        if isinstance(entry, Delta):
            target = entry.target_id or "(new)"
            lines.append(f"- OK   {entry.operation.value} {entry.section.value} {target}")
        else:
            lines.append(f"- FAIL {entry.location}: {entry.reason}")
    return "\n".join(lines)


def payload_summary(delta: Delta) -> Dict[str, Any]:
    """JSON-ready view of a parsed delta, used by tools and the CLI."""
    return {
        "delta_id": delta.delta_id,
        "operation": delta.operation.value,
        "section": delta.section.value,
        "target_id": delta.target_id,
        "payload": delta.payload.present(),
        "rationale": delta.rationale,
        "replace": sorted(delta.replace_fields),
        "kill_reason": delta.kill_reason,
        "agent": delta.agent,
        "timestamp": delta.timestamp,
        "message_id": delta.message_id,
    }
