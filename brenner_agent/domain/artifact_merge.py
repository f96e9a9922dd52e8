"""Deterministic fold of agent deltas into a research artifact.

``merge_artifact(base, deltas)`` replays a delta list in timestamp order on
a deep copy of *base*. Per-delta rejections (unknown target, killed target,
section limit, empty payload) are recorded and skipped; only a broken
internal invariant makes the whole merge fail.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .artifact import (
    RESEARCH_THREAD_ID,
    SECTION_ID_PREFIXES,
    Artifact,
    ArtifactItem,
    Contributor,
    Delta,
    Operation,
    Section,
    empty_payload,
    item_number,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Maximum number of live items per section.
SECTION_LIMITS: Dict[Section, int] = {
    Section.HYPOTHESIS_SLATE: 6,
}

INVALID_TARGET = "INVALID_TARGET"
TARGET_KILLED = "TARGET_KILLED"
SECTION_LIMIT_EXCEEDED = "SECTION_LIMIT_EXCEEDED"
MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
RT_ADD_NOT_ALLOWED = "RT_ADD_NOT_ALLOWED"
NO_THIRD_ALTERNATIVE = "NO_THIRD_ALTERNATIVE"
NO_SCALE_CHECK = "NO_SCALE_CHECK"
FIELD_OVERWRITTEN = "FIELD_OVERWRITTEN"
INTERNAL_INVARIANT = "INTERNAL_INVARIANT"

APPLIED = "applied"
SKIPPED = "skipped"
NOOP = "noop"


class MergeInvariantError(Exception):
    """Raised when the folded artifact violates a structural invariant."""


@dataclass
class MergeIssue:
    """A rejected delta, an advisory note, or a fatal invariant failure."""

    code: str
    message: str
    delta_id: Optional[str] = None
    section: Optional[str] = None
    target_id: Optional[str] = None
    agent: str = ""
    timestamp: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "delta_id": self.delta_id,
            "section": self.section,
            "target_id": self.target_id,
            "agent": self.agent,
            "timestamp": self.timestamp,
        }


@dataclass
class DeltaOutcome:
    delta_id: str
    status: str
    item_id: Optional[str] = None
    code: Optional[str] = None


@dataclass
class MergeResult:
    """Outcome of :func:`merge_artifact`."""

    ok: bool
    artifact: Optional[Artifact] = None
    applied_count: int = 0
    skipped_count: int = 0
    noop_count: int = 0
    warnings: List[MergeIssue] = field(default_factory=list)
    errors: List[MergeIssue] = field(default_factory=list)
    outcomes: List[DeltaOutcome] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "applied_count": self.applied_count,
            "skipped_count": self.skipped_count,
            "noop_count": self.noop_count,
            "warnings": [w.to_dict() for w in self.warnings],
            "errors": [e.to_dict() for e in self.errors],
        }


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def order_deltas(deltas: Iterable[Delta]) -> List[Delta]:
    """Stable sort by timestamp; equal timestamps keep arrival order."""
    return sorted(deltas, key=lambda d: d.timestamp)


def merge_artifact(
    base: Artifact,
    deltas: Iterable[Delta],
    limits: Optional[Mapping[Section, int]] = None,
) -> MergeResult:
    """Fold *deltas* into a copy of *base* and return the new artifact.

    *limits* overrides :data:`SECTION_LIMITS`. *base* is never mutated.
    """
    section_limits = dict(SECTION_LIMITS if limits is None else limits)
    ordered = order_deltas(deltas)
    artifact = base.copy()
    state = _MergeState(artifact=artifact, limits=section_limits)
    state.seed_field_writers()

    for delta in ordered:
        if delta.operation is Operation.ADD:
            outcome = state.apply_add(delta)
        elif delta.operation is Operation.EDIT:
            outcome = state.apply_edit(delta)
        else:
            outcome = state.apply_kill(delta)
        state.outcomes.append(outcome)

    if ordered and not artifact.created_at:
        artifact.created_at = ordered[0].timestamp
    if state.latest_applied and state.latest_applied > artifact.updated_at:
        artifact.updated_at = state.latest_applied
    elif not artifact.updated_at:
        artifact.updated_at = artifact.created_at
    artifact.contributors = state.contributors()
    artifact.version = base.version + 1

    applied = sum(1 for o in state.outcomes if o.status == APPLIED)
    noops = sum(1 for o in state.outcomes if o.status == NOOP)
    skipped = sum(1 for o in state.outcomes if o.status == SKIPPED)

    try:
        check_invariants(artifact)
    except MergeInvariantError as exc:
        return MergeResult(
            ok=False,
            applied_count=applied + noops,
            skipped_count=skipped,
            noop_count=noops,
            warnings=state.warnings,
            errors=[MergeIssue(code=INTERNAL_INVARIANT, message=str(exc))],
            outcomes=state.outcomes,
        )

    return MergeResult(
        ok=True,
        artifact=artifact,
        applied_count=applied + noops,
        skipped_count=skipped,
        noop_count=noops,
        warnings=state.warnings,
        outcomes=state.outcomes,
    )


def check_invariants(artifact: Artifact) -> None:
    """Raise :class:`MergeInvariantError` if the artifact is structurally broken."""
    for section in Section:
        items = artifact.sections.get(section)
        if items is None:
            raise MergeInvariantError(f"Section {section.value} is missing")
        seen = set()
        for item in items:
            if item.section is not section:
                raise MergeInvariantError(f"{item.id} is stored under {section.value} but belongs to {item.section}")
            if item.id in seen:
                raise MergeInvariantError(f"Duplicate id {item.id} in {section.value}")
            seen.add(item.id)
            number = item_number(item.id)
            if number is not None and number > artifact.id_counters.get(section, 0):
                raise MergeInvariantError(
                    f"Id counter for {section.value} ({artifact.id_counters.get(section, 0)}) is behind {item.id}"
                )
    if len(artifact.sections[Section.RESEARCH_THREAD]) > 1:
        raise MergeInvariantError("research_thread holds more than one item")


# ---------------------------------------------------------------------------
# Fold state
# ---------------------------------------------------------------------------


@dataclass
class _MergeState:
    artifact: Artifact
    limits: Dict[Section, int]
    warnings: List[MergeIssue] = field(default_factory=list)
    outcomes: List[DeltaOutcome] = field(default_factory=list)
    latest_applied: str = ""
    # agent -> latest applied timestamp, in order of first contribution
    _applied_agents: Dict[str, str] = field(default_factory=dict)
    # (item id, field) -> agent that last set it
    _field_writers: Dict[tuple, str] = field(default_factory=dict)

    # -- bookkeeping -------------------------------------------------------

    def _issue(self, code: str, message: str, delta: Delta) -> MergeIssue:
        issue = MergeIssue(
            code=code,
            message=message,
            delta_id=delta.delta_id,
            section=delta.section.value,
            target_id=delta.target_id,
            agent=delta.agent,
            timestamp=delta.timestamp,
        )
        self.warnings.append(issue)
        return issue

    def _skip(self, code: str, message: str, delta: Delta) -> DeltaOutcome:
        self._issue(code, message, delta)
        return DeltaOutcome(delta_id=delta.delta_id, status=SKIPPED, item_id=delta.target_id, code=code)

    def _applied(self, delta: Delta, item_id: str) -> DeltaOutcome:
        if delta.agent:
            previous = self._applied_agents.get(delta.agent, "")
            self._applied_agents[delta.agent] = max(previous, delta.timestamp)
        if delta.timestamp > self.latest_applied:
            self.latest_applied = delta.timestamp
        return DeltaOutcome(delta_id=delta.delta_id, status=APPLIED, item_id=item_id)

    def seed_field_writers(self) -> None:
        # Base items carry no per-field history; attribute their fields to the creator.
        for items in self.artifact.sections.values():
            for item in items:
                if not item.created_by:
                    continue
                for name in item.fields.present():
                    self._field_writers[(item.id, name)] = item.created_by

    def contributors(self) -> List[Contributor]:
        merged: List[Contributor] = []
        index: Dict[str, Contributor] = {}
        for existing in self.artifact.contributors:
            contributor = Contributor(agent=existing.agent, contributed_at=existing.contributed_at)
            merged.append(contributor)
            index[contributor.agent] = contributor
        for agent, timestamp in self._applied_agents.items():
            if agent in index:
                index[agent].contributed_at = max(index[agent].contributed_at, timestamp)
            else:
                contributor = Contributor(agent=agent, contributed_at=timestamp)
                merged.append(contributor)
                index[agent] = contributor
        return merged

    # -- operations --------------------------------------------------------

    def apply_add(self, delta: Delta) -> DeltaOutcome:
        section = delta.section
        if section is Section.RESEARCH_THREAD:
            return self._skip(RT_ADD_NOT_ALLOWED, "Research thread only supports EDIT, not ADD", delta)

        limit = self.limits.get(section)
        live = self.artifact.live_items(section)
        if limit is not None and len(live) >= limit:
            return self._skip(
                SECTION_LIMIT_EXCEEDED,
                f"Section {section.value} is at its limit of {limit} live items",
                delta,
            )

        if delta.payload.is_empty():
            return self._skip(MISSING_REQUIRED_FIELD, f"ADD to {section.value} has an empty payload", delta)

        counter = self.artifact.id_counters.get(section, 0) + 1
        self.artifact.id_counters[section] = counter
        item_id = f"{SECTION_ID_PREFIXES[section]}{counter}"

        item = ArtifactItem(
            id=item_id,
            section=section,
            fields=copy.deepcopy(delta.payload),
            created_by=delta.agent,
            created_at=delta.timestamp,
        )
        self.artifact.sections[section].append(item)
        for name in item.fields.present():
            self._field_writers[(item_id, name)] = delta.agent
        return self._applied(delta, item_id)

    def apply_edit(self, delta: Delta) -> DeltaOutcome:
        section = delta.section

        if section is Section.RESEARCH_THREAD and self.artifact.research_thread is None:
            if delta.payload.is_empty():
                return self._skip(MISSING_REQUIRED_FIELD, "Research thread EDIT has an empty payload", delta)
            item = ArtifactItem(
                id=RESEARCH_THREAD_ID,
                section=section,
                fields=empty_payload(section),
                created_by=delta.agent,
                created_at=delta.timestamp,
            )
            self.artifact.sections[section].append(item)
            self.artifact.id_counters[section] = max(self.artifact.id_counters.get(section, 0), 1)
            self._apply_fields(item, delta)
            return self._applied(delta, item.id)

        item = self.artifact.get_item(section, delta.target_id or "")
        if item is None:
            return self._skip(INVALID_TARGET, f"Target {delta.target_id} not found in {section.value}", delta)
        if item.killed:
            return self._skip(TARGET_KILLED, f"Skipping EDIT of killed item {item.id}", delta)

        self._apply_fields(item, delta)
        return self._applied(delta, item.id)

    def apply_kill(self, delta: Delta) -> DeltaOutcome:
        section = delta.section
        if section is Section.RESEARCH_THREAD:
            return self._skip(INVALID_TARGET, "Research thread cannot be killed", delta)

        item = self.artifact.get_item(section, delta.target_id or "")
        if item is None:
            return self._skip(INVALID_TARGET, f"Target {delta.target_id} not found in {section.value}", delta)

        if item.killed:
            return DeltaOutcome(delta_id=delta.delta_id, status=NOOP, item_id=item.id)

        item.killed = True
        item.killed_by = delta.agent
        item.killed_at = delta.timestamp
        item.kill_reason = delta.kill_reason or ""

        if section is Section.HYPOTHESIS_SLATE and not any(
            h.get("third_alternative") is True for h in self.artifact.live_items(section)
        ):
            self._issue(NO_THIRD_ALTERNATIVE, "No live third alternative hypothesis remains after KILL", delta)
        if section is Section.ASSUMPTION_LEDGER and not any(
            a.get("scale_check") is True for a in self.artifact.live_items(section)
        ):
            self._issue(NO_SCALE_CHECK, "No live scale/physics check assumption remains after KILL", delta)

        return self._applied(delta, item.id)

    def _apply_fields(self, item: ArtifactItem, delta: Delta) -> None:
        for name, value in delta.payload.present().items():
            incoming = copy.deepcopy(value)
            current = item.fields.get(name)
            if isinstance(incoming, list) and not delta.replaces(name):
                item.fields.set(name, union_lists(current, incoming))
            else:
                writer = self._field_writers.get((item.id, name))
                if (
                    current is not None
                    and current != incoming
                    and not isinstance(incoming, list)
                    and writer
                    and delta.agent
                    and writer != delta.agent
                ):
                    self._issue(
                        FIELD_OVERWRITTEN,
                        f"{item.id}.{name} set by {writer} was overwritten by {delta.agent}",
                        delta,
                    )
                item.fields.set(name, incoming)
            self._field_writers[(item.id, name)] = delta.agent


def union_lists(existing: Any, incoming: List[Any]) -> List[Any]:
    """Union preserving first-seen order; non-list *existing* counts as empty."""
    merged: List[Any] = []
    for value in (existing if isinstance(existing, list) else []) + incoming:
        if value not in merged:
            merged.append(value)
    return merged
