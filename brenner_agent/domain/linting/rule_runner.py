"""Rule-runner for artifact guardrail checks."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from ..artifact import ARTIFACT_STATUSES, RESEARCH_THREAD_ID, Artifact, ArtifactItem, Section, sort_by_id
from .provenance import (
    MAX_TRANSCRIPT_SECTION,
    cites_chastity_principle,
    format_anchor_span,
    is_pure_inference,
    out_of_range_refs,
)

ERROR = "error"
WARNING = "warning"
INFO = "info"

SEVERITY_RANK = {ERROR: 0, WARNING: 1, INFO: 2}

# Prediction cells that acknowledge a killed hypothesis.
NA_MARKERS = frozenset({"n/a", "na", "—", "-"})

_THIRD_ALTERNATIVE_RE = re.compile(r"third\s+alternative", re.IGNORECASE)

RuleFn = Callable[[Artifact, "RuleContext", Dict[str, Any]], List["LintIssue"]]


@dataclass
class LintIssue:
    """One guardrail violation."""

    severity: str
    code: str
    message: str
    section_ref: Optional[str] = None
    item_id: Optional[str] = None
    fix: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity,
            "code": self.code,
            "message": self.message,
            "section_ref": self.section_ref,
            "item_id": self.item_id,
            "fix": self.fix,
        }


@dataclass
class RuleContext:
    """Indexes shared by every rule for one artifact snapshot."""

    live: Dict[Section, List[ArtifactItem]]
    hypothesis_ids: List[str]
    killed_hypothesis_ids: Set[str]
    known_ids: Set[str] = field(default_factory=set)
    max_transcript_section: int = MAX_TRANSCRIPT_SECTION

    @classmethod
    def from_artifact(cls, artifact: Artifact, max_transcript_section: int = MAX_TRANSCRIPT_SECTION) -> "RuleContext":
        hypotheses = sort_by_id(artifact.items(Section.HYPOTHESIS_SLATE))
        known = {item.id for section in Section for item in artifact.items(section)}
        return cls(
            live={section: sort_by_id(artifact.live_items(section)) for section in Section},
            hypothesis_ids=[h.id for h in hypotheses],
            killed_hypothesis_ids={h.id for h in hypotheses if h.killed},
            known_ids=known,
            max_transcript_section=max_transcript_section,
        )


class RuleRunner:
    """Config-driven registry runner."""

    def __init__(self, rules: List[Dict[str, Any]], registry: Dict[str, RuleFn]):
        self.rules = rules
        self.registry = registry

    def run(self, artifact: Artifact, context: RuleContext) -> List[LintIssue]:
        issues: List[LintIssue] = []
        for cfg in self.rules:
            if not bool(cfg.get("enabled", True)):
                continue

            rule_id = str(cfg.get("id", "")).strip()
            if not rule_id:
                continue
            rule_fn = self.registry.get(rule_id)
            if rule_fn is None:
                continue

            params = cfg.get("params", {}) or {}
            issues.extend(rule_fn(artifact, context, params))
        return issues


DEFAULT_RULES: List[Dict[str, Any]] = [
    {"id": "metadata", "enabled": True, "params": {}},
    {"id": "research_thread", "enabled": True, "params": {}},
    {"id": "hypothesis_slate", "enabled": True, "params": {"min_live": 3, "max_live": 6}},
    {"id": "predictions_table", "enabled": True, "params": {"min_live": 3}},
    {"id": "discriminative_tests", "enabled": True, "params": {"min_live": 2}},
    {"id": "assumption_ledger", "enabled": True, "params": {"min_live": 3}},
    {"id": "anomaly_register", "enabled": True, "params": {}},
    {"id": "adversarial_critique", "enabled": True, "params": {"min_live": 2}},
    {"id": "provenance", "enabled": True, "params": {}},
]


def default_registry() -> Dict[str, RuleFn]:
    return {
        "metadata": _rule_metadata,
        "research_thread": _rule_research_thread,
        "hypothesis_slate": _rule_hypothesis_slate,
        "predictions_table": _rule_predictions_table,
        "discriminative_tests": _rule_discriminative_tests,
        "assumption_ledger": _rule_assumption_ledger,
        "anomaly_register": _rule_anomaly_register,
        "adversarial_critique": _rule_adversarial_critique,
        "provenance": _rule_provenance,
    }


def build_default_runner() -> RuleRunner:
    """Return runner with the default guardrail battery."""
    return RuleRunner(rules=[dict(cfg) for cfg in DEFAULT_RULES], registry=default_registry())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def is_na_marker(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() in NA_MARKERS


def is_third_alternative(item: ArtifactItem) -> bool:
    if item.get("third_alternative") is True:
        return True
    name = item.get("name")
    return isinstance(name, str) and bool(_THIRD_ALTERNATIVE_RE.search(name))


def _min_live_issue(code: str, section: Section, label: str, count: int, minimum: int) -> List[LintIssue]:
    if count >= minimum:
        return []
    return [
        LintIssue(
            severity=ERROR,
            code=code,
            message=f"{label} has {count} active items (minimum {minimum})",
            section_ref=section.value,
            fix=f"Add {label.lower()} items via ADD deltas",
        )
    ]


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def _rule_metadata(artifact: Artifact, context: RuleContext, params: Dict[str, Any]) -> List[LintIssue]:
    issues: List[LintIssue] = []
    if _blank(artifact.thread_id):
        issues.append(
            LintIssue(ERROR, "EM-002", "Metadata thread_id is required", fix="Set a non-empty thread identifier")
        )

    created = parse_timestamp(artifact.created_at)
    updated = parse_timestamp(artifact.updated_at)
    if created is None:
        issues.append(
            LintIssue(
                ERROR,
                "EM-003",
                "Metadata created_at must be an ISO-8601 timestamp",
                fix="Compile from a thread with timestamped messages",
            )
        )
    if updated is None:
        issues.append(
            LintIssue(
                ERROR,
                "EM-003b",
                "Metadata updated_at must be an ISO-8601 timestamp",
                fix="Compile from a thread with timestamped messages",
            )
        )
    if artifact.status not in ARTIFACT_STATUSES:
        issues.append(
            LintIssue(
                ERROR,
                "EM-004",
                f"Metadata status must be one of: {' | '.join(ARTIFACT_STATUSES)}",
                fix="Set status to 'draft', 'active', or 'closed'",
            )
        )
    if not artifact.contributors:
        issues.append(
            LintIssue(
                WARNING,
                "WM-001",
                "No contributors recorded",
                fix="Ensure at least one delta was applied by a named agent",
            )
        )
    if created is not None and updated is not None and updated < created:
        issues.append(
            LintIssue(WARNING, "WM-002", "updated_at is earlier than created_at", fix="Ensure updated_at >= created_at")
        )
    if not isinstance(artifact.version, int) or isinstance(artifact.version, bool):
        issues.append(
            LintIssue(INFO, "IM-002", "Metadata version should be an integer", fix="Set version to an integer")
        )
    return issues


def _rule_research_thread(artifact: Artifact, context: RuleContext, params: Dict[str, Any]) -> List[LintIssue]:
    section = Section.RESEARCH_THREAD.value
    rt = artifact.research_thread
    issues: List[LintIssue] = []
    if rt is None or _blank(rt.get("statement")):
        issues.append(
            LintIssue(
                ERROR,
                "ER-001",
                "Research thread statement is missing",
                section_ref=section,
                item_id=RESEARCH_THREAD_ID,
                fix="Send an EDIT delta to research_thread with a non-empty statement",
            )
        )
    if rt is None or _blank(rt.get("context")):
        issues.append(
            LintIssue(
                ERROR,
                "ER-002",
                "Research thread context is missing",
                section_ref=section,
                item_id=RESEARCH_THREAD_ID,
                fix="Send an EDIT delta to research_thread with a non-empty context",
            )
        )
    if rt is None or not rt.get("anchors"):
        issues.append(
            LintIssue(
                WARNING,
                "WR-001",
                "Research thread anchors are missing",
                section_ref=section,
                item_id=RESEARCH_THREAD_ID,
                fix="Add at least one transcript anchor (e.g. §42) or 'inference'",
            )
        )
    return issues


def _rule_hypothesis_slate(artifact: Artifact, context: RuleContext, params: Dict[str, Any]) -> List[LintIssue]:
    section = Section.HYPOTHESIS_SLATE
    live = context.live[section]
    min_live = int(params.get("min_live", 3))
    max_live = int(params.get("max_live", 6))

    issues = _min_live_issue("EH-001", section, "Hypothesis slate", len(live), min_live)
    if len(live) > max_live:
        issues.append(
            LintIssue(
                ERROR,
                "EH-002",
                f"Hypothesis slate has {len(live)} active items (maximum {max_live})",
                section_ref=section.value,
                fix=f"KILL or consolidate hypotheses to <= {max_live} items",
            )
        )
    if not any(is_third_alternative(h) for h in live):
        issues.append(
            LintIssue(
                ERROR,
                "EH-003",
                "No third alternative hypothesis is present",
                section_ref=section.value,
                fix="Mark one live hypothesis with third_alternative: true",
            )
        )
    for h in live:
        if _blank(h.get("claim")):
            issues.append(
                LintIssue(
                    ERROR,
                    "EH-004",
                    f"{h.id} is missing claim",
                    section_ref=section.value,
                    item_id=h.id,
                    fix="Add a non-empty claim field",
                )
            )
        if not h.get("anchors"):
            issues.append(
                LintIssue(
                    WARNING,
                    "WH-001",
                    f"{h.id} is missing anchors",
                    section_ref=section.value,
                    item_id=h.id,
                    fix="Add transcript anchors (e.g. §42) or 'inference'",
                )
            )
    return issues


def _rule_predictions_table(artifact: Artifact, context: RuleContext, params: Dict[str, Any]) -> List[LintIssue]:
    section = Section.PREDICTIONS_TABLE
    live = context.live[section]
    issues = _min_live_issue("EP-001", section, "Predictions table", len(live), int(params.get("min_live", 3)))

    live_hypotheses = [h.id for h in context.live[Section.HYPOTHESIS_SLATE]]
    for p in live:
        predictions = p.get("predictions") or {}
        values = [str(predictions.get(hid, "")).strip() for hid in live_hypotheses]
        filled = [v for v in values if v]
        if filled and len(set(filled)) <= 1 and len(live_hypotheses) >= 2:
            issues.append(
                LintIssue(
                    WARNING,
                    "WP-001",
                    f"{p.id} does not discriminate (all hypothesis outcomes identical or missing)",
                    section_ref=section.value,
                    item_id=p.id,
                    fix="Adjust the prediction so at least two hypotheses differ in expected outcome",
                )
            )
        for hid in sorted(predictions):
            value = predictions[hid]
            if hid in context.killed_hypothesis_ids:
                if not is_na_marker(value):
                    issues.append(
                        LintIssue(
                            ERROR,
                            "EP-002",
                            f"{p.id} still predicts an outcome for killed hypothesis {hid}",
                            section_ref=section.value,
                            item_id=p.id,
                            fix=f"EDIT {p.id} to mark {hid} as N/A",
                        )
                    )
            elif hid not in context.hypothesis_ids:
                issues.append(
                    LintIssue(
                        WARNING,
                        "WP-002",
                        f"{p.id} references unknown hypothesis {hid}",
                        section_ref=section.value,
                        item_id=p.id,
                        fix="Key predictions by existing hypothesis ids",
                    )
                )
    return issues


def _rule_discriminative_tests(artifact: Artifact, context: RuleContext, params: Dict[str, Any]) -> List[LintIssue]:
    section = Section.DISCRIMINATIVE_TESTS
    live = context.live[section]
    issues = _min_live_issue("ET-001", section, "Discriminative tests", len(live), int(params.get("min_live", 2)))
    for t in live:
        if _blank(t.get("procedure")):
            issues.append(
                LintIssue(
                    ERROR,
                    "ET-002",
                    f"{t.id} is missing procedure",
                    section_ref=section.value,
                    item_id=t.id,
                    fix="Add a non-empty procedure field",
                )
            )
        if not t.get("expected_outcomes"):
            issues.append(
                LintIssue(
                    ERROR,
                    "ET-003",
                    f"{t.id} is missing expected outcomes",
                    section_ref=section.value,
                    item_id=t.id,
                    fix="Add an expected_outcomes mapping (e.g. {'H1': '...', 'H2': '...'})",
                )
            )
        if _blank(t.get("potency_check")):
            issues.append(
                LintIssue(
                    WARNING,
                    "WT-001",
                    f"{t.id} is missing potency check",
                    section_ref=section.value,
                    item_id=t.id,
                    fix="Add a potency_check that tells chastity from impotence",
                )
            )
        if not t.get("score"):
            issues.append(
                LintIssue(
                    WARNING,
                    "WT-003",
                    f"{t.id} is missing score breakdown",
                    section_ref=section.value,
                    item_id=t.id,
                    fix="Add score: {likelihood_ratio, cost, speed, ambiguity} with 0-3 values",
                )
            )
    return issues


def _rule_assumption_ledger(artifact: Artifact, context: RuleContext, params: Dict[str, Any]) -> List[LintIssue]:
    section = Section.ASSUMPTION_LEDGER
    live = context.live[section]
    issues = _min_live_issue("EA-001", section, "Assumption ledger", len(live), int(params.get("min_live", 3)))
    if not any(a.get("scale_check") is True for a in live):
        issues.append(
            LintIssue(
                ERROR,
                "EA-002",
                "No scale/physics check assumption found",
                section_ref=section.value,
                fix="Add an assumption with scale_check: true and a calculation",
            )
        )
    for a in live:
        if _blank(a.get("statement")):
            issues.append(
                LintIssue(
                    ERROR,
                    "EA-003",
                    f"{a.id} is missing statement",
                    section_ref=section.value,
                    item_id=a.id,
                    fix="Add a non-empty statement field",
                )
            )
        if a.get("scale_check") is True and _blank(a.get("calculation")):
            issues.append(
                LintIssue(
                    WARNING,
                    "WA-003",
                    f"{a.id} is a scale check but missing calculation",
                    section_ref=section.value,
                    item_id=a.id,
                    fix="Add a calculation with explicit numbers and units",
                )
            )
    return issues


def _rule_anomaly_register(artifact: Artifact, context: RuleContext, params: Dict[str, Any]) -> List[LintIssue]:
    section = Section.ANOMALY_REGISTER
    issues: List[LintIssue] = []
    for x in context.live[section]:
        for ref in x.get("conflicts_with") or []:
            if ref not in context.known_ids:
                issues.append(
                    LintIssue(
                        WARNING,
                        "WX-001",
                        f"{x.id} conflicts_with unknown item {ref}",
                        section_ref=section.value,
                        item_id=x.id,
                        fix="Reference existing item ids in conflicts_with",
                    )
                )
    return issues


def _rule_adversarial_critique(artifact: Artifact, context: RuleContext, params: Dict[str, Any]) -> List[LintIssue]:
    section = Section.ADVERSARIAL_CRITIQUE
    live = context.live[section]
    issues = _min_live_issue("EC-001", section, "Adversarial critique", len(live), int(params.get("min_live", 2)))
    for c in live:
        if _blank(c.get("attack")):
            issues.append(
                LintIssue(
                    ERROR,
                    "EC-002",
                    f"{c.id} is missing attack",
                    section_ref=section.value,
                    item_id=c.id,
                    fix="Add an attack describing how the framing could be wrong",
                )
            )
        if _blank(c.get("evidence")):
            issues.append(
                LintIssue(
                    WARNING,
                    "WC-002",
                    f"{c.id} is missing evidence",
                    section_ref=section.value,
                    item_id=c.id,
                    fix="Add evidence describing what would confirm the critique",
                )
            )
        if _blank(c.get("current_status")):
            issues.append(
                LintIssue(
                    INFO,
                    "IC-001",
                    f"{c.id} is missing current status",
                    section_ref=section.value,
                    item_id=c.id,
                    fix="Add current_status describing how seriously to take this critique",
                )
            )
    if not any(c.get("real_third_alternative") is True for c in live):
        issues.append(
            LintIssue(
                WARNING,
                "WC-001",
                "No critique marked as a real third alternative",
                section_ref=section.value,
                fix="Mark at least one critique with real_third_alternative: true",
            )
        )
    return issues


def _rule_provenance(artifact: Artifact, context: RuleContext, params: Dict[str, Any]) -> List[LintIssue]:
    maximum = int(params.get("max_transcript_section", context.max_transcript_section))
    issues: List[LintIssue] = []

    for section in Section:
        for item in context.live[section]:
            for span in out_of_range_refs(item.get("anchors"), maximum):
                issues.append(
                    LintIssue(
                        ERROR,
                        "EP-P01",
                        f"{item.id} references {format_anchor_span(span)} which is out of range (valid: 1-{maximum})",
                        section_ref=section.value,
                        item_id=item.id,
                        fix=f"Cite a transcript section between 1 and {maximum}",
                    )
                )

    for h in context.live[Section.HYPOTHESIS_SLATE]:
        if is_pure_inference(h.get("anchors")):
            issues.append(
                LintIssue(
                    WARNING,
                    "WP-P02",
                    f"{h.id} uses [inference] without source context",
                    section_ref=Section.HYPOTHESIS_SLATE.value,
                    item_id=h.id,
                    fix="Write '[inference] from §n' to cite what the inference rests on",
                )
            )

    for t in context.live[Section.DISCRIMINATIVE_TESTS]:
        potency = t.get("potency_check")
        if not _blank(potency) and not cites_chastity_principle(potency):
            issues.append(
                LintIssue(
                    INFO,
                    "IP-P02",
                    f"{t.id} potency check doesn't cite §50 (the chastity principle)",
                    section_ref=Section.DISCRIMINATIVE_TESTS.value,
                    item_id=t.id,
                    fix="Consider referencing §50 in the potency check",
                )
            )
    return issues
