"""Canonical markdown rendering of a merged artifact.

Output depends only on the artifact value: items are ordered by id (tests
by score), mappings by key, and nothing reads the clock.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional

from .artifact import Artifact, ArtifactItem, Section, item_number, sort_by_id

SECTION_TITLES: Dict[Section, str] = {
    Section.RESEARCH_THREAD: "Research Thread",
    Section.HYPOTHESIS_SLATE: "Hypothesis Slate",
    Section.PREDICTIONS_TABLE: "Predictions Table",
    Section.DISCRIMINATIVE_TESTS: "Discriminative Tests",
    Section.ASSUMPTION_LEDGER: "Assumption Ledger",
    Section.ANOMALY_REGISTER: "Anomaly Register",
    Section.ADVERSARIAL_CRITIQUE: "Adversarial Critique",
}

SCORE_KEYS = ("likelihood_ratio", "cost", "speed", "ambiguity")
MAX_TEST_SCORE = 12

_THIRD_ALTERNATIVE_RE = re.compile(r"third\s+alternative", re.IGNORECASE)
_LINE_BREAK_RE = re.compile(r"[ \t]*(?:\r\n|\r|\n)[ \t]*")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def render_artifact_markdown(artifact: Artifact) -> str:
    """Render *artifact* as canonical markdown ending in exactly one newline."""
    lines: List[str] = []
    lines.extend(_front_matter(artifact))
    lines.append("")
    lines.append(f"# Brenner Protocol Artifact: {escape_heading(artifact.thread_id)}")
    lines.append("")

    hypothesis_ids = [h.id for h in sort_by_id(artifact.items(Section.HYPOTHESIS_SLATE))]

    lines.extend(_research_thread(artifact.research_thread))
    lines.extend(_hypotheses(artifact.items(Section.HYPOTHESIS_SLATE)))
    lines.extend(_predictions(artifact.items(Section.PREDICTIONS_TABLE), hypothesis_ids))
    lines.extend(_tests(artifact.items(Section.DISCRIMINATIVE_TESTS)))
    lines.extend(_assumptions(artifact.items(Section.ASSUMPTION_LEDGER)))
    lines.extend(_anomalies(artifact.items(Section.ANOMALY_REGISTER)))
    lines.extend(_critiques(artifact.items(Section.ADVERSARIAL_CRITIQUE)))

    return "\n".join(lines).rstrip() + "\n"


def total_score(score: Optional[Dict[str, Any]]) -> float:
    """LR + cost + speed + ambiguity, each 0-3; missing parts count as 0."""
    if not score:
        return 0
    return sum(score.get(key, 0) or 0 for key in SCORE_KEYS)


def rank_tests(items: List[ArtifactItem]) -> List[ArtifactItem]:
    """Tests by total score descending, ties by numeric id."""

    def _key(item: ArtifactItem):
        number = item_number(item.id)
        return (-total_score(item.get("score")), number if number is not None else float("inf"), item.id)

    return sorted(items, key=_key)


# ---------------------------------------------------------------------------
# Escaping
# ---------------------------------------------------------------------------


def escape_inline(value: Any) -> str:
    """Trimmed single-line text; line breaks become ``<br/>``."""
    if not isinstance(value, str):
        return ""
    return _LINE_BREAK_RE.sub("<br/>", value.strip())


def escape_heading(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return " ".join(value.split()).replace("~", "\\~")


def escape_table_cell(value: Any) -> str:
    return escape_inline(value).replace("|", "\\|")


def format_string_list(values: Any, empty: str = "inference") -> str:
    if not isinstance(values, list):
        return empty
    strings = [escape_inline(v) for v in values if isinstance(v, str) and v.strip()]
    return ", ".join(strings) if strings else empty


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _json_value(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------


def _front_matter(artifact: Artifact) -> List[str]:
    lines = [
        "---",
        f"thread_id: {_json_value(artifact.thread_id)}",
        f"schema_version: {_json_value(artifact.schema_version)}",
        f"created_at: {_json_value(artifact.created_at)}",
        f"updated_at: {_json_value(artifact.updated_at)}",
        f"version: {artifact.version}",
        "contributors:",
    ]
    if not artifact.contributors:
        lines.append("  []")
    for contributor in artifact.contributors:
        lines.append(f"  - agent: {_json_value(contributor.agent)}")
        if contributor.contributed_at:
            lines.append(f"    contributed_at: {_json_value(contributor.contributed_at)}")
    lines.append(f"status: {_json_value(artifact.status)}")
    lines.append("---")
    return lines


def _section_heading(section: Section) -> List[str]:
    number = list(Section).index(section) + 1
    return [f"## {number}. {SECTION_TITLES[section]}", ""]


def _item_heading(item: ArtifactItem, title: str) -> str:
    text = f"{item.id}: {title}" if title else item.id
    return f"### ~~{text}~~" if item.killed else f"### {text}"


def _kill_block(item: ArtifactItem) -> List[str]:
    if not item.killed:
        return []
    lines = ["", "**Killed**: true"]
    if item.killed_by:
        lines.append(f"**Killed by**: {escape_inline(item.killed_by)}")
    if item.killed_at:
        lines.append(f"**Killed at**: {escape_inline(item.killed_at)}")
    lines.append(f"**Kill reason**: {escape_inline(item.kill_reason) or '(none given)'}")
    return lines


def _extra_fields(item: ArtifactItem) -> List[str]:
    return [f"**{key}**: {_json_value(item.fields.extra[key])}" for key in sorted(item.fields.extra)]


def _research_thread(rt: Optional[ArtifactItem]) -> List[str]:
    lines = _section_heading(Section.RESEARCH_THREAD)
    get = rt.get if rt is not None else (lambda name, default=None: default)
    lines.append(f"**RT**: {escape_inline(get('statement'))}")
    lines.append("")
    lines.append(f"**Context**: {escape_inline(get('context'))}")
    lines.append("")
    lines.append(f"**Why it matters**: {escape_inline(get('why_it_matters'))}")
    lines.append("")
    lines.append(f"**Anchors**: {format_string_list(get('anchors'))}")
    if rt is not None and rt.fields.extra:
        lines.append("")
        lines.extend(_extra_fields(rt))
    lines.append("")
    return lines


def _hypotheses(items: List[ArtifactItem]) -> List[str]:
    lines = _section_heading(Section.HYPOTHESIS_SLATE)
    for h in sort_by_id(items):
        third_alt = h.get("third_alternative") is True
        name = escape_heading(h.get("name"))
        if third_alt and not _THIRD_ALTERNATIVE_RE.search(name):
            name = f"{name} (Third Alternative)".strip()
        lines.append(_item_heading(h, name))
        lines.append(f"**Claim**: {escape_inline(h.get('claim'))}")
        lines.append(f"**Mechanism**: {escape_inline(h.get('mechanism'))}")
        lines.append(f"**Anchors**: {format_string_list(h.get('anchors'))}")
        if third_alt:
            lines.append("**Third alternative**: true")
        lines.extend(_extra_fields(h))
        lines.extend(_kill_block(h))
        lines.append("")
    return lines


def _predictions(items: List[ArtifactItem], hypothesis_ids: List[str]) -> List[str]:
    lines = _section_heading(Section.PREDICTIONS_TABLE)
    header = ["ID", "Observation/Condition"] + hypothesis_ids
    lines.append(f"| {' | '.join(header)} |")
    lines.append(f"| {' | '.join('---' for _ in header)} |")

    for p in sort_by_id(items):
        predictions = p.get("predictions") or {}
        row = [f"~~{p.id}~~" if p.killed else p.id, escape_table_cell(p.get("condition"))]
        for hid in hypothesis_ids:
            value = predictions.get(hid, predictions.get(hid.lower()))
            row.append(escape_table_cell(value) if isinstance(value, str) and value.strip() else "—")
        lines.append(f"| {' | '.join(row)} |")

    # Detail lines for data that does not fit the table.
    for p in sort_by_id(items):
        detail: List[str] = []
        anchors = p.get("anchors")
        if anchors:
            detail.append(f"**Anchors**: {format_string_list(anchors)}")
        detail.extend(_extra_fields(p))
        detail.extend(line for line in _kill_block(p) if line)
        if detail:
            lines.append("")
            lines.append(f"**{p.id}**")
            lines.extend(detail)
    lines.append("")
    return lines


def _tests(items: List[ArtifactItem]) -> List[str]:
    lines = _section_heading(Section.DISCRIMINATIVE_TESTS)
    for t in rank_tests(items):
        score = t.get("score")
        title = f"{escape_heading(t.get('name'))} (Score: {_format_number(total_score(score))}/{MAX_TEST_SCORE})"
        lines.append(_item_heading(t, title))
        lines.append(f"**Procedure**: {escape_inline(t.get('procedure'))}")
        lines.append(f"**Discriminates**: {escape_inline(t.get('discriminates'))}")
        lines.append("**Expected outcomes**:")
        outcomes = t.get("expected_outcomes") or {}
        for key in sorted(outcomes):
            lines.append(f"- {escape_inline(key)}: {escape_inline(outcomes[key])}")
        lines.append(f"**Potency check**: {escape_inline(t.get('potency_check'))}")
        if t.get("feasibility"):
            lines.append(f"**Feasibility**: {escape_inline(t.get('feasibility'))}")
        if score:
            parts = [_format_number(score.get(key, 0)) for key in SCORE_KEYS]
            lines.append(
                "**Evidence-per-week score**: LR={}, Cost={}, Speed={}, Ambiguity={}".format(*parts)
            )
        if t.get("anchors"):
            lines.append(f"**Anchors**: {format_string_list(t.get('anchors'))}")
        lines.extend(_extra_fields(t))
        lines.extend(_kill_block(t))
        lines.append("")
    return lines


def _assumptions(items: List[ArtifactItem]) -> List[str]:
    lines = _section_heading(Section.ASSUMPTION_LEDGER)
    for a in sort_by_id(items):
        lines.append(_item_heading(a, escape_heading(a.get("name"))))
        lines.append(f"**Statement**: {escape_inline(a.get('statement'))}")
        lines.append(f"**Load**: {escape_inline(a.get('load'))}")
        lines.append(f"**Test**: {escape_inline(a.get('test'))}")
        if a.get("status"):
            lines.append(f"**Status**: {escape_inline(a.get('status'))}")
        if a.get("scale_check") is True:
            lines.append("**Scale check**: true")
        if a.get("calculation"):
            lines.append(f"**Calculation**: {escape_inline(a.get('calculation'))}")
        if a.get("implication"):
            lines.append(f"**Implication**: {escape_inline(a.get('implication'))}")
        if a.get("anchors"):
            lines.append(f"**Anchors**: {format_string_list(a.get('anchors'))}")
        lines.extend(_extra_fields(a))
        lines.extend(_kill_block(a))
        lines.append("")
    return lines


def _anomalies(items: List[ArtifactItem]) -> List[str]:
    lines = _section_heading(Section.ANOMALY_REGISTER)
    if not any(x.alive for x in items):
        lines.append("None registered.")
        lines.append("")
    for x in sort_by_id(items):
        lines.append(_item_heading(x, escape_heading(x.get("name"))))
        lines.append(f"**Observation**: {escape_inline(x.get('observation'))}")
        lines.append(f"**Conflicts with**: {format_string_list(x.get('conflicts_with'), empty='—')}")
        if x.get("status"):
            lines.append(f"**Quarantine status**: {escape_inline(x.get('status'))}")
        if x.get("resolution_plan"):
            lines.append(f"**Resolution plan**: {escape_inline(x.get('resolution_plan'))}")
        if x.get("anchors"):
            lines.append(f"**Anchors**: {format_string_list(x.get('anchors'))}")
        lines.extend(_extra_fields(x))
        lines.extend(_kill_block(x))
        lines.append("")
    return lines


def _critiques(items: List[ArtifactItem]) -> List[str]:
    lines = _section_heading(Section.ADVERSARIAL_CRITIQUE)
    for c in sort_by_id(items):
        lines.append(_item_heading(c, escape_heading(c.get("name"))))
        lines.append(f"**Attack**: {escape_inline(c.get('attack'))}")
        lines.append(f"**Evidence**: {escape_inline(c.get('evidence'))}")
        lines.append(f"**Current status**: {escape_inline(c.get('current_status'))}")
        if c.get("real_third_alternative") is True:
            lines.append("**Real third alternative**: true")
        if c.get("anchors"):
            lines.append(f"**Anchors**: {format_string_list(c.get('anchors'))}")
        lines.extend(_extra_fields(c))
        lines.extend(_kill_block(c))
        lines.append("")
    return lines
