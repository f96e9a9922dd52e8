"""Artifact data model for Brenner Protocol research threads.

Pure data structures -- no file I/O. An :class:`Artifact` is a plain value:
the merge engine builds a new one from a base plus a list of deltas and
never mutates its input.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, FrozenSet, List, Optional, Tuple, Type

SCHEMA_VERSION = "0.1"

ARTIFACT_STATUSES = ("draft", "active", "closed")


class Section(str, Enum):
    """The seven fixed artifact sections, in render order."""

    RESEARCH_THREAD = "research_thread"
    HYPOTHESIS_SLATE = "hypothesis_slate"
    PREDICTIONS_TABLE = "predictions_table"
    DISCRIMINATIVE_TESTS = "discriminative_tests"
    ASSUMPTION_LEDGER = "assumption_ledger"
    ANOMALY_REGISTER = "anomaly_register"
    ADVERSARIAL_CRITIQUE = "adversarial_critique"


class Operation(str, Enum):
    ADD = "ADD"
    EDIT = "EDIT"
    KILL = "KILL"


SECTION_ID_PREFIXES: Dict[Section, str] = {
    Section.RESEARCH_THREAD: "RT",
    Section.HYPOTHESIS_SLATE: "H",
    Section.PREDICTIONS_TABLE: "P",
    Section.DISCRIMINATIVE_TESTS: "T",
    Section.ASSUMPTION_LEDGER: "A",
    Section.ANOMALY_REGISTER: "X",
    Section.ADVERSARIAL_CRITIQUE: "C",
}

RESEARCH_THREAD_ID = "RT"

# Keys owned by the merge engine; never copied from a payload.
RESERVED_ITEM_KEYS = frozenset({"id", "killed", "killed_by", "killed_at", "kill_reason"})

REPLACE_KEY = "replace"
REPLACE_ALL = "*"

# Field kinds used to validate payload values.
TEXT = "text"
LIST = "list"
MAPPING = "mapping"
FLAG = "flag"
SCORE = "score"


# ---------------------------------------------------------------------------
# Typed section payloads
# ---------------------------------------------------------------------------


@dataclass
class SectionPayload:
    """Base for the per-section payload variants.

    Every known field is optional; ``None`` means "not provided". Keys a
    section does not know about are kept in :attr:`extra`.
    """

    extra: Dict[str, Any] = field(default_factory=dict)

    FIELD_KINDS: ClassVar[Dict[str, str]] = {}

    def present(self) -> Dict[str, Any]:
        """Provided fields as a plain dict, known fields first."""
        out: Dict[str, Any] = {}
        for name in self.FIELD_KINDS:
            value = getattr(self, name)
            if value is not None:
                out[name] = value
        for key, value in self.extra.items():
            out[key] = value
        return out

    def get(self, name: str, default: Any = None) -> Any:
        if name in self.FIELD_KINDS:
            value = getattr(self, name)
            return default if value is None else value
        return self.extra.get(name, default)

    def set(self, name: str, value: Any) -> None:
        if name in self.FIELD_KINDS:
            setattr(self, name, value)
        else:
            self.extra[name] = value

    def is_empty(self) -> bool:
        return not self.present()


@dataclass
class ResearchThreadPayload(SectionPayload):
    statement: Optional[str] = None
    context: Optional[str] = None
    why_it_matters: Optional[str] = None
    anchors: Optional[List[str]] = None

    FIELD_KINDS = {"statement": TEXT, "context": TEXT, "why_it_matters": TEXT, "anchors": LIST}


@dataclass
class HypothesisPayload(SectionPayload):
    name: Optional[str] = None
    claim: Optional[str] = None
    mechanism: Optional[str] = None
    anchors: Optional[List[str]] = None
    third_alternative: Optional[bool] = None

    FIELD_KINDS = {
        "name": TEXT,
        "claim": TEXT,
        "mechanism": TEXT,
        "anchors": LIST,
        "third_alternative": FLAG,
    }


@dataclass
class PredictionPayload(SectionPayload):
    condition: Optional[str] = None
    predictions: Optional[Dict[str, str]] = None
    anchors: Optional[List[str]] = None

    FIELD_KINDS = {"condition": TEXT, "predictions": MAPPING, "anchors": LIST}


@dataclass
class DiscriminativeTestPayload(SectionPayload):
    name: Optional[str] = None
    procedure: Optional[str] = None
    discriminates: Optional[str] = None
    expected_outcomes: Optional[Dict[str, str]] = None
    potency_check: Optional[str] = None
    feasibility: Optional[str] = None
    score: Optional[Dict[str, float]] = None
    anchors: Optional[List[str]] = None

    FIELD_KINDS = {
        "name": TEXT,
        "procedure": TEXT,
        "discriminates": TEXT,
        "expected_outcomes": MAPPING,
        "potency_check": TEXT,
        "feasibility": TEXT,
        "score": SCORE,
        "anchors": LIST,
    }


@dataclass
class AssumptionPayload(SectionPayload):
    name: Optional[str] = None
    statement: Optional[str] = None
    load: Optional[str] = None
    test: Optional[str] = None
    status: Optional[str] = None
    scale_check: Optional[bool] = None
    calculation: Optional[str] = None
    implication: Optional[str] = None
    anchors: Optional[List[str]] = None

    FIELD_KINDS = {
        "name": TEXT,
        "statement": TEXT,
        "load": TEXT,
        "test": TEXT,
        "status": TEXT,
        "scale_check": FLAG,
        "calculation": TEXT,
        "implication": TEXT,
        "anchors": LIST,
    }


@dataclass
class AnomalyPayload(SectionPayload):
    name: Optional[str] = None
    observation: Optional[str] = None
    conflicts_with: Optional[List[str]] = None
    status: Optional[str] = None
    resolution_plan: Optional[str] = None
    anchors: Optional[List[str]] = None

    FIELD_KINDS = {
        "name": TEXT,
        "observation": TEXT,
        "conflicts_with": LIST,
        "status": TEXT,
        "resolution_plan": TEXT,
        "anchors": LIST,
    }


@dataclass
class CritiquePayload(SectionPayload):
    name: Optional[str] = None
    attack: Optional[str] = None
    evidence: Optional[str] = None
    current_status: Optional[str] = None
    real_third_alternative: Optional[bool] = None
    anchors: Optional[List[str]] = None

    FIELD_KINDS = {
        "name": TEXT,
        "attack": TEXT,
        "evidence": TEXT,
        "current_status": TEXT,
        "real_third_alternative": FLAG,
        "anchors": LIST,
    }


PAYLOAD_TYPES: Dict[Section, Type[SectionPayload]] = {
    Section.RESEARCH_THREAD: ResearchThreadPayload,
    Section.HYPOTHESIS_SLATE: HypothesisPayload,
    Section.PREDICTIONS_TABLE: PredictionPayload,
    Section.DISCRIMINATIVE_TESTS: DiscriminativeTestPayload,
    Section.ASSUMPTION_LEDGER: AssumptionPayload,
    Section.ANOMALY_REGISTER: AnomalyPayload,
    Section.ADVERSARIAL_CRITIQUE: CritiquePayload,
}


def _matches_kind(kind: str, value: Any) -> bool:
    if kind == TEXT:
        return isinstance(value, str)
    if kind == LIST:
        return isinstance(value, list) and all(isinstance(v, str) for v in value)
    if kind == MAPPING:
        return isinstance(value, dict)
    if kind == FLAG:
        return isinstance(value, bool)
    if kind == SCORE:
        return isinstance(value, dict) and all(
            isinstance(v, (int, float)) and not isinstance(v, bool) for v in value.values()
        )
    return True


def payload_from_dict(section: Section, data: Dict[str, Any]) -> Tuple[Optional[SectionPayload], Optional[str]]:
    """Build the typed payload for *section* from a raw JSON object.

    Returns ``(payload, None)`` on success or ``(None, field_name)`` when a
    known field has the wrong type.
    """
    cls = PAYLOAD_TYPES[section]
    known: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}
    for key, value in data.items():
        if key in RESERVED_ITEM_KEYS or key == REPLACE_KEY:
            continue
        kind = cls.FIELD_KINDS.get(key)
        if kind is None:
            extra[key] = copy.deepcopy(value)
            continue
        if value is None:
            continue
        if not _matches_kind(kind, value):
            return None, key
        known[key] = copy.deepcopy(value)
    return cls(extra=extra, **known), None


def empty_payload(section: Section) -> SectionPayload:
    return PAYLOAD_TYPES[section]()


def parse_replace_marker(data: Dict[str, Any]) -> Tuple[FrozenSet[str], bool]:
    """Read the ``replace`` marker of a payload.

    ``true`` replaces every array field the payload sets, a list of names
    replaces only those. Returns ``(fields, ok)``.
    """
    marker = data.get(REPLACE_KEY)
    if marker is None or marker is False:
        return frozenset(), True
    if marker is True:
        return frozenset({REPLACE_ALL}), True
    if isinstance(marker, list) and all(isinstance(v, str) for v in marker):
        return frozenset(marker), True
    return frozenset(), False


# ---------------------------------------------------------------------------
# Deltas, items, artifact
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Delta:
    """A single validated, attributed change proposal."""

    delta_id: str
    operation: Operation
    section: Section
    target_id: Optional[str]
    payload: SectionPayload
    rationale: str = ""
    replace_fields: FrozenSet[str] = frozenset()
    kill_reason: Optional[str] = None
    raw: str = ""
    message_id: Optional[int] = None
    agent: str = ""
    timestamp: str = ""

    def replaces(self, field_name: str) -> bool:
        return REPLACE_ALL in self.replace_fields or field_name in self.replace_fields


@dataclass
class ArtifactItem:
    """One addressable entry inside a section."""

    id: str
    section: Section
    fields: SectionPayload
    created_by: str = ""
    created_at: str = ""
    killed: bool = False
    killed_by: Optional[str] = None
    killed_at: Optional[str] = None
    kill_reason: Optional[str] = None

    @property
    def alive(self) -> bool:
        return not self.killed

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


@dataclass
class Contributor:
    agent: str
    contributed_at: str = ""


def _empty_sections() -> Dict[Section, List[ArtifactItem]]:
    return {section: [] for section in Section}


def _zero_counters() -> Dict[Section, int]:
    return {section: 0 for section in Section}


@dataclass
class Artifact:
    """The merged, versioned research document for one thread."""

    thread_id: str
    version: int = 0
    status: str = "draft"
    created_at: str = ""
    updated_at: str = ""
    schema_version: str = SCHEMA_VERSION
    sections: Dict[Section, List[ArtifactItem]] = field(default_factory=_empty_sections)
    id_counters: Dict[Section, int] = field(default_factory=_zero_counters)
    contributors: List[Contributor] = field(default_factory=list)

    def items(self, section: Section) -> List[ArtifactItem]:
        return self.sections[Section(section)]

    def live_items(self, section: Section) -> List[ArtifactItem]:
        return [item for item in self.items(section) if item.alive]

    def get_item(self, section: Section, item_id: str) -> Optional[ArtifactItem]:
        for item in self.items(section):
            if item.id == item_id:
                return item
        return None

    @property
    def research_thread(self) -> Optional[ArtifactItem]:
        items = self.sections[Section.RESEARCH_THREAD]
        return items[0] if items else None

    @property
    def contributor_names(self) -> List[str]:
        return [c.agent for c in self.contributors]

    def copy(self) -> "Artifact":
        return copy.deepcopy(self)


def create_empty_artifact(thread_id: str, created_at: str = "", version: int = 0) -> Artifact:
    """Return a version-*version* artifact with every section empty."""
    return Artifact(thread_id=thread_id, version=version, created_at=created_at, updated_at=created_at)


def item_number(item_id: str) -> Optional[int]:
    """Numeric suffix of an item id (``"H12"`` -> 12), or None."""
    digits = ""
    for ch in reversed(item_id):
        if not ch.isdigit():
            break
        digits = ch + digits
    if not digits or len(digits) == len(item_id):
        return None
    return int(digits)


def sort_by_id(items: List[ArtifactItem]) -> List[ArtifactItem]:
    """Sort items by numeric id suffix; non-numeric ids go last, by name."""

    def _key(item: ArtifactItem) -> Tuple[int, int, str]:
        number = item_number(item.id)
        if number is None:
            return (1, 0, item.id)
        return (0, number, item.id)

    return sorted(items, key=_key)


# ---------------------------------------------------------------------------
# JSON round trip
# ---------------------------------------------------------------------------


def item_to_dict(item: ArtifactItem) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "id": item.id,
        "fields": copy.deepcopy(item.fields.present()),
        "created_by": item.created_by,
        "created_at": item.created_at,
        "killed": item.killed,
    }
    if item.killed:
        data["killed_by"] = item.killed_by
        data["killed_at"] = item.killed_at
        data["kill_reason"] = item.kill_reason
    return data


def artifact_to_dict(artifact: Artifact) -> Dict[str, Any]:
    """Serialize *artifact* into a JSON-ready dict with a fixed key layout."""
    return {
        "schema_version": artifact.schema_version,
        "thread_id": artifact.thread_id,
        "version": artifact.version,
        "status": artifact.status,
        "created_at": artifact.created_at,
        "updated_at": artifact.updated_at,
        "contributors": [{"agent": c.agent, "contributed_at": c.contributed_at} for c in artifact.contributors],
        "id_counters": {section.value: artifact.id_counters.get(section, 0) for section in Section},
        "sections": {
            section.value: [item_to_dict(item) for item in artifact.sections[section]] for section in Section
        },
    }


def artifact_from_dict(data: Dict[str, Any]) -> Artifact:
    """Rebuild an :class:`Artifact` from :func:`artifact_to_dict` output.

    Raises ``ValueError`` when the structure is not an artifact.
    """
    if not isinstance(data, dict) or not isinstance(data.get("thread_id"), str):
        raise ValueError("Artifact JSON must be an object with a string 'thread_id'")

    artifact = Artifact(
        thread_id=data["thread_id"],
        version=int(data.get("version", 0)),
        status=str(data.get("status", "draft")),
        created_at=str(data.get("created_at", "")),
        updated_at=str(data.get("updated_at", "")),
        schema_version=str(data.get("schema_version", SCHEMA_VERSION)),
    )

    for raw_contributor in data.get("contributors", []) or []:
        if not isinstance(raw_contributor, dict) or not isinstance(raw_contributor.get("agent"), str):
            raise ValueError(f"Malformed contributor entry: {raw_contributor!r}")
        artifact.contributors.append(
            Contributor(agent=raw_contributor["agent"], contributed_at=str(raw_contributor.get("contributed_at", "")))
        )

    raw_sections = data.get("sections", {}) or {}
    if not isinstance(raw_sections, dict):
        raise ValueError("Artifact 'sections' must be an object")
    for key, raw_items in raw_sections.items():
        try:
            section = Section(key)
        except ValueError:
            raise ValueError(f"Unknown section in artifact JSON: {key!r}") from None
        for raw_item in raw_items or []:
            artifact.sections[section].append(_item_from_dict(section, raw_item))

    raw_counters = data.get("id_counters", {}) or {}
    for section in Section:
        highest = max((item_number(i.id) or 0 for i in artifact.sections[section]), default=0)
        artifact.id_counters[section] = max(int(raw_counters.get(section.value, 0)), highest)

    return artifact


def _item_from_dict(section: Section, raw_item: Any) -> ArtifactItem:
    if not isinstance(raw_item, dict) or not isinstance(raw_item.get("id"), str):
        raise ValueError(f"Malformed item in {section.value}: {raw_item!r}")
    payload, bad_field = payload_from_dict(section, raw_item.get("fields", {}) or {})
    if payload is None:
        raise ValueError(f"Item {raw_item['id']} has an invalid value for '{bad_field}'")
    return ArtifactItem(
        id=raw_item["id"],
        section=section,
        fields=payload,
        created_by=str(raw_item.get("created_by", "")),
        created_at=str(raw_item.get("created_at", "")),
        killed=bool(raw_item.get("killed", False)),
        killed_by=raw_item.get("killed_by"),
        killed_at=raw_item.get("killed_at"),
        kill_reason=raw_item.get("kill_reason"),
    )
