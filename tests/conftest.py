"""Global pytest fixtures for deterministic test environment."""

from __future__ import annotations

import json
from typing import Any, Dict, List

import pytest


@pytest.fixture(autouse=True)
def _isolate_runtime_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear local runtime env that can leak into tests on developer machines."""
    for key in (
        "AGENT_MAIL_BASE_URL",
        "AGENT_MAIL_PATH",
        "AGENT_MAIL_BEARER_TOKEN",
        "AGENT_MAIL_PROJECT_KEY",
        "AGENT_NAME",
    ):
        monkeypatch.delenv(key, raising=False)


def delta_block(data: Dict[str, Any]) -> str:
    return "```delta\n" + json.dumps(data, ensure_ascii=False) + "\n```"


def message_body(*deltas: Dict[str, Any], preface: str = "Notes for the thread.") -> str:
    return "\n\n".join([preface] + [delta_block(d) for d in deltas])


def _add(section: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"operation": "ADD", "section": section, "target_id": None, "payload": payload}


@pytest.fixture
def publishable_thread() -> List[Dict[str, Any]]:
    """Thread export (message list) whose compiled artifact lints clean."""
    return [
        {
            "id": 1,
            "from": "Operator",
            "created_ts": "2026-01-05T09:00:00Z",
            "subject": "KICKOFF: [RS-1] Cell fate research thread",
            "body_md": "Kick off the Brenner loop for RS-1.",
        },
        {
            "id": 2,
            "from": "BlueLake",
            "created_ts": "2026-01-05T10:00:00Z",
            "subject": "DELTA[hypothesis generator]: initial slate",
            "body_md": message_body(
                {
                    "operation": "EDIT",
                    "section": "research_thread",
                    "target_id": "RT",
                    "payload": {
                        "statement": "How do cells decide their fate during development?",
                        "context": "Lineage tracing leaves the mechanism open.",
                        "why_it_matters": "Discriminates between two families of models.",
                        "anchors": ["§58"],
                    },
                },
                _add("hypothesis_slate", {"name": "Lineage", "claim": "Fate follows lineage", "anchors": ["§42"]}),
                _add("hypothesis_slate", {"name": "Gradient", "claim": "Fate follows position", "anchors": ["§45"]}),
                _add(
                    "hypothesis_slate",
                    {
                        "name": "Both wrong",
                        "claim": "Fate is set by timing",
                        "anchors": ["§103"],
                        "third_alternative": True,
                    },
                ),
            ),
        },
        {
            "id": 3,
            "from": "RedForest",
            "created_ts": "2026-01-05T11:00:00Z",
            "subject": "DELTA[test designer]: tests and predictions",
            "body_md": message_body(
                _add(
                    "predictions_table",
                    {"condition": "Transplant early", "predictions": {"H1": "keeps fate", "H2": "switches", "H3": "delayed"}},
                ),
                _add(
                    "predictions_table",
                    {"condition": "Ablate source", "predictions": {"H1": "no change", "H2": "lost", "H3": "no change"}},
                ),
                _add(
                    "predictions_table",
                    {"condition": "Shift clock", "predictions": {"H1": "no change", "H2": "no change", "H3": "shifted"}},
                ),
                _add(
                    "discriminative_tests",
                    {
                        "name": "Transplant assay",
                        "procedure": "Move cells between positions",
                        "discriminates": "H1 vs H2",
                        "expected_outcomes": {"H1": "keeps fate", "H2": "switches"},
                        "potency_check": "Positive control graft per §50",
                        "score": {"likelihood_ratio": 3, "cost": 2, "speed": 2, "ambiguity": 2},
                    },
                ),
                _add(
                    "discriminative_tests",
                    {
                        "name": "Clock shift",
                        "procedure": "Accelerate the cell cycle",
                        "discriminates": "H3 vs others",
                        "expected_outcomes": {"H3": "shifted", "H1": "unchanged"},
                        "potency_check": "Confirm cycle change per §50",
                        "score": {"likelihood_ratio": 2, "cost": 1, "speed": 1, "ambiguity": 1},
                    },
                ),
            ),
        },
        {
            "id": 4,
            "from": "GreenCastle",
            "created_ts": "2026-01-05T12:00:00Z",
            "subject": "DELTA[adversarial critic]: assumptions and critiques",
            "body_md": message_body(
                _add("assumption_ledger", {"name": "Markers", "statement": "Markers are stable", "load": "H1", "test": "Pulse chase"}),
                _add("assumption_ledger", {"name": "Diffusion", "statement": "Morphogen diffuses", "load": "H2", "test": "FRAP"}),
                _add(
                    "assumption_ledger",
                    {
                        "name": "Scale",
                        "statement": "Gradient spans the field",
                        "load": "H2",
                        "test": "Compute length scale",
                        "scale_check": True,
                        "calculation": "sqrt(D/k) = 20 um",
                    },
                ),
                _add(
                    "adversarial_critique",
                    {
                        "name": "Wrong frame",
                        "attack": "Fate may be stochastic",
                        "evidence": "Single-cell variance",
                        "current_status": "open",
                        "real_third_alternative": True,
                    },
                ),
                _add(
                    "adversarial_critique",
                    {"name": "Assay bias", "attack": "Grafting injures cells", "evidence": "Sham graft", "current_status": "open"},
                ),
            ),
        },
    ]
