"""Markdown renderer tests."""

from __future__ import annotations

from brenner_agent.domain.artifact import Contributor, Section, create_empty_artifact
from brenner_agent.domain.artifact_merge import merge_artifact
from brenner_agent.domain.artifact_renderer import (
    escape_heading,
    escape_inline,
    escape_table_cell,
    format_string_list,
    rank_tests,
    render_artifact_markdown,
    total_score,
)
from brenner_agent.domain.thread_compiler import compile_thread


def _merged(make_delta, *rows):
    deltas = [make_delta(*row[:3], **(row[3] if len(row) > 3 else {})) for row in rows]
    return merge_artifact(create_empty_artifact("RS-1"), deltas).artifact


class TestLayout:
    def test_empty_artifact(self):
        artifact = create_empty_artifact("RS-1", created_at="2026-01-01T00:00:00Z")
        text = render_artifact_markdown(artifact)

        assert text.startswith('---\nthread_id: "RS-1"\n')
        assert "contributors:\n  []\n" in text
        assert "# Brenner Protocol Artifact: RS-1" in text
        assert "## 1. Research Thread" in text
        assert "## 7. Adversarial Critique" in text
        assert "None registered." in text
        assert text.endswith("\n") and not text.endswith("\n\n")

    def test_sections_appear_in_order(self, thread_messages):
        text = compile_thread("RS-1", thread_messages).markdown
        positions = [text.index(f"## {n}. ") for n in range(1, 8)]
        assert positions == sorted(positions)

    def test_front_matter(self):
        artifact = create_empty_artifact("RS-1", created_at="2026-01-01T00:00:00Z", version=3)
        artifact.contributors = [Contributor(agent="BlueLake", contributed_at="2026-01-02T00:00:00Z")]
        text = render_artifact_markdown(artifact)
        assert 'created_at: "2026-01-01T00:00:00Z"' in text
        assert "version: 3" in text
        assert '  - agent: "BlueLake"\n    contributed_at: "2026-01-02T00:00:00Z"' in text
        assert 'status: "draft"' in text

    def test_same_artifact_renders_identically(self, thread_messages):
        first = compile_thread("RS-1", thread_messages)
        second = compile_thread("RS-1", thread_messages)
        assert first.markdown == second.markdown


class TestItems:
    def test_third_alternative_suffix(self, make_delta):
        artifact = _merged(make_delta, ("ADD", "hypothesis_slate", {"name": "Timing", "claim": "c", "third_alternative": True}))
        text = render_artifact_markdown(artifact)
        assert "### H1: Timing (Third Alternative)" in text
        assert "**Third alternative**: true" in text

    def test_killed_item_is_struck_through(self, make_delta):
        artifact = _merged(
            make_delta,
            ("ADD", "hypothesis_slate", {"name": "Lineage", "claim": "c"}, {"timestamp": "2026-01-01T00:00:00Z"}),
            ("KILL", "hypothesis_slate", {"reason": "refuted by T1"}, {"target_id": "H1", "agent": "RedForest", "timestamp": "2026-01-02T00:00:00Z"}),
        )
        text = render_artifact_markdown(artifact)
        assert "### ~~H1: Lineage~~" in text
        assert "**Killed by**: RedForest" in text
        assert "**Killed at**: 2026-01-02T00:00:00Z" in text
        assert "**Kill reason**: refuted by T1" in text

    def test_kill_without_reason(self, make_delta):
        artifact = _merged(
            make_delta,
            ("ADD", "anomaly_register", {"name": "Odd", "observation": "o"}, {"timestamp": "2026-01-01T00:00:00Z"}),
            ("KILL", "anomaly_register", None, {"target_id": "X1", "timestamp": "2026-01-02T00:00:00Z"}),
        )
        text = render_artifact_markdown(artifact)
        assert "**Kill reason**: (none given)" in text
        assert "None registered." in text
        assert "### ~~X1: Odd~~" in text

    def test_missing_anchors_render_as_inference(self, make_delta):
        artifact = _merged(make_delta, ("ADD", "hypothesis_slate", {"claim": "c"}))
        assert "**Anchors**: inference" in render_artifact_markdown(artifact)

    def test_extra_fields_render_sorted(self, make_delta):
        artifact = _merged(make_delta, ("ADD", "hypothesis_slate", {"claim": "c", "zeta": 1, "alpha": {"b": 2, "a": 1}}))
        text = render_artifact_markdown(artifact)
        assert '**alpha**: {"a": 1, "b": 2}\n**zeta**: 1' in text


class TestEscaping:
    def test_line_breaks_cannot_start_new_blocks(self, make_delta):
        artifact = _merged(
            make_delta,
            ("ADD", "hypothesis_slate", {"name": "a", "claim": "X\n### H9: forged", "anchors": ["§1\n## 8. Fake"]}),
            ("ADD", "discriminative_tests", {"name": "t", "expected_outcomes": {"H1\n# x": "up\r\n- down"}}),
        )
        text = render_artifact_markdown(artifact)
        headings = [line for line in text.splitlines() if line.startswith("#")]
        assert headings == [
            "# Brenner Protocol Artifact: RS-1",
            "## 1. Research Thread",
            "## 2. Hypothesis Slate",
            "### H1: a",
            "## 3. Predictions Table",
            "## 4. Discriminative Tests",
            "### T1: t (Score: 0/12)",
            "## 5. Assumption Ledger",
            "## 6. Anomaly Register",
            "## 7. Adversarial Critique",
        ]
        assert "**Claim**: X<br/>### H9: forged" in text
        assert "**Anchors**: §1<br/>## 8. Fake" in text
        assert "- H1<br/># x: up<br/>- down" in text

    def test_kill_reason_is_single_line(self, make_delta):
        artifact = _merged(
            make_delta,
            ("ADD", "anomaly_register", {"name": "Odd", "observation": "o"}, {"timestamp": "2026-01-01T00:00:00Z"}),
            ("KILL", "anomaly_register", {"reason": "dup\n\n### X7: fake"}, {"target_id": "X1", "timestamp": "2026-01-02T00:00:00Z"}),
        )
        text = render_artifact_markdown(artifact)
        assert "**Kill reason**: dup<br/><br/>### X7: fake" in text
        assert "\n### X7" not in text

    def test_tilde_in_struck_heading_is_escaped(self, make_delta):
        artifact = _merged(
            make_delta,
            ("ADD", "hypothesis_slate", {"name": "a~~b", "claim": "c"}, {"timestamp": "2026-01-01T00:00:00Z"}),
            ("KILL", "hypothesis_slate", {"reason": "r"}, {"target_id": "H1", "timestamp": "2026-01-02T00:00:00Z"}),
        )
        assert "### ~~H1: a\\~\\~b~~" in render_artifact_markdown(artifact)

    def test_escape_helpers(self):
        assert escape_inline("  a \n b  ") == "a<br/>b"
        assert escape_inline(3) == ""
        assert escape_heading(" multi\nline ~name ") == "multi line \\~name"


class TestPredictionsTable:
    def test_table_columns_follow_hypotheses(self, make_delta):
        artifact = _merged(
            make_delta,
            ("ADD", "hypothesis_slate", {"claim": "a"}),
            ("ADD", "hypothesis_slate", {"claim": "b"}),
            ("ADD", "predictions_table", {"condition": "x | y", "predictions": {"H1": "up\ndown"}}),
        )
        text = render_artifact_markdown(artifact)
        assert "| ID | Observation/Condition | H1 | H2 |" in text
        assert "| P1 | x \\| y | up<br/>down | — |" in text

    def test_escape_table_cell(self):
        assert escape_table_cell(" a|b\r\nc ") == "a\\|b<br/>c"
        assert escape_table_cell(None) == ""


class TestDiscriminativeTests:
    def test_tests_are_ranked_by_score(self, make_delta):
        artifact = _merged(
            make_delta,
            ("ADD", "discriminative_tests", {"name": "Cheap", "score": {"likelihood_ratio": 1, "cost": 1}}),
            ("ADD", "discriminative_tests", {"name": "Strong", "score": {"likelihood_ratio": 3, "cost": 3, "speed": 3, "ambiguity": 3}}),
        )
        text = render_artifact_markdown(artifact)
        assert text.index("### T2: Strong (Score: 12/12)") < text.index("### T1: Cheap (Score: 2/12)")
        assert "**Evidence-per-week score**: LR=3, Cost=3, Speed=3, Ambiguity=3" in text
        assert [t.id for t in rank_tests(artifact.items(Section.DISCRIMINATIVE_TESTS))] == ["T2", "T1"]

    def test_expected_outcomes_sorted_by_key(self, make_delta):
        artifact = _merged(
            make_delta,
            ("ADD", "discriminative_tests", {"name": "T", "expected_outcomes": {"H2": "b", "H1": "a"}}),
        )
        text = render_artifact_markdown(artifact)
        assert "**Expected outcomes**:\n- H1: a\n- H2: b" in text

    def test_total_score(self):
        assert total_score(None) == 0
        assert total_score({"likelihood_ratio": 2, "cost": 1.5}) == 3.5


def test_format_string_list():
    assert format_string_list(["§1", " ", "§2"]) == "§1, §2"
    assert format_string_list([]) == "inference"
    assert format_string_list(None, empty="—") == "—"
