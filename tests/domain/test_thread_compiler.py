"""Thread subject conventions and full-thread compilation."""

from __future__ import annotations

import json

import pytest

from brenner_agent.domain.artifact import Section, artifact_to_dict
from brenner_agent.domain.thread_compiler import ThreadMessage, collect_deltas, compile_thread
from brenner_agent.domain.thread_subjects import (
    COMPILED,
    DELTA,
    KICKOFF,
    UNKNOWN,
    classify_subject,
    compiled_subject,
    extract_version,
    next_compiled_version,
    normalize_role_tag,
)


def _msg(id, subject, body="", sender="BlueLake", ts=None):
    return ThreadMessage(id=id, sender=sender, created_ts=ts or f"2026-01-05T{10 + id:02d}:00:00Z", subject=subject, body=body)


def _delta_body(data):
    return "```delta\n" + json.dumps(data) + "\n```"


class TestSubjects:
    @pytest.mark.parametrize(
        "subject,kind",
        [
            ("KICKOFF: [RS-1] thread", KICKOFF),
            ("[RS-1] Brenner Loop kickoff", KICKOFF),
            ("DELTA[Test Designer]: tests", DELTA),
            ("compiled: v2 RS-1 artifact", COMPILED),
            ("CRITIQUE: framing", "critique"),
            ("Re: lunch", UNKNOWN),
        ],
    )
    def test_classify(self, subject, kind):
        assert classify_subject(subject).kind == kind

    def test_delta_role_tag(self):
        assert classify_subject("DELTA[Test Designer]: x").role_tag == "test_designer"
        assert normalize_role_tag(" Adversarial-Critic ") == "adversarial_critic"

    def test_extract_version(self):
        assert extract_version("COMPILED: v12 RS-1 artifact") == 12
        assert extract_version("COMPILED: RS-1 artifact") is None

    def test_next_version_from_published_numbers(self):
        messages = [_msg(1, "COMPILED: v2 RS-1 artifact"), _msg(2, "COMPILED: v5 RS-1 artifact")]
        assert next_compiled_version(messages) == 6

    def test_next_version_counts_unnumbered_compiles(self):
        messages = [_msg(1, "COMPILED: RS-1 artifact"), _msg(2, "DELTA[x]: y")]
        assert next_compiled_version(messages) == 2

    def test_next_version_defaults_to_one(self):
        assert next_compiled_version([]) == 1

    def test_compiled_subject(self):
        assert compiled_subject("RS-1", 3) == "COMPILED: v3 RS-1 artifact"
        assert compiled_subject("RS-1", 3, "final draft") == "COMPILED: final draft"
        assert compiled_subject("RS-1", 3, "COMPILED: custom") == "COMPILED: custom"


class TestCompile:
    def test_publishable_thread(self, thread_messages):
        result = compile_thread("RS-1", thread_messages)

        assert result.ok
        assert result.publishable
        assert result.version == 1
        assert result.artifact.status == "active"
        assert result.artifact.created_at == "2026-01-05T09:00:00Z"
        assert result.artifact.contributor_names == ["BlueLake", "RedForest", "GreenCastle"]
        assert result.stats.message_count == 4
        assert result.stats.delta_message_count == 3
        assert result.stats.invalid_blocks == 0
        assert "# Brenner Protocol Artifact: RS-1" in result.markdown

    def test_replay_is_deterministic_and_order_insensitive(self, thread_messages):
        forward = compile_thread("RS-1", thread_messages)
        shuffled = compile_thread("RS-1", list(reversed(thread_messages)))
        assert forward.markdown == shuffled.markdown
        assert artifact_to_dict(forward.artifact) == artifact_to_dict(shuffled.artifact)

    def test_compiled_messages_are_not_delta_sources(self, thread_messages):
        republished = _msg(
            9,
            "COMPILED: v1 RS-1 artifact",
            body=_delta_body({"operation": "ADD", "section": "hypothesis_slate", "payload": {"claim": "echo"}}),
            ts="2026-01-06T00:00:00Z",
        )
        result = compile_thread("RS-1", thread_messages + [republished])
        assert result.version == 2
        assert len(result.artifact.items(Section.HYPOTHESIS_SLATE)) == 3
        assert result.artifact.version == 2

    def test_invalid_blocks_are_reported_with_provenance(self, thread_messages):
        bad = _msg(
            7,
            "DELTA[critic]: oops",
            body=_delta_body({"operation": "ADD", "payload": {"claim": "x"}}),
            sender="RedForest",
            ts="2026-01-05T13:00:00Z",
        )
        result = compile_thread("RS-1", thread_messages + [bad])
        assert result.ok
        assert result.stats.invalid_blocks == 1
        invalid = result.invalid_deltas[0]
        assert invalid.message_id == 7
        assert invalid.agent == "RedForest"
        assert invalid.reason == "MISSING_REQUIRED_FIELD: section"
        assert result.to_dict()["invalid_deltas"][0]["code"] == "MISSING_REQUIRED_FIELD"

    def test_lint_failure_is_not_publishable(self):
        messages = [
            _msg(1, "KICKOFF: RS-2"),
            _msg(2, "DELTA[gen]: h", body=_delta_body({"operation": "ADD", "section": "hypothesis_slate", "payload": {"claim": "only"}})),
        ]
        result = compile_thread("RS-2", messages)
        assert result.ok
        assert not result.publishable
        assert "EH-003" in result.lint.codes()

    def test_missing_sender_becomes_unknown(self):
        messages = [
            _msg(1, "DELTA[gen]: h", sender="", body=_delta_body({"operation": "ADD", "section": "hypothesis_slate", "payload": {"claim": "c"}})),
        ]
        result = compile_thread("RS-3", messages)
        assert result.artifact.get_item(Section.HYPOTHESIS_SLATE, "H1").created_by == "unknown"

    def test_limits_are_passed_to_merge(self, thread_messages):
        result = compile_thread("RS-1", thread_messages, limits={Section.HYPOTHESIS_SLATE: 2})
        assert len(result.artifact.items(Section.HYPOTHESIS_SLATE)) == 2
        assert result.merge.skipped_count == 1

    def test_collect_deltas_skips_compiled(self):
        body = _delta_body({"operation": "ADD", "section": "anomaly_register", "payload": {"observation": "o"}})
        valid, invalid = collect_deltas([_msg(1, "COMPILED: v1 x artifact", body), _msg(2, "INFO: note", body)])
        assert len(valid) == 1
        assert valid[0].message_id == 2
        assert invalid == []
