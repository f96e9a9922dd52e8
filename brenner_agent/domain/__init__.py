"""Brenner Agent Domain - Pure domain logic for research artifacts.

This package contains pure functions with no file system or network dependencies.
All I/O is handled by the tools layer; this package operates on strings, dicts
and dataclasses.
"""

from .artifact import (
    Artifact,
    ArtifactItem,
    Contributor,
    Delta,
    Operation,
    Section,
    artifact_from_dict,
    artifact_to_dict,
    create_empty_artifact,
)
from .artifact_linter import LintReport, format_lint_report_human, format_lint_report_json, lint_artifact
from .artifact_merge import SECTION_LIMITS, MergeInvariantError, MergeIssue, MergeResult, merge_artifact
from .artifact_renderer import render_artifact_markdown
from .delta_parser import (
    SECTION_ID_PREFIXES,
    DeltaParseResult,
    InvalidDelta,
    extract_valid_deltas,
    format_parse_report,
    get_section_id_prefix,
    parse_delta_message,
    validate_target_id_prefix,
)
from .linting import LintIssue
from .thread_compiler import CompileResult, ThreadMessage, compile_thread
from .thread_subjects import classify_subject, compiled_subject, extract_version, next_compiled_version

__all__ = [
    # Artifact model
    "Artifact",
    "ArtifactItem",
    "Contributor",
    "Delta",
    "Operation",
    "Section",
    "create_empty_artifact",
    "artifact_to_dict",
    "artifact_from_dict",
    # Delta parser
    "parse_delta_message",
    "extract_valid_deltas",
    "DeltaParseResult",
    "InvalidDelta",
    "SECTION_ID_PREFIXES",
    "get_section_id_prefix",
    "validate_target_id_prefix",
    "format_parse_report",
    # Merge engine
    "merge_artifact",
    "MergeResult",
    "MergeIssue",
    "MergeInvariantError",
    "SECTION_LIMITS",
    # Linter
    "lint_artifact",
    "LintReport",
    "LintIssue",
    "format_lint_report_human",
    "format_lint_report_json",
    # Renderer
    "render_artifact_markdown",
    # Thread compiler
    "ThreadMessage",
    "CompileResult",
    "compile_thread",
    "classify_subject",
    "extract_version",
    "next_compiled_version",
    "compiled_subject",
]
