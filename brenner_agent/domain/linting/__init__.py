"""Internal linting utilities for the artifact linter."""

from .provenance import (
    MAX_TRANSCRIPT_SECTION,
    extract_anchor_refs,
    format_anchor_span,
    is_pure_inference,
    out_of_range_refs,
)
from .rule_runner import (
    DEFAULT_RULES,
    ERROR,
    INFO,
    SEVERITY_RANK,
    WARNING,
    LintIssue,
    RuleContext,
    RuleRunner,
    build_default_runner,
    default_registry,
    parse_timestamp,
)

__all__ = [
    "MAX_TRANSCRIPT_SECTION",
    "extract_anchor_refs",
    "format_anchor_span",
    "is_pure_inference",
    "out_of_range_refs",
    "DEFAULT_RULES",
    "ERROR",
    "WARNING",
    "INFO",
    "SEVERITY_RANK",
    "LintIssue",
    "RuleContext",
    "RuleRunner",
    "build_default_runner",
    "default_registry",
    "parse_timestamp",
]
