"""Pure domain logic for linting a merged artifact against the guardrails.

Linting is read-only and never blocks a merge; it decides whether an
artifact is fit to publish.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .artifact import Artifact
from .linting import ERROR, INFO, SEVERITY_RANK, WARNING, LintIssue, RuleContext, RuleRunner, build_default_runner


@dataclass
class LintReport:
    """Structured result from artifact linting."""

    valid: bool
    summary: Dict[str, int]
    issues: List[LintIssue] = field(default_factory=list)

    @property
    def errors(self) -> List[LintIssue]:
        return [i for i in self.issues if i.severity == ERROR]

    @property
    def warnings(self) -> List[LintIssue]:
        return [i for i in self.issues if i.severity == WARNING]

    @property
    def info(self) -> List[LintIssue]:
        return [i for i in self.issues if i.severity == INFO]

    def codes(self) -> List[str]:
        return [i.code for i in self.issues]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "summary": dict(self.summary),
            "issues": [i.to_dict() for i in self.issues],
        }


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def lint_artifact(artifact: Artifact, runner: Optional[RuleRunner] = None) -> LintReport:
    """Run the guardrail battery over *artifact*.

    ``valid`` is true iff no ``error``-severity issue is reported.
    """
    runner = runner or build_default_runner()
    issues = runner.run(artifact, RuleContext.from_artifact(artifact))
    issues.sort(key=lambda i: (SEVERITY_RANK.get(i.severity, len(SEVERITY_RANK)), i.code, i.item_id or ""))

    summary = {
        "errors": sum(1 for i in issues if i.severity == ERROR),
        "warnings": sum(1 for i in issues if i.severity == WARNING),
        "info": sum(1 for i in issues if i.severity == INFO),
    }
    return LintReport(valid=summary["errors"] == 0, summary=summary, issues=issues)


# ---------------------------------------------------------------------------
# Formatting report (pure string output)
# ---------------------------------------------------------------------------


def format_lint_report_human(report: LintReport, artifact_name: str = "artifact") -> str:
    lines = [
        "Artifact Linter Report",
        "======================",
        f"Artifact: {artifact_name}",
        f"Status: {'VALID' if report.valid else 'INVALID'} "
        f"({report.summary['errors']} errors, {report.summary['warnings']} warnings, {report.summary['info']} info)",
        "",
    ]

    for title, issues, show_fix in (
        ("Errors (must fix):", report.errors, True),
        ("Warnings (should fix):", report.warnings, True),
        ("Info:", report.info, False),
    ):
        if not issues:
            continue
        lines.append(title)
        for issue in issues:
            lines.append(f"  {issue.code}: {issue.message}")
            if show_fix and issue.fix:
                lines.append(f"    -> {issue.fix}")
        lines.append("")

    return "\n".join(lines)


def format_lint_report_json(report: LintReport, artifact_name: str = "artifact") -> str:
    """Deterministic, pretty-printed JSON."""
    output: Dict[str, Any] = {"artifact": artifact_name}
    output.update(report.to_dict())
    return json.dumps(output, indent=2, sort_keys=True, ensure_ascii=False)
