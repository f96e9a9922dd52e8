"""Anchor helpers for provenance checks.

Anchors cite transcript sections as ``§n`` or ``§n-m``; ``inference`` marks
a claim with no direct transcript support.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Set, Tuple

MAX_TRANSCRIPT_SECTION = 236

_ANCHOR_REF_RE = re.compile(r"§\s?(\d+)(?:-(\d+))?")
_CHASTITY_REF_RE = re.compile(r"§\s?50(?!\d)")


def extract_anchor_refs(anchors: Optional[Iterable[str]]) -> List[Tuple[int, int]]:
    """Every ``(start, end)`` span an anchor list cites; ``§n`` is ``(n, n)``."""
    spans: List[Tuple[int, int]] = []
    for anchor in anchors or []:
        for match in _ANCHOR_REF_RE.finditer(anchor):
            start = int(match.group(1))
            end = int(match.group(2)) if match.group(2) else start
            spans.append((start, max(start, end)))
    return spans


def format_anchor_span(span: Tuple[int, int]) -> str:
    start, end = span
    return f"§{start}" if start == end else f"§{start}-{end}"


def out_of_range_refs(
    anchors: Optional[Iterable[str]], maximum: int = MAX_TRANSCRIPT_SECTION
) -> List[Tuple[int, int]]:
    """Distinct cited spans with an endpoint outside ``1..maximum``, in citation order."""
    seen: Set[Tuple[int, int]] = set()
    result: List[Tuple[int, int]] = []
    for start, end in extract_anchor_refs(anchors):
        if start >= 1 and end <= maximum:
            continue
        if (start, end) not in seen:
            seen.add((start, end))
            result.append((start, end))
    return result


def is_pure_inference(anchors: Optional[Iterable[str]]) -> bool:
    """True when an anchor says ``inference`` without naming its source."""
    for anchor in anchors or []:
        lower = anchor.strip().lower()
        if lower in ("inference", "[inference]"):
            return True
        if "[inference]" in lower and "from" not in lower:
            return True
    return False


def cites_chastity_principle(text: str) -> bool:
    return bool(_CHASTITY_REF_RE.search(text or ""))
