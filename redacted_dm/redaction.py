from __future__ import annotations

from typing import List, Optional, Sequence

from redacted_dm.geometry import Rect, fixed, locate
from redacted_dm.sequencer import Highlight, Step


# Heuristics carried over from the page overlay; tune rather than derive.
REDACTION_OVERLAP_RATIO = 0.3
SAME_LINE_TOLERANCE = 5.0
ADJACENT_GAP = 10.0


def _rect_of(obj) -> Optional[Rect]:
    res = locate(getattr(obj, "locate", None))
    return res.rect if res.ok else None


def covers(highlight: Rect, rect: Rect, ratio: float = REDACTION_OVERLAP_RATIO) -> bool:
    """True when highlight covers more than `ratio` of rect's own area."""
    return highlight.overlap_area(rect) > rect.area * ratio


def mark_redacted(steps: Sequence[Step], highlights: Sequence[Highlight], ratio: float = REDACTION_OVERLAP_RATIO) -> List[Step]:
    """Set each step's redacted flag from the highlight list. Returns the same steps."""
    hl_rects = [r for r in (_rect_of(h) for h in highlights) if r is not None]
    for st in steps:
        r = _rect_of(st)
        st.redacted = bool(r is not None and any(covers(h, r, ratio) for h in hl_rects))
    return list(steps)


def _adjacent(group: Rect, rect: Rect) -> bool:
    same_line = abs(group.top - rect.top) < SAME_LINE_TOLERANCE
    gap = min(abs(group.right - rect.left), abs(rect.right - group.left))
    return same_line and gap < ADJACENT_GAP


def merge_redacted_runs(steps: Sequence[Step]) -> List[Step]:
    """Collapse neighbouring redacted steps on one line into a single step.

    Non-redacted steps pass through untouched and close any open group, so a
    redacted phrase plays as one trigger instead of one per word.
    """
    out: List[Step] = []
    group: List[Step] = []
    group_text = ""
    group_rect: Optional[Rect] = None

    def flush():
        nonlocal group, group_text, group_rect
        if len(group) == 1:
            out.append(group[0])
        elif group:
            out.append(Step(text=group_text, redacted=True, locate=fixed(group_rect)))
        group, group_text, group_rect = [], "", None

    for st in steps:
        if not st.redacted:
            flush()
            out.append(st)
            continue
        r = _rect_of(st)
        if group and r is not None and group_rect is not None and _adjacent(group_rect, r):
            sep = " " if r.left > group_rect.right else ""
            group.append(st)
            group_text = group_text + sep + st.text
            group_rect = group_rect.union(r)
            continue
        flush()
        group, group_text, group_rect = [st], st.text, r
    flush()
    return out
