from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional


@dataclass(frozen=True)
class Rect:
    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self):
        return (self.left + self.width / 2.0, self.top + self.height / 2.0)

    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def intersects(self, other: "Rect") -> bool:
        # Edges touching count as overlap
        return not (
            self.right < other.left
            or self.left > other.right
            or self.bottom < other.top
            or self.top > other.bottom
        )

    def overlap_area(self, other: "Rect") -> float:
        ox = max(0.0, min(self.right, other.right) - max(self.left, other.left))
        oy = max(0.0, min(self.bottom, other.bottom) - max(self.top, other.top))
        return ox * oy

    def union(self, other: "Rect") -> "Rect":
        left = min(self.left, other.left)
        top = min(self.top, other.top)
        return Rect(left, top, max(self.right, other.right) - left, max(self.bottom, other.bottom) - top)

    @classmethod
    def from_list(cls, xs) -> "Rect":
        left, top, width, height = (float(v) for v in xs)
        return cls(left, top, width, height)


@dataclass(frozen=True)
class Located:
    """Result of a geometry query: ok with a rect, or not ok with a reason."""

    ok: bool
    rect: Optional[Rect] = None
    reason: str = ""

    def __bool__(self) -> bool:
        return self.ok


def found(rect: Rect) -> Located:
    return Located(True, rect)


def lost(reason: str) -> Located:
    return Located(False, None, reason)


Locator = Callable[[], Located]


def fixed(rect: Optional[Rect]) -> Locator:
    """Locator for geometry that never changes (files, tests)."""
    res = found(rect) if rect is not None else lost("no geometry")
    return lambda: res


def locate(locator: Optional[Locator]) -> Located:
    """Run a collaborator-supplied locator, turning exceptions into a failed result."""
    if locator is None:
        return lost("no locator")
    try:
        res = locator()
    except Exception as e:
        return lost(f"locator raised {e!r}")
    if not isinstance(res, Located):
        return lost("locator returned no result")
    return res


def center_in_bounds(rect: Rect, anchor: Rect, bounds: Rect) -> bool:
    """True when rect's center, relative to anchor's origin, lies inside bounds."""
    cx, cy = rect.center
    rx = cx - anchor.left
    ry = cy - anchor.top
    return bounds.left <= rx <= bounds.right and bounds.top <= ry <= bounds.bottom


def steps_in_area(steps: Iterable[Any], anchor: Locator, bounds: Rect) -> List[Any]:
    """Filter steps (anything with a `locate` attribute) down to those inside an area."""
    a = locate(anchor)
    if not a.ok or a.rect is None:
        return []
    out = []
    for st in steps:
        r = locate(getattr(st, "locate", None))
        if r.ok and r.rect is not None and center_in_bounds(r.rect, a.rect, bounds):
            out.append(st)
    return out


def area_validity(anchor: Locator, bounds: Rect) -> Callable[[Any], Located]:
    """Per-tick validity predicate: step is on screen and still inside the area."""

    def check(step: Any) -> Located:
        r = locate(getattr(step, "locate", None))
        if not r.ok or r.rect is None:
            return r
        if r.rect.is_empty():
            return lost("collapsed")
        a = locate(anchor)
        if not a.ok or a.rect is None:
            return lost(f"anchor: {a.reason}")
        if not center_in_bounds(r.rect, a.rect, bounds):
            return lost("outside area")
        return r

    return check
