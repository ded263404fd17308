from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Dict, List

from redacted_dm.geometry import Rect, area_validity, fixed, steps_in_area
from redacted_dm.redaction import mark_redacted, merge_redacted_runs
from redacted_dm.sequencer import DEFAULT_BPM, DEFAULT_SPEED, Area, Highlight, Step
from redacted_dm.validator import PieceValidationError, validate_piece

"""Piece documents: areas of text steps plus highlight rects, stored as JSON.

Steps without a rect are always playable. With "autoRedact": true the
redacted flags are recomputed from the highlights and neighbouring redacted
words are merged into phrases.
"""


PAGE_ORIGIN = fixed(Rect(0.0, 0.0, 0.0, 0.0))


@dataclass
class Piece:
    areas: List[Area]
    highlights: List[Highlight]
    bpm: float = DEFAULT_BPM
    speed: float = DEFAULT_SPEED

    def step_lists(self) -> List[List[Step]]:
        return [list(a.steps) for a in self.areas]


def _step(obj: Dict[str, Any]) -> Step:
    rect = Rect.from_list(obj["rect"]) if "rect" in obj else None
    return Step(
        text=str(obj.get("text", "")),
        redacted=bool(obj.get("redacted", False)),
        locate=fixed(rect) if rect is not None else None,
    )


def build_piece(doc: Dict[str, Any]) -> Piece:
    errors = validate_piece(doc)
    if errors:
        raise PieceValidationError(errors)
    highlights = [
        Highlight(locate=fixed(Rect.from_list(h["rect"])), label=str(h.get("label", "")))
        for h in doc.get("highlights", [])
    ]
    auto = bool(doc.get("autoRedact", False))
    areas: List[Area] = []
    for a in doc["areas"]:
        steps = [_step(s) for s in a.get("steps", [])]
        if auto:
            steps = merge_redacted_runs(mark_redacted(steps, highlights))
        check = None
        if "bounds" in a:
            # Bounds are page coordinates, so the anchor is the page origin
            bounds = Rect.from_list(a["bounds"])
            steps = steps_in_area(steps, PAGE_ORIGIN, bounds)
            check = area_validity(PAGE_ORIGIN, bounds)
        areas.append(Area(steps=steps, instrument=a.get("instrument"), validity_check=check))
    return Piece(
        areas=areas,
        highlights=highlights,
        bpm=float(doc.get("bpm", DEFAULT_BPM)),
        speed=float(doc.get("speed", DEFAULT_SPEED)),
    )


def load_piece(path: str) -> Piece:
    if not os.path.exists(path):
        raise FileNotFoundError(f"piece file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        return build_piece(json.load(f))
