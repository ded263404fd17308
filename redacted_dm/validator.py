from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, List

from redacted_dm.sequencer import BPM_MAX, BPM_MIN, ConfigurationError
from redacted_dm.sinks import INSTRUMENTS


PIECE_VERSION = "redacted-dm-1.0"


class PieceValidationError(ConfigurationError):
    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)


def _err(errors: List[str], path: str, msg: str) -> None:
    errors.append(f"{path}: {msg}")


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _check_rect(errors: List[str], path: str, rect: Any) -> None:
    if not isinstance(rect, list) or len(rect) != 4 or not all(_is_number(v) for v in rect):
        _err(errors, path, "must be [left, top, width, height] numbers")
        return
    if rect[2] < 0 or rect[3] < 0:
        _err(errors, path, "width and height must be >= 0")


def validate_piece(doc: Dict[str, Any]) -> List[str]:
    """Check a piece document; returns human-readable errors with JSON-pointer-like paths."""
    errors: List[str] = []
    if not isinstance(doc, dict):
        return ["/: piece must be a JSON object"]

    if doc.get("version") != PIECE_VERSION:
        _err(errors, "/version", f"must equal '{PIECE_VERSION}'")

    bpm = doc.get("bpm")
    if bpm is not None and (not _is_number(bpm) or not (BPM_MIN <= bpm <= BPM_MAX)):
        _err(errors, "/bpm", f"must be a number in {BPM_MIN}..{BPM_MAX}")
    speed = doc.get("speed")
    if speed is not None and (not _is_number(speed) or speed <= 0):
        _err(errors, "/speed", "must be a positive number")

    areas = doc.get("areas")
    if not isinstance(areas, list) or not areas:
        _err(errors, "/areas", "required non-empty array")
        areas = []
    total_steps = 0
    for ai, area in enumerate(areas):
        ap = f"/areas/{ai}"
        if not isinstance(area, dict):
            _err(errors, ap, "must be an object")
            continue
        inst = area.get("instrument")
        if inst is not None and inst not in INSTRUMENTS:
            _err(errors, f"{ap}/instrument", f"must be null or one of {', '.join(INSTRUMENTS)}")
        if "bounds" in area:
            _check_rect(errors, f"{ap}/bounds", area["bounds"])
        steps = area.get("steps")
        if not isinstance(steps, list):
            _err(errors, f"{ap}/steps", "required array")
            continue
        total_steps += len(steps)
        for si, st in enumerate(steps):
            sp = f"{ap}/steps/{si}"
            if not isinstance(st, dict):
                _err(errors, sp, "must be an object")
                continue
            if not isinstance(st.get("text", ""), str):
                _err(errors, f"{sp}/text", "must be a string")
            if not isinstance(st.get("redacted", False), bool):
                _err(errors, f"{sp}/redacted", "must be a boolean")
            if "rect" in st:
                _check_rect(errors, f"{sp}/rect", st["rect"])
    if areas and total_steps == 0:
        _err(errors, "/areas", "at least one area needs steps")

    highlights = doc.get("highlights", [])
    if not isinstance(highlights, list):
        _err(errors, "/highlights", "must be an array")
    else:
        for hi, hl in enumerate(highlights):
            hp = f"/highlights/{hi}"
            if not isinstance(hl, dict):
                _err(errors, hp, "must be an object")
                continue
            _check_rect(errors, f"{hp}/rect", hl.get("rect"))

    if not isinstance(doc.get("autoRedact", False), bool):
        _err(errors, "/autoRedact", "must be a boolean")
    return errors


def main(argv: List[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Validate a redacted-dm piece JSON")
    ap.add_argument("path", help="Path to piece JSON file")
    args = ap.parse_args(argv)

    try:
        with open(args.path, "r", encoding="utf-8") as f:
            doc = json.load(f)
    except Exception as e:
        print(f"error: failed to read {args.path}: {e}", file=sys.stderr)
        return 2

    errors = validate_piece(doc)
    if errors:
        print("invalid piece:")
        for e in errors:
            print(f" - {e}")
        return 1
    print("ok: valid piece")
    return 0


if __name__ == "__main__":
    sys.exit(main())
