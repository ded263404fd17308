from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from redacted_dm.clock import Ticker
from redacted_dm.geometry import Located, Locator, locate
from redacted_dm.sinks import OutputSink, StepEvent, TriggerEvent


BPM_MIN = 20
BPM_MAX = 300
DEFAULT_BPM = 120
SPEED_MIN = 0.125
SPEED_MAX = 8.0
DEFAULT_SPEED = 1.0
STEPS_PER_BEAT = 4


class ConfigurationError(ValueError):
    pass


@dataclass(eq=False)
class Step:
    """One playable position. `locate` reports where it currently sits, if known."""

    text: str = ""
    redacted: bool = False
    locate: Optional[Locator] = None


@dataclass(eq=False)
class Highlight:
    locate: Optional[Locator] = None
    label: str = ""


ValidityCheck = Callable[[Step], Any]


@dataclass(eq=False)
class Area:
    steps: List[Step]
    instrument: Optional[str] = None
    # Returns a Located (or anything truthy/falsy). None: step must merely be locatable.
    validity_check: Optional[ValidityCheck] = None


@dataclass(eq=False)
class PendingRefresh:
    steps: List[List[Step]]
    highlights: List[Highlight]
    generation: int
    consumed: int = 0

    def steps_for(self, area_index: int) -> List[Step]:
        if 0 <= area_index < len(self.steps):
            return list(self.steps[area_index] or [])
        return []


@dataclass(eq=False)
class TrackState:
    area: Area
    steps: List[Step]
    highlights: List[Highlight]
    index: int = 0
    refresh_generation: int = 0

    def current_index(self) -> int:
        n = len(self.steps)
        return self.index % n if n else 0


def clamp_bpm(bpm: float) -> float:
    return float(max(BPM_MIN, min(BPM_MAX, float(bpm))))


def clamp_speed(mult: float) -> float:
    return float(max(SPEED_MIN, min(SPEED_MAX, float(mult))))


def step_duration_ms(bpm: float, speed: float = 1.0) -> float:
    """Sixteenth-note period in milliseconds."""
    return 60000.0 / (bpm * speed) / STEPS_PER_BEAT


def default_validity(step: Step) -> Located:
    if step.locate is None:
        return Located(True)
    res = locate(step.locate)
    if res.ok and res.rect is not None and res.rect.is_empty():
        return Located(False, res.rect, "collapsed")
    return res


def resolve_highlight(step: Step, highlights: Sequence[Highlight]) -> int:
    """Index of the first highlight overlapping the step, or -1."""
    here = locate(step.locate)
    if not here.ok or here.rect is None:
        return -1
    for i, hl in enumerate(highlights):
        there = locate(hl.locate)
        if there.ok and there.rect is not None and here.rect.intersects(there.rect):
            return i
    return -1


class Dispatcher:
    """Shared-clock step sequencer driving one cyclic track per area.

    - One ticker fires every step_duration_ms; each tick visits every area.
    - A failure while processing one area is logged and does not stop the others.
    - Refreshed step lists are swapped in per area when that area wraps to 0.
    """

    def __init__(
        self,
        sink: OutputSink,
        ticker_factory: Callable[[float, Callable[[int], None]], Any] = Ticker,
        bpm: float = DEFAULT_BPM,
        speed: float = DEFAULT_SPEED,
    ) -> None:
        self.sink = sink
        self._ticker_factory = ticker_factory
        self._ticker = None
        self._timer_token: Optional[object] = None
        self._bpm = clamp_bpm(bpm)
        self._speed = clamp_speed(speed)
        self._tracks: List[TrackState] = []
        self._pending: Optional[PendingRefresh] = None
        self._generation = 0
        self._playing = False
        self.tick = 0
        self._lock = threading.RLock()
        self.metrics: Dict[str, int] = {
            "ticks": 0,
            "steps": 0,
            "triggers": 0,
            "skipped": 0,
            "area_errors": 0,
            "refreshes_applied": 0,
        }

    # --- Public control ---
    def play(self, areas: Sequence[Area], highlights: Sequence[Highlight] = ()) -> None:
        if not areas:
            raise ConfigurationError("select at least one area first")
        if not any(a.steps for a in areas):
            raise ConfigurationError("no steps found in the selected areas")
        with self._lock:
            self._cancel_ticker()
            hl = list(highlights)
            self._tracks = [TrackState(area=a, steps=list(a.steps), highlights=hl) for a in areas]
            self._pending = None
            self.tick = 0
            self._playing = True
            # First tick now, so playback is audible without waiting a period
            self.on_tick()
            self._start_ticker()

    def stop(self) -> None:
        with self._lock:
            self._cancel_ticker()
            self._playing = False
            self.tick = 0
            for tr in self._tracks:
                tr.index = 0
            self._pending = None

    def set_bpm(self, bpm: float) -> float:
        with self._lock:
            self._bpm = clamp_bpm(bpm)
            self._retime()
            return self._bpm

    def set_speed_multiplier(self, mult: float) -> float:
        with self._lock:
            self._speed = clamp_speed(mult)
            self._retime()
            return self._speed

    def schedule_refresh(self, new_steps: Sequence[Sequence[Step]], new_highlights: Sequence[Highlight] = ()) -> None:
        """Queue replacement step lists (one per area, by area index).

        Nothing changes now; each area picks up its list the next time its
        index wraps to 0. An empty list for an area keeps its current steps.
        """
        with self._lock:
            self._generation += 1
            self._pending = PendingRefresh(
                steps=[list(s or []) for s in new_steps],
                highlights=list(new_highlights),
                generation=self._generation,
            )

    # --- Accessors ---
    def is_playing(self) -> bool:
        return self._playing

    def get_bpm(self) -> float:
        return self._bpm

    def get_speed_multiplier(self) -> float:
        return self._speed

    def get_effective_bpm(self) -> int:
        # Half-up rounding, not banker's
        return int(math.floor(self._bpm * self._speed + 0.5))

    def step_duration_ms(self) -> float:
        return step_duration_ms(self._bpm, self._speed)

    @property
    def pending_refresh(self) -> Optional[PendingRefresh]:
        return self._pending

    def indices(self) -> List[int]:
        with self._lock:
            return [tr.current_index() for tr in self._tracks]

    def track_steps(self, area_index: int) -> List[Step]:
        with self._lock:
            return self._tracks[area_index].steps

    def get_metrics(self) -> Dict[str, Any]:
        out: Dict[str, Any] = dict(self.metrics)
        ticker = self._ticker
        if ticker is not None and hasattr(ticker, "get_metrics"):
            out["clock"] = ticker.get_metrics()
        return out

    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "transport": "playing" if self._playing else "stopped",
                "bpm": self._bpm,
                "speed": self._speed,
                "effectiveBpm": self.get_effective_bpm(),
                "stepMs": round(self.step_duration_ms(), 3),
                "tick": self.tick,
                "areas": [
                    {"index": tr.current_index(), "length": len(tr.steps), "instrument": tr.area.instrument}
                    for tr in self._tracks
                ],
                "refreshPending": self._pending is not None,
            }

    # --- Tick loop ---
    def on_tick(self) -> None:
        """Advance every area by one step."""
        with self._lock:
            if not self._playing:
                return
            for area_index, track in enumerate(self._tracks):
                self._tick_area(area_index, track)
            self.tick += 1
            self.metrics["ticks"] += 1

    def _tick_area(self, area_index: int, track: TrackState) -> None:
        n = len(track.steps)
        if n == 0:
            # An empty track sits at its wrap point permanently
            self._maybe_apply_refresh(area_index, track)
            return
        idx = track.index % n
        try:
            self._play_step(area_index, track, idx)
        except Exception as e:
            self.metrics["area_errors"] += 1
            print(f"[seq] area {area_index} step {idx} failed: {e!r}", flush=True)
        nxt = (idx + 1) % n
        if nxt == 0:
            self._maybe_apply_refresh(area_index, track)
        track.index = nxt

    def _play_step(self, area_index: int, track: TrackState, idx: int) -> None:
        step = track.steps[idx]
        check = track.area.validity_check or default_validity
        if not check(step):
            self.metrics["skipped"] += 1
            return
        self.sink.emit_step(StepEvent(area_index, idx, bool(step.redacted)))
        self.metrics["steps"] += 1
        if not step.redacted:
            return
        redacted_index = resolve_highlight(step, track.highlights)
        if redacted_index < 0:
            return
        self.sink.emit_trigger(TriggerEvent(area_index, redacted_index, 1.0, track.area.instrument))
        self.metrics["triggers"] += 1

    def _maybe_apply_refresh(self, area_index: int, track: TrackState) -> None:
        pending = self._pending
        if pending is None or track.refresh_generation == pending.generation:
            return
        fresh = pending.steps_for(area_index)
        if fresh:
            track.steps = fresh
            track.highlights = list(pending.highlights)
            self.metrics["refreshes_applied"] += 1
        track.refresh_generation = pending.generation
        pending.consumed += 1
        if pending.consumed >= len(self._tracks):
            self._pending = None

    # --- Timer management ---
    def _on_timer(self, token: object) -> None:
        with self._lock:
            # A replaced ticker may still be waiting on the lock; ignore it
            if token is not self._timer_token:
                return
            self.on_tick()

    def _start_ticker(self) -> None:
        token = object()
        self._timer_token = token
        self._ticker = self._ticker_factory(self.step_duration_ms(), lambda _fires: self._on_timer(token))
        self._ticker.start()

    def _cancel_ticker(self) -> None:
        ticker, self._ticker = self._ticker, None
        self._timer_token = None
        if ticker is not None:
            ticker.cancel()

    def _retime(self) -> None:
        # Replace the timer only; area indices keep their position
        if self._playing:
            self._cancel_ticker()
            self._start_ticker()
