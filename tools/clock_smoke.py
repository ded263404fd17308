from __future__ import annotations

import argparse
import statistics
import threading
import time

from redacted_dm.clock import Ticker
from redacted_dm.sequencer import step_duration_ms


def run(bpm: float, speed: float, seconds: float) -> None:
    interval_ms = step_duration_ms(bpm, speed)
    stamps = []
    done = threading.Event()

    def on_tick(_fires: int) -> None:
        stamps.append(time.monotonic())

    ticker = Ticker(interval_ms, on_tick)
    ticker.start()
    done.wait(seconds)
    ticker.cancel(wait=True)

    deltas = [(b - a) * 1000.0 - interval_ms for a, b in zip(stamps, stamps[1:])]
    jit = [abs(d) for d in deltas]
    avg = statistics.mean(jit) if jit else 0.0
    m = ticker.get_metrics()
    print(f"bpm={bpm} speed={speed} seconds={seconds} ticks={len(stamps)}")
    print(f"step interval target={interval_ms:.3f}ms avg_jitter={avg:.3f}ms p95={m['jitterMsP95']:.3f}ms p99={m['jitterMsP99']:.3f}ms")


def main():
    ap = argparse.ArgumentParser(description="Sequencer ticker jitter smoke test (sixteenth notes)")
    ap.add_argument("--bpm", type=float, default=120.0)
    ap.add_argument("--speed", type=float, default=1.0)
    ap.add_argument("--seconds", type=float, default=5.0)
    args = ap.parse_args()
    run(args.bpm, args.speed, args.seconds)


if __name__ == "__main__":
    main()
