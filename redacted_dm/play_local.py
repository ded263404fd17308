from __future__ import annotations

import argparse
import os
import signal
import sys
import threading
import time
from typing import Optional

from redacted_dm.osc_client import OscClient
from redacted_dm.piece import load_piece
from redacted_dm.sequencer import ConfigurationError, Dispatcher
from redacted_dm.sinks import MidiSink, OutputSink, RemoteSink, open_mido_output
from redacted_dm.synth import LocalSynthSink


def make_sink(output: str, host: str = "127.0.0.1", port: int = 8080, midi_port: Optional[str] = None) -> OutputSink:
    if output == "midi":
        return MidiSink(open_mido_output(midi_port))
    if output == "remote":
        client = OscClient()
        # A failed connect is reported by the client; sends are dropped until it connects
        client.connect(host, port)
        return RemoteSink(client)
    sink = LocalSynthSink()
    sink.start()
    return sink


def format_metrics(dispatcher: Dispatcher) -> str:
    state = dispatcher.get_state()
    stats = dispatcher.get_metrics()
    positions = " ".join(f"{a['index']}/{a['length']}" for a in state["areas"])
    return (
        f"[metrics] {state['transport']} bpm={state['effectiveBpm']} tick={state['tick']} areas=[{positions}] "
        f"steps={stats['steps']} triggers={stats['triggers']} skipped={stats['skipped']} "
        f"errors={stats['area_errors']}{' refresh-pending' if state['refreshPending'] else ''}"
    )


def _mtime(path: str) -> Optional[float]:
    try:
        return os.path.getmtime(path)
    except OSError:
        return None


def run(
    path: str,
    sink: OutputSink,
    bpm: Optional[float] = None,
    speed: Optional[float] = None,
    ticks: Optional[int] = None,
    print_metrics: bool = False,
    poll_s: float = 0.5,
) -> Dispatcher:
    """Play a piece until interrupted (or for `ticks` ticks), reloading it on edit."""
    piece = load_piece(path)
    dispatcher = Dispatcher(
        sink,
        bpm=bpm if bpm is not None else piece.bpm,
        speed=speed if speed is not None else piece.speed,
    )
    done = threading.Event()

    def shutdown(*_):
        done.set()

    previous = {}
    if threading.current_thread() is threading.main_thread():
        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, shutdown)

    last_mtime = _mtime(path)
    try:
        dispatcher.play(piece.areas, piece.highlights)
        print(f"[seq] playing {path}: {len(piece.areas)} areas at {dispatcher.get_effective_bpm()} bpm", flush=True)
        last_poll = time.monotonic()
        last_metrics = last_poll
        while not done.wait(0.02):
            if ticks is not None and dispatcher.tick >= ticks:
                break
            now = time.monotonic()
            if now - last_poll >= poll_s:
                last_poll = now
                m = _mtime(path)
                if m is not None and m != last_mtime:
                    last_mtime = m
                    try:
                        fresh = load_piece(path)
                    except (ConfigurationError, ValueError, OSError) as e:
                        print(f"[piece] reload skipped: {e}", flush=True)
                    else:
                        dispatcher.schedule_refresh(fresh.step_lists(), fresh.highlights)
                        print("[piece] edit queued; areas pick it up at their next cycle", flush=True)
            if print_metrics and now - last_metrics >= 1.0:
                last_metrics = now
                print(format_metrics(dispatcher), flush=True)
    finally:
        dispatcher.stop()
        sink.close()
        for sig, handler in previous.items():
            signal.signal(sig, handler)
    return dispatcher


def main(argv=None):
    ap = argparse.ArgumentParser(description="Play a redacted-dm piece through the local synth, MIDI, or a relay")
    ap.add_argument("piece", nargs="?", default="piece.json", help="Path to piece JSON (default: piece.json)")
    ap.add_argument("--output", choices=["synth", "midi", "remote"], default="synth")
    ap.add_argument("--host", default="127.0.0.1", help="Relay host (remote output)")
    ap.add_argument("--port", type=int, default=int(os.environ.get("WS_PORT", 8080)), help="Relay port (remote output)")
    ap.add_argument("--midi-port", help="Substring to match MIDI output port (midi output)")
    ap.add_argument("--bpm", type=float, help="Override the piece tempo (20..300)")
    ap.add_argument("--speed", type=float, help="Override the speed multiplier")
    ap.add_argument("--ticks", type=int, default=0, help="Stop after this many ticks. 0 = run until interrupted")
    ap.add_argument("--metrics", action="store_true", help="Print sequencer counters once per second")
    args = ap.parse_args(argv)

    sink = make_sink(args.output, args.host, args.port, args.midi_port)
    try:
        run(
            args.piece,
            sink,
            bpm=args.bpm,
            speed=args.speed,
            ticks=(args.ticks if args.ticks > 0 else None),
            print_metrics=bool(args.metrics),
        )
    except (ValueError, OSError) as e:
        # ValueError covers bad JSON and invalid pieces; OSError unreadable files
        sink.close()
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
