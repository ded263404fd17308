from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple, Union

from redacted_dm.codec import NAMESPACE, step_message, trigger_message


# Fixed generator order; the round-robin fallback indexes into this.
INSTRUMENTS: Tuple[str, ...] = ("kick", "snare", "hihat", "openhat", "crash")

# General MIDI percussion keys (channel 10).
GM_DRUM_NOTES = {
    "kick": 36,
    "snare": 38,
    "hihat": 42,
    "openhat": 46,
    "crash": 49,
}


@dataclass(frozen=True)
class StepEvent:
    area_index: int
    step_index: int
    redacted: bool


@dataclass(frozen=True)
class TriggerEvent:
    area_index: int
    redacted_index: int
    velocity: float = 1.0
    instrument: Optional[str] = None


def pick_instrument(event: TriggerEvent, known=INSTRUMENTS) -> str:
    """Assigned instrument wins when known; otherwise round-robin by index."""
    if event.instrument and event.instrument in known:
        return event.instrument
    return INSTRUMENTS[(event.redacted_index + event.area_index) % len(INSTRUMENTS)]


class OutputSink:
    """Abstract sink interface used by the Dispatcher."""

    def emit_step(self, event: StepEvent) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def emit_trigger(self, event: TriggerEvent) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def close(self) -> None:
        pass


class VirtualSink(OutputSink):
    """A minimal sink capturing events for tests and demos."""

    def __init__(self) -> None:
        self.events: List[Union[StepEvent, TriggerEvent]] = []

    def emit_step(self, event: StepEvent) -> None:
        self.events.append(event)

    def emit_trigger(self, event: TriggerEvent) -> None:
        self.events.append(event)

    @property
    def steps(self) -> List[StepEvent]:
        return [e for e in self.events if isinstance(e, StepEvent)]

    @property
    def triggers(self) -> List[TriggerEvent]:
        return [e for e in self.events if isinstance(e, TriggerEvent)]


class RemoteSink(OutputSink):
    """Encodes events as control messages and hands them to a client.

    The client only needs `send(bytes) -> bool`; when it is not connected the
    message is dropped (no queue, no retry).
    """

    def __init__(self, client, namespace: str = NAMESPACE):
        self.client = client
        self.namespace = namespace
        self.dropped = 0

    def emit_step(self, event: StepEvent) -> None:
        self._send(step_message(event.area_index, event.step_index, event.redacted, self.namespace))

    def emit_trigger(self, event: TriggerEvent) -> None:
        self._send(trigger_message(event.area_index, event.redacted_index, event.velocity, self.namespace))

    def _send(self, payload: bytes) -> None:
        if not self.client.send(payload):
            self.dropped += 1

    def close(self) -> None:
        self.client.disconnect()


class MidiSink(OutputSink):
    """Plays triggers as General MIDI drum notes through a mido output port."""

    def __init__(self, out_port, channel: int = 9):
        self.out = out_port
        self.channel = int(channel)

    def emit_step(self, event: StepEvent) -> None:
        return

    def emit_trigger(self, event: TriggerEvent) -> None:
        import mido

        note = GM_DRUM_NOTES[pick_instrument(event, known=GM_DRUM_NOTES)]
        velocity = max(1, min(127, int(round(event.velocity * 127))))
        self.out.send(mido.Message("note_on", note=note, velocity=velocity, channel=self.channel))
        # Percussion on channel 10 ignores note length; off follows immediately
        self.out.send(mido.Message("note_off", note=note, velocity=0, channel=self.channel))

    def close(self) -> None:
        import mido

        self.out.send(mido.Message("control_change", control=123, value=0, channel=self.channel))


def open_mido_output(name_filter: Optional[str] = None):
    """Open a Mido output port with safe fallbacks.

    If the system MIDI stack is inaccessible or the requested port is missing,
    return a dummy object exposing `.send()` rather than crashing headless runs.
    """

    class _DummyOut:
        def send(self, *_args, **_kwargs):
            pass

    import mido

    try:
        names = mido.get_output_names()
    except Exception as e:
        print(f"[midi] no MIDI backend available ({e}); output is silent", flush=True)
        return _DummyOut()
    if name_filter:
        names = [n for n in names if name_filter in n]
    if not names:
        print(f"[midi] no output port matching {name_filter!r}; output is silent", flush=True)
        return _DummyOut()
    try:
        return mido.open_output(names[0])
    except Exception as e:
        print(f"[midi] could not open {names[0]!r}: {e}; output is silent", flush=True)
        return _DummyOut()
