from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from redacted_dm.sinks import OutputSink, StepEvent, TriggerEvent, pick_instrument


SAMPLE_RATE = 44100
VOICE_LENGTH_S = 0.5
MAX_VOICES = 32
GAIN_FLOOR = 0.01


@dataclass(frozen=True)
class Voice:
    """Envelope shape for one drum generator.

    Frequency ramps exponentially from start_freq to end_freq over ramp_time;
    gain falls exponentially from start_gain to GAIN_FLOOR over release_time.
    """

    waveform: str
    start_freq: float
    end_freq: float
    ramp_time: float
    start_gain: float
    release_time: float


GENERATORS: Dict[str, Voice] = {
    "kick": Voice("sine", 60.0, 30.0, 0.1, 1.0, 0.3),
    "snare": Voice("triangle", 200.0, 50.0, 0.1, 0.7, 0.2),
    "hihat": Voice("square", 8000.0, 1000.0, 0.05, 0.3, 0.1),
    "openhat": Voice("square", 10000.0, 2000.0, 0.15, 0.4, 0.2),
    "crash": Voice("sawtooth", 12000.0, 3000.0, 0.3, 0.5, 0.4),
}


def _exp_ramp(start: float, end: float, t: np.ndarray, duration: float) -> np.ndarray:
    frac = np.clip(t / duration, 0.0, 1.0) if duration > 0 else np.ones_like(t)
    return start * (end / start) ** frac


def _wave(kind: str, phase: np.ndarray) -> np.ndarray:
    if kind == "sine":
        return np.sin(phase)
    if kind == "triangle":
        return (2.0 / np.pi) * np.arcsin(np.sin(phase))
    if kind == "square":
        return np.sign(np.sin(phase))
    if kind == "sawtooth":
        return 2.0 * np.mod(phase / (2.0 * np.pi), 1.0) - 1.0
    raise ValueError(f"unknown waveform {kind!r}")


def render_voice(voice: Voice, sample_rate: int = SAMPLE_RATE, length_s: float = VOICE_LENGTH_S) -> np.ndarray:
    """Render one hit as a mono float32 buffer."""
    n = int(sample_rate * length_s)
    t = np.arange(n, dtype=np.float64) / sample_rate
    freq = _exp_ramp(voice.start_freq, voice.end_freq, t, voice.ramp_time)
    phase = 2.0 * np.pi * np.cumsum(freq) / sample_rate
    gain = _exp_ramp(voice.start_gain, GAIN_FLOOR, t, voice.release_time)
    # 5 ms fade so the cut at length_s does not click
    fade = min(n, int(sample_rate * 0.005))
    if fade > 0:
        gain[-fade:] *= np.linspace(1.0, 0.0, fade)
    return (_wave(voice.waveform, phase) * gain).astype(np.float32)


@dataclass
class PlayingVoice:
    name: str
    buffer: np.ndarray
    pos: int = 0


class VoiceMixer:
    """Polyphonic one-shot mixer pulled by the audio callback."""

    def __init__(self, max_voices: int = MAX_VOICES) -> None:
        self.max_voices = int(max_voices)
        self.active: List[PlayingVoice] = []
        self._lock = threading.Lock()

    def add(self, name: str, buffer: np.ndarray) -> None:
        with self._lock:
            self.active.append(PlayingVoice(name, buffer))
            if len(self.active) > self.max_voices:
                # Steal the oldest voice
                self.active.pop(0)

    def mix(self, frames: int) -> np.ndarray:
        out = np.zeros(frames, dtype=np.float32)
        with self._lock:
            for v in list(self.active):
                n = min(frames, v.buffer.shape[0] - v.pos)
                if n > 0:
                    out[:n] += v.buffer[v.pos:v.pos + n]
                    v.pos += n
                if v.pos >= v.buffer.shape[0]:
                    self.active.remove(v)
        return np.clip(out, -1.0, 1.0)


def open_audio_stream(sample_rate: int, blocksize: int, callback):
    """Open a sounddevice output stream, or None when no audio device is usable."""
    try:
        import sounddevice as sd

        stream = sd.OutputStream(
            samplerate=sample_rate,
            blocksize=blocksize,
            channels=1,
            dtype="float32",
            callback=callback,
        )
        stream.start()
        return stream
    except Exception as e:
        print(f"[synth] audio output unavailable: {e}", flush=True)
        return None


class LocalSynthSink(OutputSink):
    """Plays triggers through built-in drum generators; plain steps are silent."""

    def __init__(self, sample_rate: int = SAMPLE_RATE, blocksize: int = 256, max_voices: int = MAX_VOICES):
        self.sample_rate = int(sample_rate)
        self.blocksize = int(blocksize)
        self.mixer = VoiceMixer(max_voices)
        self.stream = None
        self._buffers = {name: render_voice(v, self.sample_rate) for name, v in GENERATORS.items()}

    def start(self) -> bool:
        if self.stream is None:
            self.stream = open_audio_stream(self.sample_rate, self.blocksize, self._callback)
        return self.stream is not None

    def emit_step(self, event: StepEvent) -> None:
        return

    def emit_trigger(self, event: TriggerEvent) -> None:
        name = pick_instrument(event, known=GENERATORS)
        buf = self._buffers[name]
        vel = float(max(0.0, min(1.0, event.velocity)))
        self.mixer.add(name, buf if vel == 1.0 else buf * np.float32(vel))

    def _callback(self, outdata, frames, time_info, status) -> None:
        outdata[:, 0] = self.mixer.mix(frames)

    def close(self) -> None:
        stream, self.stream = self.stream, None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as e:
                print(f"[synth] error closing stream: {e}", flush=True)
