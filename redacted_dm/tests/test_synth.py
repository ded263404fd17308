import unittest

import numpy as np

from redacted_dm.sinks import StepEvent, TriggerEvent
from redacted_dm.synth import (
    GENERATORS,
    SAMPLE_RATE,
    VOICE_LENGTH_S,
    LocalSynthSink,
    Voice,
    VoiceMixer,
    render_voice,
)


class TestRenderVoice(unittest.TestCase):
    def test_every_generator_renders_bounded_buffer(self):
        for name, voice in GENERATORS.items():
            buf = render_voice(voice)
            self.assertEqual(buf.dtype, np.float32, name)
            self.assertEqual(buf.shape, (int(SAMPLE_RATE * VOICE_LENGTH_S),), name)
            self.assertLessEqual(float(np.max(np.abs(buf))), voice.start_gain + 1e-6, name)
            self.assertEqual(float(buf[-1]), 0.0, name)

    def test_envelope_decays(self):
        buf = render_voice(GENERATORS["kick"])
        head = np.max(np.abs(buf[:2000]))
        tail = np.max(np.abs(buf[-4000:]))
        self.assertGreater(head, 10 * tail)

    def test_unknown_waveform_rejected(self):
        bad = Voice("noise", 1.0, 1.0, 0.1, 1.0, 0.1)
        with self.assertRaises(ValueError):
            render_voice(bad)


class TestVoiceMixer(unittest.TestCase):
    def test_overlapping_voices_sum(self):
        mixer = VoiceMixer()
        one = np.full(8, 0.25, dtype=np.float32)
        mixer.add("a", one)
        mixer.add("b", one)
        out = mixer.mix(4)
        np.testing.assert_allclose(out, np.full(4, 0.5))
        self.assertEqual(len(mixer.active), 2)
        mixer.mix(4)
        self.assertEqual(mixer.active, [])

    def test_oldest_voice_stolen(self):
        mixer = VoiceMixer(max_voices=2)
        for name in ("a", "b", "c"):
            mixer.add(name, np.zeros(4, dtype=np.float32))
        self.assertEqual([v.name for v in mixer.active], ["b", "c"])

    def test_output_clipped(self):
        mixer = VoiceMixer()
        for _ in range(4):
            mixer.add("x", np.ones(2, dtype=np.float32))
        self.assertEqual(float(np.max(mixer.mix(2))), 1.0)


class TestLocalSynthSink(unittest.TestCase):
    def test_steps_are_silent(self):
        sink = LocalSynthSink()
        sink.emit_step(StepEvent(0, 0, True))
        self.assertEqual(sink.mixer.active, [])

    def test_trigger_selects_generator(self):
        sink = LocalSynthSink()
        sink.emit_trigger(TriggerEvent(0, 0, 1.0, "crash"))
        sink.emit_trigger(TriggerEvent(1, 1, 1.0, None))
        sink.emit_trigger(TriggerEvent(2, 4, 1.0, "bogus"))
        self.assertEqual([v.name for v in sink.mixer.active], ["crash", "hihat", "snare"])

    def test_retrigger_is_polyphonic(self):
        sink = LocalSynthSink()
        for _ in range(3):
            sink.emit_trigger(TriggerEvent(0, 0, 1.0, "kick"))
        self.assertEqual(len(sink.mixer.active), 3)

    def test_callback_fills_output(self):
        sink = LocalSynthSink()
        sink.emit_trigger(TriggerEvent(0, 0, 1.0, "kick"))
        out = np.zeros((256, 1), dtype=np.float32)
        sink._callback(out, 256, None, None)
        self.assertGreater(float(np.max(np.abs(out))), 0.0)

    def test_close_without_stream(self):
        LocalSynthSink().close()


if __name__ == "__main__":
    unittest.main()
