import unittest

from redacted_dm.codec import decode
from redacted_dm.sinks import (
    INSTRUMENTS,
    MidiSink,
    RemoteSink,
    StepEvent,
    TriggerEvent,
    pick_instrument,
)


class FakeClient:
    def __init__(self, connected=True):
        self.connected = connected
        self.sent = []
        self.disconnected = False

    def send(self, payload):
        if not self.connected:
            return False
        self.sent.append(payload)
        return True

    def disconnect(self):
        self.disconnected = True


class FakePort:
    def __init__(self):
        self.messages = []

    def send(self, msg):
        self.messages.append(msg)


class TestInstrumentChoice(unittest.TestCase):
    def test_assigned_instrument_wins(self):
        self.assertEqual(pick_instrument(TriggerEvent(3, 9, 1.0, "crash")), "crash")

    def test_round_robin_fallback(self):
        for area in range(3):
            for red in range(6):
                ev = TriggerEvent(area, red, 1.0, None)
                self.assertEqual(pick_instrument(ev), INSTRUMENTS[(red + area) % 5])

    def test_unknown_assignment_falls_back(self):
        self.assertEqual(pick_instrument(TriggerEvent(1, 1, 1.0, "cowbell")), "hihat")


class TestRemoteSink(unittest.TestCase):
    def test_encodes_both_event_kinds(self):
        client = FakeClient()
        sink = RemoteSink(client)
        sink.emit_step(StepEvent(1, 4, True))
        sink.emit_trigger(TriggerEvent(1, 2, 1.0, "kick"))
        step, trig = [decode(p) for p in client.sent]
        self.assertEqual((step.address, step.args), ("/redacted-dm/step", (1, 4, 1)))
        self.assertEqual((trig.address, trig.type_tags, trig.args), ("/redacted-dm/trigger", ",iif", (1, 2, 1.0)))

    def test_drops_when_disconnected(self):
        client = FakeClient(connected=False)
        sink = RemoteSink(client)
        sink.emit_step(StepEvent(0, 0, False))
        sink.emit_trigger(TriggerEvent(0, 0))
        self.assertEqual(client.sent, [])
        self.assertEqual(sink.dropped, 2)

    def test_custom_namespace(self):
        client = FakeClient()
        RemoteSink(client, namespace="/dm2").emit_step(StepEvent(0, 1, False))
        self.assertEqual(decode(client.sent[0]).address, "/dm2/step")

    def test_close_disconnects(self):
        client = FakeClient()
        RemoteSink(client).close()
        self.assertTrue(client.disconnected)


class TestMidiSink(unittest.TestCase):
    def test_trigger_plays_gm_drum_note(self):
        port = FakePort()
        sink = MidiSink(port)
        sink.emit_step(StepEvent(0, 0, True))
        sink.emit_trigger(TriggerEvent(0, 1, 1.0, None))
        on, off = port.messages
        self.assertEqual((on.type, on.note, on.velocity, on.channel), ("note_on", 38, 127, 9))
        self.assertEqual((off.type, off.note), ("note_off", 38))

    def test_assigned_instrument_and_velocity(self):
        port = FakePort()
        MidiSink(port, channel=3).emit_trigger(TriggerEvent(0, 0, 0.5, "openhat"))
        on = port.messages[0]
        self.assertEqual((on.note, on.velocity, on.channel), (46, 64, 3))


if __name__ == "__main__":
    unittest.main()
