import time
import types
import unittest
from unittest import mock

from miditimer.transport import LoopbackTransport, TransportUnavailable, VirtualTransport


class TestVirtualTransport(unittest.TestCase):
    def test_inject_respects_subscription_and_kinds(self):
        t = VirtualTransport()
        got = []
        t.inject("on", 60, 100)
        t.subscribe(got.append, kinds=("off",))
        t.inject("on", 60, 100)
        t.inject("off", 60, timestamp=2.5)
        self.assertEqual([(e.kind, e.key, e.velocity, e.timestamp) for e in got], [("off", 60, 0, 2.5)])
        t.unsubscribe()
        t.inject("off", 61)
        self.assertEqual(len(got), 1)


class TestLoopbackTransport(unittest.TestCase):
    def test_echoes_after_latency(self):
        t = LoopbackTransport(latency=0.01)
        got = []
        t.subscribe(got.append)
        sent_at = time.monotonic()
        t.send(0x90, 60, 100)
        t.send(0x80, 60, 0)
        deadline = time.monotonic() + 2.0
        while len(got) < 2 and time.monotonic() < deadline:
            time.sleep(0.002)
        t.close()
        self.assertEqual([(e.kind, e.key, e.velocity) for e in got], [("on", 60, 100), ("off", 60, 0)])
        self.assertGreaterEqual(got[0].timestamp - sent_at, 0.01)
        self.assertEqual(t.echoed, 2)


class TestMidoTransport(unittest.TestCase):
    def _fake_mido(self, outs, ins):
        fake = mock.Mock()
        fake.get_output_names.return_value = outs
        fake.get_input_names.return_value = ins
        return fake

    def test_missing_output_is_fatal(self):
        fake = self._fake_mido([], ["Loop In"])
        with mock.patch.dict("sys.modules", {"mido": fake}):
            from miditimer.transport import open_transport

            with self.assertRaises(TransportUnavailable):
                open_transport()
        fake.open_output.assert_not_called()

    def test_filter_without_match_is_fatal(self):
        fake = self._fake_mido(["IAC Bus 1"], ["IAC Bus 1"])
        with mock.patch.dict("sys.modules", {"mido": fake}):
            from miditimer.transport import open_transport

            with self.assertRaises(TransportUnavailable):
                open_transport(in_filter="OP-XY")

    def test_backend_error_is_unavailable(self):
        fake = mock.Mock()
        fake.get_output_names.side_effect = OSError("no backend")
        with mock.patch.dict("sys.modules", {"mido": fake}):
            from miditimer.transport import open_transport

            with self.assertRaises(TransportUnavailable):
                open_transport()

    def test_send_and_subscribe(self):
        fake = self._fake_mido(["Synth", "Loop Out"], ["Loop In"])
        with mock.patch.dict("sys.modules", {"mido": fake}):
            from miditimer.transport import open_transport

            t = open_transport(out_filter="Loop", clock=lambda: 7.0)
            fake.open_output.assert_called_once_with("Loop Out")
            t.send(0x90, 60, 100)
            fake.Message.from_bytes.assert_called_once_with([0x90, 60, 100])
            fake.open_output.return_value.send.assert_called_once_with(fake.Message.from_bytes.return_value)

            got = []
            t.subscribe(got.append)
            args, kwargs = fake.open_input.call_args
            self.assertEqual(args, ("Loop In",))
            on_input = kwargs["callback"]
            on_input(types.SimpleNamespace(type="note_off", note=60, velocity=64))
            on_input(types.SimpleNamespace(type="control_change", control=1, value=3))
            on_input(types.SimpleNamespace(type="note_on", note=61, velocity=90))
            self.assertEqual([(e.kind, e.key, e.velocity, e.timestamp) for e in got], [("off", 60, 0, 7.0), ("on", 61, 90, 7.0)])

            t.close()
            fake.open_input.return_value.close.assert_called_once()
            self.assertIsNone(t.inp)


if __name__ == "__main__":
    unittest.main()
