import unittest

from discferret.support import usb
from discferret.protocol.wire import Command
from discferret.device import *
from discferret.device.registers import *
from discferret.device.hardware import DiscFerretContext, SeekResult
from discferret.device.simulation import DiscFerretSimulationContext, DiscFerretSimulationDevice


class SeekTestMixin:
    microcode_ver = None

    def setUp(self):
        self.sim = DiscFerretSimulationDevice(microcode_ver=self.microcode_ver,
                                              head_track=5, max_track=250)
        self.context = DiscFerretContext(lambda: DiscFerretSimulationContext([self.sim]))
        self.context.init()
        self.addCleanup(self.context.done)
        self.device = self.context.open_first()
        self.addCleanup(self.device.close)

    def step_commands(self):
        return [request[3] for request in self.sim.requests
                if request[:3] == bytes([Command.FPGA_POKE, 0x00, R_STEP_CMD])]

    def test_recalibrate(self):
        self.device.recalibrate(100)
        self.assertEqual(self.device.current_track, 0)
        self.assertEqual(self.sim.head_track, 0)

    def test_recalibrate_bursts(self):
        self.sim.head_track = 200
        self.device.recalibrate(200)
        self.assertEqual(self.device.current_track, 0)
        self.assertEqual(self.step_commands(), [0xff, 0x80 | 71])

    def test_recalibrate_budget_exhausted(self):
        with self.assertRaises(DiscFerretRecalibrationError):
            self.device.recalibrate(1)
        self.assertIsNone(self.device.current_track)
        self.assertEqual(self.sim.head_track, 4)
        self.assertEqual(self.step_commands(), [0x80])

    def test_recalibrate_failure_forgets_track(self):
        self.device.recalibrate(100)
        self.sim.head_track = 50
        with self.assertRaises(DiscFerretRecalibrationError):
            self.device.recalibrate(10)
        self.assertIsNone(self.device.current_track)

    def test_recalibrate_bad_budget(self):
        with self.assertRaises(DiscFerretBadParameterError):
            self.device.recalibrate(0)
        self.assertEqual(self.step_commands(), [])

    def test_seek_relative_zero(self):
        with self.assertRaises(DiscFerretBadParameterError):
            self.device.seek_relative(0)

    def test_seek_absolute_unknown(self):
        count = len(self.sim.requests)
        with self.assertRaises(DiscFerretTrackUnknownError):
            self.device.seek_absolute(10)
        self.assertEqual(len(self.sim.requests), count)

    def test_seek_absolute(self):
        self.device.recalibrate(100)
        self.assertEqual(self.device.seek_absolute(10), SeekResult.Complete)
        self.assertEqual(self.device.current_track, 10)
        self.assertEqual(self.sim.head_track, 10)
        self.assertEqual(self.device.seek_absolute(7), SeekResult.Complete)
        self.assertEqual(self.device.current_track, 7)
        self.assertEqual(self.sim.head_track, 7)
        self.assertEqual(self.step_commands()[-2:], [0x09, 0x82])

    def test_seek_absolute_same_track(self):
        self.device.recalibrate(100)
        count = len(self.sim.requests)
        with self.assertRaises(DiscFerretBadParameterError):
            self.device.seek_absolute(0)
        self.assertEqual(len(self.sim.requests), count)
        self.assertEqual(self.device.current_track, 0)

    def test_seek_absolute_negative_unknown(self):
        count = len(self.sim.requests)
        with self.assertRaises(DiscFerretTrackUnknownError):
            self.device.seek_absolute(-1)
        self.assertEqual(len(self.sim.requests), count)

    def test_seek_absolute_negative(self):
        self.device.recalibrate(100)
        with self.assertRaises(DiscFerretBadParameterError):
            self.device.seek_absolute(-1)

    def test_seek_relative(self):
        self.device.recalibrate(100)
        self.assertEqual(self.device.seek_relative(130), SeekResult.Complete)
        self.assertEqual(self.device.current_track, 130)
        self.assertEqual(self.sim.head_track, 130)
        self.assertEqual(self.step_commands()[-2:], [0x7f, 0x01])

    def test_seek_relative_to_track0(self):
        self.device.recalibrate(100)
        self.device.seek_relative(7)
        self.assertEqual(self.device.seek_relative(-20), SeekResult.Track0Reached)
        self.assertEqual(self.device.current_track, 0)
        self.assertEqual(self.sim.head_track, 0)

    def test_seek_relative_from_unknown(self):
        self.assertEqual(self.device.seek_relative(3), SeekResult.TrackUnknown)
        self.assertIsNone(self.device.current_track)
        self.assertEqual(self.sim.head_track, 8)

    def test_seek_relative_from_unknown_to_track0(self):
        self.assertEqual(self.device.seek_relative(-10), SeekResult.Track0Reached)
        self.assertEqual(self.device.current_track, 0)

    def test_seek_relative_below_zero(self):
        self.device.recalibrate(100)
        self.device.seek_relative(2)
        # head is physically further out than the session believes
        self.sim.head_track = 10
        with self.assertLogs("discferret.device.hardware", level="WARNING"):
            self.assertEqual(self.device.seek_relative(-5), SeekResult.TrackUnknown)
        self.assertIsNone(self.device.current_track)
        self.assertEqual(self.sim.head_track, 5)

    def test_seek_error_forgets_track(self):
        self.device.recalibrate(100)
        self.sim.transfer_error = usb.ErrorStall()
        with self.assertRaises(DiscFerretTransportError):
            self.device.seek_relative(5)
        self.assertIsNone(self.device.current_track)

    def test_slow_stepping(self):
        self.sim.stepping_polls = 5
        self.device.recalibrate(100)
        self.assertEqual(self.device.current_track, 0)

    def test_set_rate(self):
        self.device.seek_set_rate(3000)
        self.assertEqual(self.device.peek(R_STEP_RATE), 12)
        self.device.seek_set_rate(STEP_RATE_MAX_US)
        self.assertEqual(self.device.peek(R_STEP_RATE), 0xff)
        self.device.seek_set_rate(0)
        self.assertEqual(self.device.peek(R_STEP_RATE), 0)

    def test_set_rate_out_of_range(self):
        with self.assertRaises(DiscFerretBadParameterError):
            self.device.seek_set_rate(STEP_RATE_MAX_US + 1)
        with self.assertRaises(DiscFerretBadParameterError):
            self.device.seek_set_rate(-1)


class Track0FlagSeekTestCase(SeekTestMixin, unittest.TestCase):
    microcode_ver = 0x0021

    def test_recalibrate_stops_at_track0(self):
        self.device.recalibrate(100)
        self.assertEqual(self.sim.steps_issued, 5)


class Track0PinSeekTestCase(SeekTestMixin, unittest.TestCase):
    microcode_ver = 0x0020

    def test_recalibrate_issues_whole_burst(self):
        self.device.recalibrate(100)
        self.assertEqual(self.sim.steps_issued, 100)
