import unittest

from discferret.protocol.wire import Command, Status
from discferret.device import *
from discferret.device.hardware import DiscFerretContext, FPGAState
from discferret.device.simulation import DiscFerretSimulationContext, DiscFerretSimulationDevice


def bit_reverse(data):
    return bytes(int(f"{byte:08b}"[::-1], 2) for byte in data)


class FPGALoadTestCase(unittest.TestCase):
    def setUp(self):
        self.sim = DiscFerretSimulationDevice(fpga_configured=False,
                                              microcode_type=0xDD55, microcode_ver=0x0021)
        self.context = DiscFerretContext(lambda: DiscFerretSimulationContext([self.sim]))
        self.context.init()
        self.addCleanup(self.context.done)
        self.device = self.context.open_first()
        self.addCleanup(self.device.close)
        self.bitstream = bytes((index * 37) & 0xff for index in range(130))

    def load_requests(self):
        return [request for request in self.sim.requests if request[0] == Command.FPGA_LOAD]

    def test_unconfigured_capabilities(self):
        self.assertFalse(self.device.capabilities.has_index_freq_sense)
        self.assertFalse(self.device.capabilities.has_track0_flag)

    def test_load(self):
        self.device.fpga_load_bitstream(self.bitstream)
        self.assertEqual(self.device.fpga_state, FPGAState.Configured)
        self.assertTrue(self.sim.fpga_configured)
        self.assertEqual(bytes(self.sim.bitstream), bit_reverse(self.bitstream))
        self.assertEqual([request[1] for request in self.load_requests()], [62, 62, 6])

    def test_load_refreshes_capabilities(self):
        self.device.fpga_load_bitstream(self.bitstream)
        self.assertEqual(self.device.version_info.microcode_ver, 0x0021)
        self.assertTrue(self.device.capabilities.has_index_freq_sense)
        self.assertTrue(self.device.capabilities.has_track0_flag)

    def test_load_exact_block(self):
        self.device.fpga_load_bitstream(self.bitstream[:62])
        self.assertEqual([request[1] for request in self.load_requests()], [62])

    def test_load_rejected_block(self):
        self.sim.fpga_reject_block = 1
        with self.assertRaisesRegex(DiscFerretHardwareError,
                                    r"FPGA_LOAD failed with status HARDWARE_ERROR"):
            self.device.fpga_load_bitstream(self.bitstream)
        self.assertEqual(self.device.fpga_state, FPGAState.Failed)
        self.assertEqual(len(self.load_requests()), 2)
        self.assertFalse(self.device.capabilities.has_track0_flag)

    def test_load_rejected_length(self):
        self.sim.fpga_reject_block = 0
        self.sim.fpga_reject_status = Status.INVALID_LEN
        with self.assertRaisesRegex(DiscFerretBadParameterError,
                                    r"FPGA_LOAD failed with status INVALID_LEN"):
            self.device.fpga_load_bitstream(self.bitstream)
        self.assertEqual(self.device.fpga_state, FPGAState.Failed)
        self.assertEqual(len(self.load_requests()), 1)

    def test_load_rejected_bitstream(self):
        self.sim.fpga_accepts_bitstream = False
        with self.assertRaisesRegex(DiscFerretFPGANotConfiguredError,
                                    r"FPGA rejected configuration"):
            self.device.fpga_load_bitstream(self.bitstream)
        self.assertEqual(self.device.fpga_state, FPGAState.Failed)

    def test_load_no_load_mode(self):
        self.sim.fpga_configured = True
        self.sim.fpga_enters_load_mode = False
        with self.assertRaisesRegex(DiscFerretHardwareError,
                                    r"did not enter configuration mode \(status OK\)"):
            self.device.fpga_load_bitstream(self.bitstream)
        self.assertEqual(self.load_requests(), [])
        self.assertEqual(self.device.fpga_state, FPGAState.Failed)

    def test_load_empty(self):
        count = len(self.sim.requests)
        with self.assertRaises(DiscFerretBadParameterError):
            self.device.fpga_load_bitstream(b"")
        with self.assertRaises(DiscFerretBadParameterError):
            self.device.fpga_load_bitstream(None)
        self.assertEqual(len(self.sim.requests), count)
        self.assertEqual(self.device.fpga_state, FPGAState.NotStarted)

    def test_manual_sequence(self):
        self.device.fpga_load_begin()
        self.assertEqual(self.device.fpga_state, FPGAState.LoadInProgress)
        self.assertEqual(self.device.fpga_get_status(), Status.FPGA_NOT_CONF)
        self.device.fpga_load_block(b"\x01\x80", swap=False)
        self.device.fpga_load_block(b"\x01\x80")
        self.assertEqual(self.device.fpga_get_status(), Status.OK)
        self.assertEqual(bytes(self.sim.bitstream), b"\x01\x80\x80\x01")

    def test_block_too_long(self):
        self.device.fpga_load_begin()
        with self.assertRaises(DiscFerretBadParameterError):
            self.device.fpga_load_block(bytes(63))
