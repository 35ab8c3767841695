import unittest

from discferret.protocol.wire import *
from discferret.device import *
from discferret.device.hardware import DiscFerretContext
from discferret.device.simulation import DiscFerretSimulationContext, DiscFerretSimulationDevice


def pattern(length):
    return bytes((index * 13 + (index >> 8)) & 0xff for index in range(length))


class RAMTestMixin:
    firmware_ver = None
    chunk_boundaries = ()

    def setUp(self):
        self.sim = DiscFerretSimulationDevice(firmware_ver=self.firmware_ver)
        self.context = DiscFerretContext(lambda: DiscFerretSimulationContext([self.sim]))
        self.context.init()
        self.addCleanup(self.context.done)
        self.device = self.context.open_first()
        self.addCleanup(self.device.close)

    def requests(self, command):
        return [request for request in self.sim.requests if request[0] == command]

    def test_addr(self):
        self.device.ram_addr_set(0x1234)
        self.assertEqual(self.device.ram_addr_get(), 0x1234)
        self.device.ram_write(bytes(10))
        self.assertEqual(self.device.ram_addr_get(), 0x123e)

    def test_addr_out_of_range(self):
        count = len(self.sim.requests)
        with self.assertRaises(DiscFerretBadParameterError):
            self.device.ram_addr_set(0x1000000)
        with self.assertRaises(DiscFerretBadParameterError):
            self.device.ram_addr_set(-1)
        self.assertEqual(len(self.sim.requests), count)

    def test_addr_beyond_ram(self):
        with self.assertRaisesRegex(DiscFerretBadParameterError, r"INVALID_PARAM"):
            self.device.ram_addr_set(len(self.sim.ram))

    def test_write_read(self):
        data = pattern(1000)
        self.device.ram_addr_set(0x100)
        self.device.ram_write(data)
        self.assertEqual(bytes(self.sim.ram[0x100:0x100 + 1000]), data)
        self.device.ram_addr_set(0x100)
        self.assertEqual(self.device.ram_read(1000), data)

    def test_chunk_boundary_round_trip(self):
        for length in self.chunk_boundaries:
            with self.subTest(length=length):
                data = pattern(length)[::-1]
                self.device.ram_addr_set(0x40)
                self.device.ram_write(data)
                self.device.ram_addr_set(0x40)
                self.assertEqual(self.device.ram_read(length), data)

    def test_reject_empty(self):
        count = len(self.sim.requests)
        with self.assertRaises(DiscFerretBadParameterError):
            self.device.ram_write(b"")
        with self.assertRaises(DiscFerretBadParameterError):
            self.device.ram_write(None)
        with self.assertRaises(DiscFerretBadParameterError):
            self.device.ram_read(0)
        with self.assertRaises(DiscFerretBadParameterError):
            self.device.ram_read(None)
        self.assertEqual(len(self.sim.requests), count)

    def test_unconfigured(self):
        self.sim.fpga_configured = False
        with self.assertRaises(DiscFerretFPGANotConfiguredError):
            self.device.ram_write(b"\x00")


class CompatRAMTestCase(RAMTestMixin, unittest.TestCase):
    firmware_ver = 0x001A
    chunk_boundaries = (60, 61, 62, 63, 64)

    def test_mode(self):
        self.assertFalse(self.device.capabilities.has_fast_ram_access)

    def test_write_chunking(self):
        for length, chunks in ((60, [60]), (61, [61]), (62, [61, 1])):
            with self.subTest(length=length):
                self.sim.requests.clear()
                self.device.ram_write(pattern(length))
                self.assertEqual([request[1] for request in self.requests(Command.RAM_WRITE)],
                                 chunks)

    def test_read_chunking(self):
        for length, chunks in ((62, [62]), (63, [63]), (64, [63, 1])):
            with self.subTest(length=length):
                self.sim.requests.clear()
                self.assertEqual(len(self.device.ram_read(length)), length)
                self.assertEqual([request[1] for request in self.requests(Command.RAM_READ)],
                                 chunks)

    def test_no_fast_commands(self):
        self.device.ram_write(pattern(200))
        self.device.ram_read(200)
        self.assertEqual(self.requests(Command.RAM_WRITE_FAST), [])
        self.assertEqual(self.requests(Command.RAM_READ_FAST), [])


class FastRAMTestCase(RAMTestMixin, unittest.TestCase):
    firmware_ver = 0x001B
    chunk_boundaries = (0xFFFF, 0x10000, 0x10001)

    def test_mode(self):
        self.assertTrue(self.device.capabilities.has_fast_ram_access)

    def chunk_lengths(self, command):
        return [int.from_bytes(request[1:3], byteorder="little") + 1
                for request in self.requests(command)]

    def test_write_chunking(self):
        for length, chunks in ((0xFFFF, [0xFFFF]), (0x10000, [0x10000]),
                               (0x10001, [0x10000, 1])):
            with self.subTest(length=length):
                self.sim.requests.clear()
                self.device.ram_addr_set(0)
                self.device.ram_write(pattern(length))
                self.assertEqual(self.chunk_lengths(Command.RAM_WRITE_FAST), chunks)

    def test_read_chunking(self):
        for length, chunks in ((0xFFFF, [0xFFFF]), (0x10000, [0x10000]),
                               (0x10001, [0x10000, 1])):
            with self.subTest(length=length):
                self.sim.requests.clear()
                self.device.ram_addr_set(0)
                self.assertEqual(len(self.device.ram_read(length)), length)
                self.assertEqual(self.chunk_lengths(Command.RAM_READ_FAST), chunks)

    def test_large_round_trip(self):
        data = pattern(0x18000)
        self.device.ram_addr_set(0)
        self.device.ram_write(data)
        self.device.ram_addr_set(0)
        self.assertEqual(self.device.ram_read(len(data)), data)
        self.assertEqual(self.device.ram_addr_get(), len(data))
