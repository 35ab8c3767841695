import unittest

try:
    import usb1
    from discferret.support.usb import libusb1
except (ImportError, OSError):
    usb1 = None

from discferret.support import usb


@unittest.skipIf(usb1 is None, "libusb1 is not available")
class LibUSB1TestCase(unittest.TestCase):
    def test_map_timeout(self):
        @libusb1._map_exceptions
        def transfer():
            raise usb1.USBErrorTimeout()
        with self.assertRaises(usb.ErrorTimeout):
            transfer()

    def test_map_stall(self):
        @libusb1._map_exceptions
        def transfer():
            raise usb1.USBErrorPipe()
        with self.assertRaises(usb.ErrorStall):
            transfer()

    def test_passthrough(self):
        @libusb1._map_exceptions
        def transfer():
            return b"\x00"
        self.assertEqual(transfer(), b"\x00")

    def test_timeout_ms(self):
        self.assertEqual(libusb1._timeout_ms(1.0), 1000)
        self.assertEqual(libusb1._timeout_ms(0.0), 1)
