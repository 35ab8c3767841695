import struct
import logging
import collections
from typing import Optional

from ..support.logging import dump_hex
from ..support import usb
from ..protocol.wire import *
from .registers import *
from .capabilities import resolve_capabilities
from .hardware import VID_DISCFERRET, PID_DISCFERRET, EP_OUT, EP_IN


__all__ = ["DiscFerretSimulationContext", "DiscFerretSimulationDevice"]


logger = logging.getLogger(__name__)


class DiscFerretSimulationContext(usb.AbstractContext):
    def __init__(self, devices=()):
        self.devices = list(devices)
        self.closed  = False

    def get_devices(self) -> list["DiscFerretSimulationDevice"]:
        if self.closed:
            raise usb.ErrorNotOpen()
        return list(self.devices)

    def close(self):
        self.closed = True


class DiscFerretSimulationDevice(usb.AbstractDevice):
    """
    A behavioural model of a DiscFerret, at the level of its USB command set.

    The model covers the firmware (version query, FPGA configuration, register access and
    acquisition RAM with its auto-incrementing address pointer) and the parts of the microcode
    the library depends on: the stepping controller with its track 0 pin and flag, and the
    index period counter. Microcode features follow the reported microcode version.

    Besides the constructor arguments, a few attributes control fault injection:

    :ivar bool busy:
        Claiming the interface fails, as if another process owned the device.
    :ivar bool fpga_enters_load_mode:
        If false, the FPGA stays configured after FPGA_INIT.
    :ivar fpga_reject_block:
        Index of the FPGA_LOAD block that is answered with ``fpga_reject_status``, or ``None``.
    :ivar fpga_reject_status:
        Status returned for the rejected block; HARDWARE_ERROR by default.
    :ivar bool fpga_accepts_bitstream:
        If false, the FPGA never leaves configuration mode after a load.
    :ivar int stepping_polls:
        Number of status reads for which the stepping flag stays set after a step command.
    :ivar int index_polls:
        Number of status reads before a new index period measurement is flagged.
    :ivar transfer_error:
        A :class:`usb.Error` raised by the next bulk transfer, or ``None``.
    :ivar string_error:
        A :class:`usb.Error` raised by every string descriptor read, or ``None``.
    """

    def __init__(self, *, serial_number: Optional[str] = "DF000001",
                 product_name: Optional[str] = "DiscFerret",
                 manufacturer_name: Optional[str] = "Red Fox Engineering",
                 location="001/001", hardware_rev="TDB1", firmware_ver=0x001B,
                 microcode_type=0xDD55, microcode_ver=0x0021, fpga_configured=True,
                 ram_size=512 * 1024, head_track=0, max_track=83, index_count=20000,
                 index_polls=0):
        self._serial_number     = serial_number
        self._product_name      = product_name
        self._manufacturer_name = manufacturer_name
        self._location          = location

        self.hardware_rev   = hardware_rev
        self.firmware_ver   = firmware_ver
        self.microcode_type = microcode_type
        self.microcode_ver  = microcode_ver

        self.is_open   = False
        self.claimed   = False
        self.busy      = False
        self.was_reset  = False

        self.fpga_configured        = fpga_configured
        self.fpga_loading           = False
        self.fpga_enters_load_mode  = True
        self.fpga_reject_block      = None
        self.fpga_reject_status     = Status.HARDWARE_ERROR
        self.fpga_accepts_bitstream = True
        self.bitstream              = bytearray()
        self._fpga_blocks           = 0

        self.registers   = {}
        self.ram         = bytearray(ram_size)
        self.ram_pointer = 0

        self.head_track      = head_track
        self.max_track       = max_track
        self.steps_issued    = 0
        self.stepping_polls  = 1
        self._stepping_left  = 0
        self._track0_hit     = False

        self.index_count     = index_count
        self.index_polls     = index_polls
        self._index_left     = index_polls
        self._index_latch    = 0

        self.transfer_error  = None
        self.string_error    = None
        self.requests        = []
        self._responses      = collections.deque()

    @property
    def vendor_id(self) -> int:
        return VID_DISCFERRET

    @property
    def product_id(self) -> int:
        return PID_DISCFERRET

    def _string(self, value):
        if not self.is_open:
            raise usb.ErrorNotOpen()
        if self.string_error is not None:
            raise self.string_error
        return value

    @property
    def manufacturer_name(self) -> Optional[str]:
        return self._string(self._manufacturer_name)

    @property
    def product_name(self) -> Optional[str]:
        return self._string(self._product_name)

    @property
    def serial_number(self) -> Optional[str]:
        return self._string(self._serial_number)

    @property
    def location(self) -> str:
        return self._location

    def open(self):
        self.is_open = True

    def close(self):
        self.is_open = False
        self.claimed = False

    def claim_interface(self, interface: int):
        if not self.is_open:
            raise usb.ErrorNotOpen()
        if self.busy:
            raise usb.ErrorBusy()
        self.claimed = True

    def release_interface(self, interface: int):
        if not self.claimed:
            raise usb.ErrorNotFound()
        self.claimed = False

    def _check_transfer(self):
        if not self.claimed:
            raise usb.ErrorNotOpen()
        if self.transfer_error is not None:
            error, self.transfer_error = self.transfer_error, None
            raise error

    def bulk_transfer_out(self, endpoint: int, data: bytes, timeout: float) -> int:
        assert endpoint == EP_OUT
        self._check_transfer()
        data = bytes(data)
        self.requests.append(data)
        response = self._execute(data)
        if response is not None:
            self._responses.append(bytes(response))
        return len(data)

    def bulk_transfer_in(self, endpoint: int, length: int, timeout: float) -> bytes:
        assert endpoint == EP_IN
        self._check_transfer()
        if not self._responses:
            raise usb.ErrorTimeout()
        response = self._responses.popleft()
        if len(response) > length:
            raise usb.ErrorBabble()
        return response

    @property
    def _capabilities(self):
        return resolve_capabilities(VersionInfo(
            self.hardware_rev, self.firmware_ver, *self._microcode_id))

    @property
    def _microcode_id(self):
        # Microcode identity is read from the FPGA; an unconfigured FPGA reads as all ones.
        if self.fpga_configured:
            return self.microcode_type, self.microcode_ver
        else:
            return 0xFFFF, 0xFFFF

    def _execute(self, request: bytes):
        command, args = request[0], request[1:]
        logger.trace("simulation: command %#04x args=<%s>", command, dump_hex(args))
        match command:
            case Command.NOP:
                return [Status.OK]
            case Command.GET_VERSION:
                return bytes([Status.OK]) + struct.pack(">4sHHH",
                    self.hardware_rev.encode("ascii"), self.firmware_ver, *self._microcode_id)
            case Command.FPGA_INIT:
                return self._fpga_init()
            case Command.FPGA_POLL:
                return self._fpga_poll()
            case Command.FPGA_LOAD:
                return self._fpga_load(args)
            case Command.FPGA_POKE:
                if len(args) != 3:
                    return [Status.INVALID_LEN]
                if not self.fpga_configured:
                    return [Status.FPGA_NOT_CONF]
                addr, value = struct.unpack(">HB", args)
                self._poke(addr, value)
                return [Status.OK]
            case Command.FPGA_PEEK:
                if len(args) != 2:
                    return [Status.INVALID_LEN]
                if not self.fpga_configured:
                    return [Status.FPGA_NOT_CONF, 0]
                addr, = struct.unpack(">H", args)
                return [Status.OK, self._peek(addr)]
            case Command.RAM_ADDR_SET:
                if len(args) != 3:
                    return [Status.INVALID_LEN]
                addr = int.from_bytes(args, byteorder="little")
                if addr >= len(self.ram):
                    return [Status.INVALID_PARAM]
                self.ram_pointer = addr
                return [Status.OK]
            case Command.RAM_ADDR_GET:
                return bytes([Status.OK]) + self.ram_pointer.to_bytes(3, byteorder="little")
            case Command.RAM_WRITE | Command.RAM_WRITE_FAST:
                return self._ram_write(command, args)
            case Command.RAM_READ | Command.RAM_READ_FAST:
                return self._ram_read(command, args)
            case Command.RESET:
                if args == RESET_KEY:
                    self.was_reset = True
                return None
            case _:
                return [Status.INVALID_PARAM]

    def _fpga_init(self):
        self.fpga_loading = True
        self.bitstream    = bytearray()
        self._fpga_blocks = 0
        if self.fpga_enters_load_mode:
            self.fpga_configured = False
        return [Status.OK]

    def _fpga_poll(self):
        if self.fpga_loading and self.bitstream and self.fpga_accepts_bitstream:
            self.fpga_loading    = False
            self.fpga_configured = True
        return [Status.OK if self.fpga_configured else Status.FPGA_NOT_CONF]

    def _fpga_load(self, args):
        if not args or args[0] == 0 or args[0] > FPGA_LOAD_MAX_CHUNK or len(args) != args[0] + 1:
            return [Status.INVALID_LEN]
        block_index = self._fpga_blocks
        self._fpga_blocks += 1
        if block_index == self.fpga_reject_block:
            return [self.fpga_reject_status]
        if not self.fpga_loading:
            return [Status.HARDWARE_ERROR]
        self.bitstream += args[1:]
        return [Status.OK]

    def _ram_length(self, command, args):
        if len(args) < 2:
            return None
        length, = struct.unpack_from("<H", args)
        if command in (Command.RAM_WRITE_FAST, Command.RAM_READ_FAST):
            length += 1
        return length

    def _ram_access(self, length):
        start = self.ram_pointer
        self.ram_pointer = (start + length) % len(self.ram)
        return [(start + offset) % len(self.ram) for offset in range(length)]

    def _ram_write(self, command, args):
        fast = command == Command.RAM_WRITE_FAST
        if fast and self.firmware_ver < 0x001B:
            return [Status.INVALID_PARAM]
        if not self.fpga_configured:
            return [Status.FPGA_NOT_CONF]
        length = self._ram_length(command, args)
        limit  = RAM_FAST_MAX_CHUNK if fast else RAM_WRITE_MAX_CHUNK
        if length is None or length == 0 or length > limit or len(args) != length + 2:
            return [Status.INVALID_LEN]
        for addr, byte in zip(self._ram_access(length), args[2:]):
            self.ram[addr] = byte
        return [Status.OK]

    def _ram_read(self, command, args):
        fast = command == Command.RAM_READ_FAST
        if fast and self.firmware_ver < 0x001B:
            return [Status.INVALID_PARAM]
        if not self.fpga_configured:
            return [Status.FPGA_NOT_CONF]
        length = self._ram_length(command, args)
        limit  = RAM_FAST_MAX_CHUNK if fast else RAM_READ_MAX_CHUNK
        if length is None or length == 0 or length > limit or len(args) != 2:
            return [Status.INVALID_LEN]
        data = bytes(self.ram[addr] for addr in self._ram_access(length))
        if fast:
            return data
        return bytes([Status.OK]) + data

    def _poke(self, addr, value):
        self.registers[addr] = value
        if addr == R_STEP_CMD:
            self._step(towards_zero=bool(value & STEP_CMD_TOWARDS_ZERO),
                       count=(value & STEP_COUNT_MASK) + 1)

    def _step(self, towards_zero, count):
        stop_at_track0 = self._capabilities.has_track0_flag
        self._track0_hit = False
        for _ in range(count):
            if towards_zero:
                if self.head_track == 0 and stop_at_track0:
                    break
                self.head_track = max(self.head_track - 1, 0)
            else:
                self.head_track = min(self.head_track + 1, self.max_track)
            self.steps_issued += 1
        if towards_zero and self.head_track == 0 and stop_at_track0:
            self._track0_hit = True
        self._stepping_left = self.stepping_polls

    def _status1(self):
        status = 0
        if self._track0_hit:
            status |= STATUS_TRACK0_HIT
        if self._capabilities.has_index_freq_avail_flag:
            if self._index_left > 0:
                self._index_left -= 1
            else:
                status |= STATUS_NEW_INDEX_MEAS
        return status

    def _status2(self):
        status = 0
        if self.head_track == 0:
            status |= STATUS_TRACK0
        if self._stepping_left > 0:
            self._stepping_left -= 1
            status |= STATUS_STEPPING
        if self.ram_pointer == 0:
            status |= STATUS_RAM_EMPTY
        return status >> 8

    def _peek(self, addr):
        if addr == R_STATUS1:
            return self._status1()
        elif addr == R_STATUS2:
            return self._status2()
        elif addr == R_INVERSE_SCRATCHPAD:
            return ~self.registers.get(R_SCRATCHPAD, 0) & 0xff
        elif addr == R_FIXED55:
            return 0x55
        elif addr == R_FIXEDAA:
            return 0xaa
        elif addr == R_INDEX_FREQ_HIGH:
            if not self._capabilities.has_index_freq_sense:
                return 0
            # reading the high byte latches the low byte and restarts the measurement
            self._index_latch = self.index_count & 0xff
            self._index_left  = self.index_polls
            return (self.index_count >> 8) & 0xff
        elif addr == R_INDEX_FREQ_LOW:
            return self._index_latch
        else:
            return self.registers.get(addr, 0)
