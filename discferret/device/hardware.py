from typing import Optional, Callable
from dataclasses import dataclass
import enum
import time
import logging
import contextlib

from ..support.logging import dump_hex
from ..support import usb
from ..protocol import wire
from ..protocol.wire import Command, Status, FrameError
from . import *
from .registers import *
from .capabilities import VersionInfo, Capabilities, resolve_capabilities


__all__ = [
    "VID_DISCFERRET", "PID_DISCFERRET",
    "DeviceDescriptor", "DeviceInfo", "FPGAState", "SeekResult",
    "DiscFerretContext", "DiscFerretDevice",
]


logger = logging.getLogger(__name__)


VID_DISCFERRET  = 0x04D8
PID_DISCFERRET  = 0xFBBB

EP_OUT          = 0x01
EP_IN           = 0x81
INTERFACE       = 0

DEFAULT_TIMEOUT = 1.0

_bitrev_lut = bytes(
    sum(((byte >> bit) & 1) << (7 - bit) for bit in range(8))
    for byte in range(0x100)
)


@contextlib.contextmanager
def _map_usb_errors(action):
    try:
        yield
    except usb.ErrorTimeout as err:
        raise DiscFerretTimeoutError(f"{action}: timed out") from err
    except usb.ErrorOutOfMemory as err:
        raise DiscFerretOutOfMemoryError(f"{action}: out of memory") from err
    except usb.Error as err:
        raise DiscFerretTransportError(f"{action}: {type(err).__name__}") from err


def _read_string(usb_device, name) -> Optional[str]:
    try:
        return getattr(usb_device, name)
    except usb.ErrorOutOfMemory as err:
        raise DiscFerretOutOfMemoryError(f"reading {name}: out of memory") from err
    except usb.Error as err:
        logger.debug("cannot read %s of device %s (%s)",
                     name, usb_device.location, type(err).__name__)
        return None


def _status_error(command: Command, status: Status) -> DiscFerretError:
    message = f"{command.name} failed with status {status.name}"
    match status:
        case Status.HARDWARE_ERROR:
            return DiscFerretHardwareError(message)
        case Status.INVALID_LEN | Status.INVALID_PARAM:
            return DiscFerretBadParameterError(message)
        case Status.FPGA_NOT_CONF | Status.FPGA_REFUSED_CONF:
            return DiscFerretFPGANotConfiguredError(message)
        case _:
            return DiscFerretProtocolError(message)


def _coerce_buffer(data, what) -> bytes:
    if data is None or isinstance(data, (int, str)):
        raise DiscFerretBadParameterError(f"{what} must be a byte buffer")
    try:
        data = bytes(data)
    except (TypeError, ValueError) as err:
        raise DiscFerretBadParameterError(f"{what} must be a byte buffer") from err
    if len(data) == 0:
        raise DiscFerretBadParameterError(f"{what} is empty")
    return data


@dataclass(frozen=True)
class DeviceDescriptor:
    """An attached, unclaimed DiscFerret, as seen during enumeration."""
    vendor_id:         int
    product_id:        int
    product_name:      Optional[str]
    manufacturer_name: Optional[str]
    serial_number:     Optional[str]
    location:          str


@dataclass(frozen=True)
class DeviceInfo:
    hardware_rev:      str
    firmware_ver:      int
    microcode_type:    int
    microcode_ver:     int
    product_name:      Optional[str]
    manufacturer_name: Optional[str]
    serial_number:     Optional[str]


class FPGAState(enum.Enum):
    NotStarted     = "not-started"
    LoadInProgress = "load-in-progress"
    Configured     = "configured"
    Failed         = "failed"


class SeekResult(enum.Enum):
    #: The head moved by the requested number of steps and the new track is known.
    Complete      = "complete"
    #: The head reached track 0 while moving towards it; the move stops there.
    Track0Reached = "track0-reached"
    #: The head moved, but the track it is on is unknown.
    TrackUnknown  = "track-unknown"


class DiscFerretContext:
    """
    Library-wide USB state.

    A context must be initialized with :meth:`init` (or by entering it as a context manager)
    before any device can be found or opened, and torn down with :meth:`done` once every
    device is closed. ``backend`` is a factory returning a :class:`usb.AbstractContext`;
    by default, ``libusb1`` is used.
    """

    def __init__(self, backend: Optional[Callable[[], usb.AbstractContext]] = None):
        self._backend     = backend
        self._usb_context = None
        self._sessions    = []

    @property
    def initialized(self) -> bool:
        return self._usb_context is not None

    def init(self):
        if self._usb_context is not None:
            raise DiscFerretAlreadyInitializedError("library is already initialized")
        backend = self._backend
        if backend is None:
            from ..support.usb import libusb1
            backend = libusb1.Context
        with _map_usb_errors("initializing USB"):
            self._usb_context = backend()
        logger.debug("USB context initialized")

    def done(self):
        usb_context = self._ensure_initialized()
        for session in list(self._sessions):
            logger.warning("closing device %s that was left open", session.location)
            session.close()
        self._usb_context = None
        with _map_usb_errors("shutting down USB"):
            usb_context.close()
        logger.debug("USB context shut down")

    def __enter__(self):
        self.init()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.done()

    def _ensure_initialized(self) -> usb.AbstractContext:
        if self._usb_context is None:
            raise DiscFerretNotInitializedError("library is not initialized")
        return self._usb_context

    def _candidates(self) -> list[usb.AbstractDevice]:
        usb_context = self._ensure_initialized()
        with _map_usb_errors("enumerating devices"):
            return [
                usb_device for usb_device in usb_context.get_devices()
                if (usb_device.vendor_id, usb_device.product_id) ==
                    (VID_DISCFERRET, PID_DISCFERRET)
            ]

    @staticmethod
    def _try_open(usb_device: usb.AbstractDevice) -> bool:
        try:
            usb_device.open()
            return True
        except usb.ErrorOutOfMemory as err:
            raise DiscFerretOutOfMemoryError("out of memory opening device") from err
        except usb.Error as err:
            logger.debug("cannot open device %s (%s), skipping",
                         usb_device.location, type(err).__name__)
            return False

    def find_devices(self) -> list[DeviceDescriptor]:
        """
        Enumerate DiscFerret devices.

        Devices that cannot be opened (usually because another process holds them) are left
        out of the result. String descriptors that cannot be read are reported as ``None``.
        """
        descriptors = []
        for usb_device in self._candidates():
            if not self._try_open(usb_device):
                continue
            try:
                descriptors.append(DeviceDescriptor(
                    vendor_id=usb_device.vendor_id,
                    product_id=usb_device.product_id,
                    product_name=_read_string(usb_device, "product_name"),
                    manufacturer_name=_read_string(usb_device, "manufacturer_name"),
                    serial_number=_read_string(usb_device, "serial_number"),
                    location=usb_device.location))
            finally:
                with _map_usb_errors("closing device"):
                    usb_device.close()
        logger.debug("found %d device(s)", len(descriptors))
        return descriptors

    def open(self, serial: Optional[str] = None, *,
             timeout: float = DEFAULT_TIMEOUT) -> "DiscFerretDevice":
        """
        Claim and open the DiscFerret with serial number ``serial``, or the first unclaimed
        DiscFerret if ``serial`` is ``None`` or empty.

        Raises
        ------
        DiscFerretNoMatchError
            If no unclaimed device matches.
        """
        for usb_device in self._candidates():
            if not self._try_open(usb_device):
                continue
            try:
                if serial and usb_device.serial_number != serial:
                    usb_device.close()
                    continue
                usb_device.claim_interface(INTERFACE)
            except usb.ErrorOutOfMemory as err:
                usb_device.close()
                raise DiscFerretOutOfMemoryError("out of memory claiming device") from err
            except usb.Error as err:
                logger.debug("cannot claim device %s (%s), skipping",
                             usb_device.location, type(err).__name__)
                usb_device.close()
                continue

            device = DiscFerretDevice(self, usb_device, timeout=timeout)
            try:
                device.update_capabilities()
            except DiscFerretError:
                device.close()
                raise
            logger.info("opened device %s at %s", device.serial or "(no serial)", device.location)
            return device

        if serial:
            raise DiscFerretNoMatchError(f"device with serial number {serial} not found")
        raise DiscFerretNoMatchError("no unclaimed device found")

    def open_first(self, *, timeout: float = DEFAULT_TIMEOUT) -> "DiscFerretDevice":
        return self.open(None, timeout=timeout)


class DiscFerretDevice:
    """
    An open, claimed DiscFerret.

    Instances are created by :meth:`DiscFerretContext.open`. Every method performs one or more
    blocking request/response exchanges, each bounded by :attr:`timeout` seconds; nothing is
    retried. A device must not be used from more than one thread at a time.

    Methods that wait for the hardware (stepping, index measurement without a timeout) poll the
    status registers with no delay and no iteration limit, so a drive controller that never
    finishes stepping hangs the caller.
    """

    def __init__(self, context: DiscFerretContext, usb_device: usb.AbstractDevice, *,
                 timeout: float = DEFAULT_TIMEOUT):
        self._context    = context
        self._usb_device = usb_device
        self._open       = True
        self.timeout     = timeout

        self.version_info: Optional[VersionInfo] = None
        self.capabilities = Capabilities()
        self.fpga_state   = FPGAState.NotStarted
        self._current_track: Optional[int] = None

        context._sessions.append(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if self._open:
            self.close()

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def location(self) -> str:
        return self._usb_device.location

    @property
    def serial(self) -> Optional[str]:
        self._ensure_open()
        return _read_string(self._usb_device, "serial_number")

    @property
    def current_track(self) -> Optional[int]:
        """Track the head is on, or ``None`` if unknown."""
        return self._current_track

    def close(self):
        self._ensure_open()
        self._open = False
        self._context._sessions.remove(self)
        with _map_usb_errors("closing device"):
            try:
                self._usb_device.release_interface(INTERFACE)
            finally:
                self._usb_device.close()
        logger.debug("closed device %s", self.location)

    def _ensure_open(self):
        if not self._context.initialized:
            raise DiscFerretNotInitializedError("library is not initialized")
        if not self._open:
            raise DiscFerretHandleRequiredError("device is not open")

    # Transport

    def _bulk_write(self, data: bytes):
        logger.trace("USB: BULK EP%d OUT data=<%s>", EP_OUT & 0x7f, dump_hex(data))
        with _map_usb_errors("bulk write"):
            count = self._usb_device.bulk_transfer_out(EP_OUT, data, self.timeout)
        if count != len(data):
            raise DiscFerretTransportError(
                f"bulk write sent {count} of {len(data)} bytes")

    def _bulk_read(self, length: int) -> bytes:
        with _map_usb_errors("bulk read"):
            data = self._usb_device.bulk_transfer_in(EP_IN, length, self.timeout)
        logger.trace("USB: BULK EP%d IN data=<%s>", EP_IN & 0x7f, dump_hex(data))
        return data

    def _exchange(self, request: bytes, length: int, *, exact=True) -> tuple[Status, bytes]:
        self._ensure_open()
        self._bulk_write(request)
        response = self._bulk_read(length)
        try:
            status = wire.decode_status(response)
        except FrameError as err:
            raise DiscFerretProtocolError(f"{Command(request[0]).name}: {err}") from err
        if status == Status.OK and exact and len(response) != length:
            raise DiscFerretTransportError(
                f"{Command(request[0]).name}: received {len(response)} of {length} bytes")
        return status, response

    def _command(self, request: bytes, length: int = 1, *, exact=True) -> bytes:
        status, response = self._exchange(request, length, exact=exact)
        if status != Status.OK:
            raise _status_error(Command(request[0]), status)
        return response

    def _command_raw(self, request: bytes, length: int) -> bytes:
        # Response carries no status byte.
        self._ensure_open()
        self._bulk_write(request)
        response = self._bulk_read(length)
        if len(response) != length:
            raise DiscFerretTransportError(
                f"{Command(request[0]).name}: received {len(response)} of {length} bytes")
        return response

    def nop(self):
        self._command(wire.encode_nop())

    def reset(self):
        """
        Reset the device. The device drops off the bus and re-enumerates, so the session is
        closed and the device has to be opened again.
        """
        self._ensure_open()
        self._bulk_write(wire.encode_reset())
        logger.info("reset device %s", self.location)
        try:
            self.close()
        except DiscFerretTransportError:
            pass # already gone from the bus

    # Capabilities

    def query_version(self) -> VersionInfo:
        response = self._command(wire.encode_get_version(), wire.RESPONSE_MAX, exact=False)
        try:
            return wire.decode_version(response)
        except FrameError as err:
            raise DiscFerretProtocolError(f"GET_VERSION: {err}") from err

    def update_capabilities(self) -> Capabilities:
        """
        Re-read version information and recompute :attr:`capabilities`. This happens
        automatically on open and after a microcode load.
        """
        version_info = self.query_version()
        capabilities = resolve_capabilities(version_info)
        logger.debug("hardware rev %s, firmware %04x, microcode type %04x version %04x",
                     version_info.hardware_rev, version_info.firmware_ver,
                     version_info.microcode_type, version_info.microcode_ver)
        if capabilities != self.capabilities:
            logger.debug("capabilities: %s", capabilities)
        self.version_info = version_info
        self.capabilities = capabilities
        return capabilities

    def get_info(self) -> DeviceInfo:
        version_info = self.query_version()
        return DeviceInfo(
            hardware_rev=version_info.hardware_rev,
            firmware_ver=version_info.firmware_ver,
            microcode_type=version_info.microcode_type,
            microcode_ver=version_info.microcode_ver,
            product_name=_read_string(self._usb_device, "product_name"),
            manufacturer_name=_read_string(self._usb_device, "manufacturer_name"),
            serial_number=_read_string(self._usb_device, "serial_number"))

    # Registers

    def peek(self, addr: int) -> int:
        """Read the FPGA register at ``addr``."""
        if addr not in range(0x10000):
            raise DiscFerretBadParameterError(f"register address {addr:#x} out of range")
        value = wire.decode_peek(self._command(wire.encode_peek(addr), 2))
        logger.trace("register %#06x read: %#04x", addr, value)
        return value

    def poke(self, addr: int, value: int):
        """Write ``value`` to the FPGA register at ``addr``."""
        if addr not in range(0x10000):
            raise DiscFerretBadParameterError(f"register address {addr:#x} out of range")
        if value not in range(0x100):
            raise DiscFerretBadParameterError(f"register value {value:#x} out of range")
        logger.trace("register %#06x write: %#04x", addr, value)
        self._command(wire.encode_poke(addr, value))

    def get_status(self) -> int:
        """Read the 16-bit status word; see the ``STATUS_*`` constants."""
        status1 = self.peek(R_STATUS1)
        status2 = self.peek(R_STATUS2)
        return (status2 << 8) | status1

    # FPGA configuration

    def fpga_load_begin(self):
        self._command(wire.encode_fpga_init())
        self.fpga_state = FPGAState.LoadInProgress

    def fpga_get_status(self) -> Status:
        """
        Poll the FPGA. Returns :attr:`Status.OK` if it is configured and
        :attr:`Status.FPGA_NOT_CONF` if it is not (or is still being loaded).
        """
        status, _ = self._exchange(wire.encode_fpga_poll(), 1)
        return status

    def fpga_load_block(self, block, swap: bool = True):
        """
        Send one block of at most 62 bytes of configuration data. With ``swap``, each byte is
        sent LSB first, which is the order the FPGA shifts an RBF file in.
        """
        block = _coerce_buffer(block, "block")
        if len(block) > wire.FPGA_LOAD_MAX_CHUNK:
            raise DiscFerretBadParameterError(
                f"block of {len(block)} bytes exceeds {wire.FPGA_LOAD_MAX_CHUNK} bytes")
        if swap:
            block = block.translate(_bitrev_lut)
        status, _ = self._exchange(wire.encode_fpga_load(block), 1)
        if status != Status.OK:
            raise _status_error(Command.FPGA_LOAD, status)

    def fpga_load_bitstream(self, bitstream):
        """
        Load an RBF bitstream into the FPGA and refresh :attr:`capabilities`.

        A failure at any step leaves the FPGA unconfigured; loading has to be restarted from
        the beginning.

        Raises
        ------
        DiscFerretHardwareError
            If the FPGA could not be put into configuration mode.
        DiscFerretFPGANotConfiguredError
            If the FPGA did not accept the bitstream.
        """
        bitstream = _coerce_buffer(bitstream, "bitstream")
        logger.info("loading %d byte bitstream", len(bitstream))
        try:
            self.fpga_load_begin()
            status = self.fpga_get_status()
            if status != Status.FPGA_NOT_CONF:
                raise DiscFerretHardwareError(
                    f"FPGA did not enter configuration mode (status {status.name})")

            bitstream = bitstream.translate(_bitrev_lut)
            for offset in range(0, len(bitstream), wire.FPGA_LOAD_MAX_CHUNK):
                self.fpga_load_block(bitstream[offset:offset + wire.FPGA_LOAD_MAX_CHUNK],
                                     swap=False)

            status = self.fpga_get_status()
            if status != Status.OK:
                raise DiscFerretFPGANotConfiguredError(
                    f"FPGA rejected configuration (status {status.name})")
        except DiscFerretError:
            self.fpga_state = FPGAState.Failed
            raise
        self.fpga_state = FPGAState.Configured
        logger.info("FPGA configured")
        self.update_capabilities()

    # Acquisition RAM

    def ram_addr_get(self) -> int:
        return wire.decode_ram_addr_get(self._command(wire.encode_ram_addr_get(), 4))

    def ram_addr_set(self, addr: int):
        if addr not in range(wire.RAM_ADDR_MAX + 1):
            raise DiscFerretBadParameterError(f"RAM address {addr:#x} out of range")
        self._command(wire.encode_ram_addr_set(addr))

    def ram_write(self, data):
        """
        Write ``data`` to acquisition RAM at the address pointer, which advances past it.

        If a chunk fails, the address pointer is left wherever that chunk left it and must be
        set again before retrying.
        """
        data = _coerce_buffer(data, "data")
        if self.capabilities.has_fast_ram_access:
            chunk_size, encode = wire.RAM_FAST_MAX_CHUNK, wire.encode_ram_write_fast
        else:
            chunk_size, encode = wire.RAM_WRITE_MAX_CHUNK, wire.encode_ram_write
        logger.debug("writing %d bytes to RAM in %d byte chunks", len(data), chunk_size)
        offset = 0
        while offset < len(data):
            chunk = data[offset:offset + chunk_size]
            self._command(encode(chunk))
            offset += len(chunk)

    def ram_read(self, length: int) -> bytes:
        """Read ``length`` bytes from acquisition RAM at the address pointer."""
        if not isinstance(length, int) or length < 1:
            raise DiscFerretBadParameterError(f"invalid read length {length!r}")
        fast = self.capabilities.has_fast_ram_access
        chunk_size = wire.RAM_FAST_MAX_CHUNK if fast else wire.RAM_READ_MAX_CHUNK
        logger.debug("reading %d bytes from RAM in %d byte chunks", length, chunk_size)
        data = bytearray()
        while len(data) < length:
            chunk_length = min(length - len(data), chunk_size)
            if fast:
                data += self._command_raw(wire.encode_ram_read_fast(chunk_length), chunk_length)
            else:
                data += self._command(wire.encode_ram_read(chunk_length), chunk_length + 1)[1:]
        return bytes(data)

    # Head positioning

    def seek_set_rate(self, step_rate_us: int):
        """Set the step pulse period, in microseconds; the resolution is 250 us."""
        if step_rate_us not in range(STEP_RATE_MAX_US + 1):
            raise DiscFerretBadParameterError(
                f"step rate {step_rate_us} us out of range 0..{STEP_RATE_MAX_US} us")
        self.poke(R_STEP_RATE, step_rate_us // STEP_RATE_UNIT_US)

    def _step(self, count: int, towards_zero: bool) -> int:
        assert 1 <= count <= STEP_BURST_MAX
        direction = STEP_CMD_TOWARDS_ZERO if towards_zero else STEP_CMD_AWAYFROM_ZERO
        logger.trace("step %s count=%d", "in" if towards_zero else "out", count)
        self.poke(R_STEP_CMD, direction | (count - 1))
        while True:
            status = self.get_status()
            if not status & STATUS_STEPPING:
                return status

    def _at_track0(self, status: int) -> bool:
        if self.capabilities.has_track0_flag:
            return bool(status & STATUS_TRACK0_HIT)
        else:
            return bool(status & STATUS_TRACK0)

    def recalibrate(self, max_steps: int):
        """
        Step towards track 0 until the drive reports it, issuing at most ``max_steps`` steps.

        Raises
        ------
        DiscFerretRecalibrationError
            If track 0 was not reached; the current track becomes unknown.
        """
        if max_steps < 1:
            raise DiscFerretBadParameterError(f"step budget {max_steps} must be at least 1")
        logger.debug("recalibrate max_steps=%d", max_steps)
        self._current_track = None
        remaining = max_steps
        while remaining > 0:
            count = min(remaining, STEP_BURST_MAX)
            status = self._step(count, towards_zero=True)
            remaining -= count
            if self._at_track0(status):
                self._current_track = 0
                return
        raise DiscFerretRecalibrationError(f"track 0 not reached within {max_steps} steps")

    def seek_relative(self, steps: int) -> SeekResult:
        """
        Move the head by ``steps``; negative values move towards track 0.

        A move towards track 0 stops as soon as track 0 is reached, returning
        :attr:`SeekResult.Track0Reached`. If the current track was unknown and track 0 was not
        reached, the head still moves but :attr:`SeekResult.TrackUnknown` is returned.
        """
        if steps == 0:
            raise DiscFerretBadParameterError("cannot seek by 0 steps")
        towards_zero = steps < 0
        logger.debug("seek relative steps=%d from track=%s", steps, self._current_track)
        try:
            remaining = abs(steps)
            while remaining > 0:
                count = min(remaining, STEP_BURST_MAX)
                status = self._step(count, towards_zero)
                remaining -= count
                if towards_zero and self._at_track0(status):
                    self._current_track = 0
                    return SeekResult.Track0Reached
        except DiscFerretError:
            self._current_track = None
            raise

        if self._current_track is None:
            return SeekResult.TrackUnknown
        elif self._current_track + steps < 0:
            logger.warning("seek by %d steps from track %d did not reach track 0",
                           steps, self._current_track)
            self._current_track = None
            return SeekResult.TrackUnknown
        else:
            self._current_track += steps
            return SeekResult.Complete

    def seek_absolute(self, track: int) -> SeekResult:
        """
        Move the head to ``track``.

        Raises
        ------
        DiscFerretTrackUnknownError
            If the current track is unknown. No steps are issued.
        DiscFerretBadParameterError
            If ``track`` is negative or is the current track.
        """
        if self._current_track is None:
            raise DiscFerretTrackUnknownError("current track is unknown; recalibrate first")
        if track < 0:
            raise DiscFerretBadParameterError(f"track {track} is negative")
        return self.seek_relative(track - self._current_track)

    # Index timing

    def get_index_time(self, wait: bool = False, *, timeout: Optional[float] = None) -> float:
        """
        Return the time between the two most recent index pulses, in seconds.

        With ``wait``, and if the microcode flags new measurements, wait for a measurement that
        has not been read yet; ``timeout`` bounds the wait in seconds.
        """
        if not self.capabilities.has_index_freq_sense:
            raise DiscFerretNotSupportedError("microcode does not measure index period")
        if wait and self.capabilities.has_index_freq_avail_flag:
            deadline = None if timeout is None else time.monotonic() + timeout
            while not self.get_status() & STATUS_NEW_INDEX_MEAS:
                if deadline is not None and time.monotonic() > deadline:
                    raise DiscFerretTimeoutError(
                        f"no index period measurement within {timeout} s")
        # reading the high byte latches the low byte
        count_high = self.peek(R_INDEX_FREQ_HIGH)
        count_low  = self.peek(R_INDEX_FREQ_LOW)
        count = (count_high << 8) | count_low
        seconds = count * self.capabilities.index_freq_multiplier
        logger.trace("index period count=%d time=%.6f s", count, seconds)
        return seconds

    def get_index_frequency(self, wait: bool = False, *,
                            timeout: Optional[float] = None) -> float:
        """Return the rotational speed of the disc, in RPM."""
        seconds = self.get_index_time(wait, timeout=timeout)
        if seconds == 0:
            raise DiscFerretHardwareError("index period counter reads zero")
        return 60 / seconds
