"""
DiscFerret command/response framing.

Every exchange is one request frame written to the bulk OUT endpoint followed (for all
commands but :attr:`Command.RESET`) by one response frame read from the bulk IN endpoint.
A request is a command byte followed by command-specific arguments; a response is a
:class:`Status` byte followed by a command-specific payload. The one exception is
:attr:`Command.RAM_READ_FAST`, whose response is the raw memory contents with no status byte.

Byte order differs between fields and is part of the contract: register addresses are sent
high byte first, while transfer lengths and the RAM address pointer are sent low byte first.
Version fields are returned high byte first.

The functions in this module do no I/O. Encoders assume their arguments were range checked
by the caller; decoders raise :class:`FrameError` on truncated frames.
"""

from dataclasses import dataclass
import enum
import struct


__all__ = [
    "Command", "Status", "FrameError", "VersionInfo",
    "PACKET_SIZE", "FPGA_LOAD_MAX_CHUNK", "RAM_ADDR_MAX",
    "RAM_WRITE_MAX_CHUNK", "RAM_READ_MAX_CHUNK", "RAM_FAST_MAX_CHUNK",
    "RESPONSE_MAX", "VERSION_RESPONSE_MIN", "RESET_KEY",
    "encode_nop", "encode_get_version", "decode_version",
    "encode_fpga_init", "encode_fpga_poll", "encode_fpga_load",
    "encode_poke", "encode_peek", "decode_peek",
    "encode_ram_addr_set", "encode_ram_addr_get", "decode_ram_addr_get",
    "encode_ram_write", "encode_ram_read", "encode_ram_write_fast", "encode_ram_read_fast",
    "encode_reset", "decode_status",
]


class Command(enum.IntEnum):
    NOP            = 0x00
    FPGA_INIT      = 0x01
    FPGA_LOAD      = 0x02
    FPGA_POLL      = 0x03
    FPGA_POKE      = 0x04
    FPGA_PEEK      = 0x05
    RAM_ADDR_SET   = 0x06
    RAM_ADDR_GET   = 0x07
    RAM_WRITE      = 0x08
    RAM_READ       = 0x09
    RAM_WRITE_FAST = 0x0A
    RAM_READ_FAST  = 0x0B
    RESET          = 0xFB
    GET_VERSION    = 0xFF


class Status(enum.IntEnum):
    OK                = 0
    HARDWARE_ERROR    = 1
    INVALID_LEN       = 2
    FPGA_NOT_CONF     = 3
    FPGA_REFUSED_CONF = 4
    INVALID_PARAM     = 5


class FrameError(ValueError):
    """Raised when a response frame is too short or carries an unknown status byte."""


@dataclass(frozen=True)
class VersionInfo:
    hardware_rev: str
    firmware_ver: int
    microcode_type: int
    microcode_ver: int


PACKET_SIZE          = 64
# FPGA_LOAD header is command + length byte
FPGA_LOAD_MAX_CHUNK  = PACKET_SIZE - 2
# RAM_WRITE header is command + 16-bit length
RAM_WRITE_MAX_CHUNK  = PACKET_SIZE - 3
# RAM_READ response is status + data
RAM_READ_MAX_CHUNK   = PACKET_SIZE - 1
RAM_FAST_MAX_CHUNK   = 0x10000
RAM_ADDR_MAX         = 0xFFFFFF
RESPONSE_MAX         = PACKET_SIZE
VERSION_RESPONSE_MIN = 11
RESET_KEY            = b"\xde\xad\xbe\xef"


def _check_length(data, minimum, what):
    if len(data) < minimum:
        raise FrameError(f"{what} response is {len(data)} bytes long, "
                         f"expected at least {minimum}")


def decode_status(data) -> Status:
    """Decode the status byte that leads every response except a fast RAM read."""
    _check_length(data, 1, "status")
    try:
        return Status(data[0])
    except ValueError:
        raise FrameError(f"unknown status byte {data[0]:#04x}") from None


def encode_nop() -> bytes:
    return bytes([Command.NOP])


def encode_get_version() -> bytes:
    return bytes([Command.GET_VERSION])


def decode_version(data) -> VersionInfo:
    _check_length(data, VERSION_RESPONSE_MIN, "version")
    # the firmware sends version fields high byte first
    hardware_rev, firmware_ver, microcode_type, microcode_ver = \
        struct.unpack_from(">4sHHH", data, 1)
    return VersionInfo(
        hardware_rev=hardware_rev.decode("ascii", errors="replace"),
        firmware_ver=firmware_ver,
        microcode_type=microcode_type,
        microcode_ver=microcode_ver)


def encode_fpga_init() -> bytes:
    return bytes([Command.FPGA_INIT])


def encode_fpga_poll() -> bytes:
    return bytes([Command.FPGA_POLL])


def encode_fpga_load(block) -> bytes:
    assert 0 < len(block) <= FPGA_LOAD_MAX_CHUNK
    return bytes([Command.FPGA_LOAD, len(block)]) + bytes(block)


def encode_poke(addr: int, value: int) -> bytes:
    assert addr in range(0x10000) and value in range(0x100)
    return struct.pack(">BHB", Command.FPGA_POKE, addr, value)


def encode_peek(addr: int) -> bytes:
    assert addr in range(0x10000)
    return struct.pack(">BH", Command.FPGA_PEEK, addr)


def decode_peek(data) -> int:
    _check_length(data, 2, "peek")
    return data[1]


def encode_ram_addr_set(addr: int) -> bytes:
    assert addr in range(RAM_ADDR_MAX + 1)
    return bytes([Command.RAM_ADDR_SET]) + addr.to_bytes(3, byteorder="little")


def encode_ram_addr_get() -> bytes:
    return bytes([Command.RAM_ADDR_GET])


def decode_ram_addr_get(data) -> int:
    _check_length(data, 4, "RAM address")
    return int.from_bytes(data[1:4], byteorder="little")


def encode_ram_write(block) -> bytes:
    assert 0 < len(block) <= RAM_WRITE_MAX_CHUNK
    return struct.pack("<BH", Command.RAM_WRITE, len(block)) + bytes(block)


def encode_ram_read(length: int) -> bytes:
    assert 0 < length <= RAM_READ_MAX_CHUNK
    return struct.pack("<BH", Command.RAM_READ, length)


def encode_ram_write_fast(block) -> bytes:
    assert 0 < len(block) <= RAM_FAST_MAX_CHUNK
    return struct.pack("<BH", Command.RAM_WRITE_FAST, len(block) - 1) + bytes(block)


def encode_ram_read_fast(length: int) -> bytes:
    assert 0 < length <= RAM_FAST_MAX_CHUNK
    return struct.pack("<BH", Command.RAM_READ_FAST, length - 1)


def encode_reset() -> bytes:
    return bytes([Command.RESET]) + RESET_KEY
