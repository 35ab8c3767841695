from typing import Optional
from dataclasses import dataclass

from ..protocol.wire import VersionInfo


__all__ = [
    "VersionInfo", "Capabilities", "resolve_capabilities",
    "FIRMWARE_FAST_RAM", "MICROCODE_TYPE_DISCFERRET",
    "MICROCODE_INDEX_FREQ_SENSE", "MICROCODE_INDEX_FREQ_AVAIL", "MICROCODE_TRACK0_FLAG",
]


FIRMWARE_FAST_RAM          = 0x001B

MICROCODE_TYPE_DISCFERRET  = 0xDD55
MICROCODE_INDEX_FREQ_SENSE = 0x001F
MICROCODE_INDEX_FREQ_AVAIL = 0x0020
MICROCODE_TRACK0_FLAG      = 0x0021


@dataclass(frozen=True)
class Capabilities:
    """
    Features of a particular firmware and microcode combination.

    :ivar bool has_fast_ram_access:
        Firmware implements the fast RAM read and write commands.
    :ivar bool has_index_freq_sense:
        Microcode measures the period between index pulses.
    :ivar bool has_index_freq_avail_flag:
        Microcode sets a status flag when a new index period measurement is available.
    :ivar bool has_track0_flag:
        Microcode stops a seek towards zero at track 0 and flags it in the status word.
    :ivar float index_freq_multiplier:
        Seconds per count of the index period counter, or ``None`` if the period is not measured.
    """
    has_fast_ram_access:       bool = False
    has_index_freq_sense:      bool = False
    has_index_freq_avail_flag: bool = False
    has_track0_flag:           bool = False
    index_freq_multiplier:     Optional[float] = None


def resolve_capabilities(info: VersionInfo) -> Capabilities:
    has_fast_ram_access       = info.firmware_ver >= FIRMWARE_FAST_RAM
    has_index_freq_sense      = False
    has_index_freq_avail_flag = False
    has_track0_flag           = False
    index_freq_multiplier     = None

    # Microcode version numbers are only comparable within the same microcode family.
    if info.microcode_type == MICROCODE_TYPE_DISCFERRET:
        if info.microcode_ver >= MICROCODE_INDEX_FREQ_SENSE:
            has_index_freq_sense  = True
            index_freq_multiplier = 250e-6
        if info.microcode_ver >= MICROCODE_INDEX_FREQ_AVAIL:
            has_index_freq_avail_flag = True
            index_freq_multiplier     = 10e-6
        if info.microcode_ver >= MICROCODE_TRACK0_FLAG:
            has_track0_flag = True

    return Capabilities(
        has_fast_ram_access=has_fast_ram_access,
        has_index_freq_sense=has_index_freq_sense,
        has_index_freq_avail_flag=has_index_freq_avail_flag,
        has_track0_flag=has_track0_flag,
        index_freq_multiplier=index_freq_multiplier)
