import os
import sys
import logging
import argparse
import platform

from . import __version__
from .support.logging import *
from .device import DiscFerretError
from .device.hardware import DiscFerretContext, SeekResult
from .device.registers import *


# When running as `-m discferret.cli`, `__name__` is `__main__`, and the real name
# can be retrieved from `__loader__.name`.
logger = logging.getLogger(__loader__.name)


class TextHelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog):
        if "COLUMNS" in os.environ:
            columns = int(os.environ["COLUMNS"])
        else:
            try:
                columns, _ = os.get_terminal_size(sys.stderr.fileno())
            except OSError:
                columns = 80
        super().__init__(prog, width=columns, max_help_position=28)


def version_info():
    python_version = ".".join(map(str, sys.version_info[:3]))
    python_implementation = platform.python_implementation()
    return (
        f"DiscFerret {__version__} "
        f"({python_implementation} {python_version} on {platform.platform()})"
    )


def step_rate(arg):
    value = int(arg, 0)
    if value not in range(STEP_RATE_MAX_US + 1):
        raise argparse.ArgumentTypeError(
            f"{arg} is not a step rate between 0 and {STEP_RATE_MAX_US} us")
    return value


def create_argparser():
    parser = argparse.ArgumentParser(prog="discferret", formatter_class=TextHelpFormatter)

    parser.add_argument(
        "-V", "--version", action="version", version=version_info(),
        help="show version and exit")
    parser.add_argument(
        "-v", "--verbose", default=0, action="count",
        help="increase logging verbosity")
    parser.add_argument(
        "-q", "--quiet", default=0, action="count",
        help="decrease logging verbosity")
    parser.add_argument(
        "-L", "--log-file", metavar="FILE", type=argparse.FileType("w"),
        help="save log messages at highest verbosity to FILE")
    parser.add_argument(
        "--no-shorten", default=False, action="store_true",
        help="do not shorten data dumps in logs")
    parser.add_argument(
        "--serial", metavar="SERIAL", type=str, default=None,
        help="use device with serial number SERIAL (default: first unclaimed device)")
    parser.add_argument(
        "--timeout", metavar="SECONDS", type=float, default=1.0,
        help="fail a USB transfer after SECONDS (default: %(default)s)")
    parser.add_argument(
        "--simulate", default=False, action="store_true",
        help="(advanced) use a simulated device instead of USB hardware")

    subparsers = parser.add_subparsers(dest="action", metavar="COMMAND", required=True)

    subparsers.add_parser(
        "list", formatter_class=TextHelpFormatter,
        help="list devices connected to the system")

    subparsers.add_parser(
        "info", formatter_class=TextHelpFormatter,
        help="show hardware, firmware and microcode versions and capabilities")

    p_load = subparsers.add_parser(
        "load-microcode", formatter_class=TextHelpFormatter,
        help="load an FPGA microcode bitstream")
    p_load.add_argument(
        "bitstream", metavar="FILENAME", type=argparse.FileType("rb"),
        help="read RBF bitstream from FILENAME")

    subparsers.add_parser(
        "status", formatter_class=TextHelpFormatter,
        help="show drive and acquisition status")

    p_seek = subparsers.add_parser(
        "seek", formatter_class=TextHelpFormatter,
        help="position the drive head")
    p_seek.add_argument(
        "--rate", metavar="US", type=step_rate, default=None,
        help="set step pulse period to US microseconds first (resolution: 250 us)")
    p_seek.add_argument(
        "--recalibrate", metavar="STEPS", type=int, nargs="?", const=100, default=None,
        help="seek to track 0, issuing at most STEPS steps (default: %(const)s)")
    g_seek_target = p_seek.add_mutually_exclusive_group()
    g_seek_target.add_argument(
        "--track", metavar="TRACK", type=int, default=None,
        help="seek to track TRACK")
    g_seek_target.add_argument(
        "--relative", metavar="STEPS", type=int, default=None,
        help="move head by STEPS steps (negative values move towards track 0)")

    p_index = subparsers.add_parser(
        "index", formatter_class=TextHelpFormatter,
        help="measure disc rotation speed")
    p_index.add_argument(
        "--wait", metavar="SECONDS", type=float, nargs="?", const=1.0, default=None,
        help="wait up to SECONDS for a fresh measurement (default: %(const)s)")

    p_ram_test = subparsers.add_parser(
        "ram-test", formatter_class=TextHelpFormatter,
        help="write and read back acquisition RAM")
    p_ram_test.add_argument(
        "--length", metavar="BYTES", type=lambda arg: int(arg, 0), default=0x10000,
        help="test the first BYTES bytes (default: %(default)#x)")

    return parser


class TerminalFormatter(logging.Formatter):
    DEFAULT_COLORS = {
        "TRACE"   : "\033[0m",
        "DEBUG"   : "\033[36m",
        "INFO"    : "\033[1m",
        "WARNING" : "\033[1;33m",
        "ERROR"   : "\033[1;31m",
        "CRITICAL": "\033[1;41m",
    }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.colors = dict(self.DEFAULT_COLORS)
        for color_override in os.getenv("DISCFERRET_COLORS", "").split(":"):
            if color_override:
                level, color = color_override.split("=", 2)
                self.colors[level] = f"\033[{color}m"

    def format(self, record):
        color = self.colors.get(record.levelname, "")
        # discferret.device.hardware → df.device.hardware
        record.name = record.name.replace("discferret.", "df.")
        return f"{color}{super().format(record)}\033[0m"


def create_logger():
    root_logger = logging.getLogger()

    term_formatter_args = {"style": "{",
        "fmt": "{levelname[0]:s}: {name:s}: {message:s}"}
    term_handler = logging.StreamHandler()
    if sys.stderr.isatty() and sys.platform != 'win32':
        term_handler.setFormatter(TerminalFormatter(**term_formatter_args))
    else:
        term_handler.setFormatter(logging.Formatter(**term_formatter_args))
    root_logger.addHandler(term_handler)
    return term_handler


def configure_logger(args, term_handler):
    root_logger = logging.getLogger()

    file_formatter_args = {"style": "{",
        "fmt": "[{asctime:s}] {levelname:s}: {name:s}: {message:s}"}
    level = logging.INFO + args.quiet * 10 - args.verbose * 10
    if level < 0 or args.no_shorten:
        dump_hex.limit = None

    if args.log_file:
        file_handler = logging.StreamHandler(args.log_file)
        file_handler.setFormatter(logging.Formatter(**file_formatter_args))
        root_logger.addHandler(file_handler)
        term_handler.setLevel(level)
        root_logger.setLevel(logging.TRACE)
    else:
        root_logger.setLevel(level)


def create_context(args):
    if args.simulate:
        from .device.simulation import DiscFerretSimulationContext, DiscFerretSimulationDevice
        return DiscFerretContext(
            lambda: DiscFerretSimulationContext([DiscFerretSimulationDevice(head_track=17)]))
    else:
        return DiscFerretContext()


def format_status(status):
    flags = [
        ("INDEX",          STATUS_INDEX),
        ("TRACK0",         STATUS_TRACK0),
        ("WRITE_PROTECT",  STATUS_WRITE_PROTECT),
        ("DISC_CHANGE",    STATUS_DISC_CHANGE),
        ("DENSITY",        STATUS_DENSITY),
        ("STEPPING",       STATUS_STEPPING),
        ("RAM_EMPTY",      STATUS_RAM_EMPTY),
        ("RAM_FULL",       STATUS_RAM_FULL),
        ("TRACK0_HIT",     STATUS_TRACK0_HIT),
        ("NEW_INDEX_MEAS", STATUS_NEW_INDEX_MEAS),
    ]
    names = [name for name, mask in flags if status & mask]
    acquisition = {
        STATUS_ACQ_IDLE:      "idle",
        STATUS_ACQ_ACQUIRING: "acquiring",
        STATUS_ACQ_WAITING:   "waiting",
        STATUS_ACQ_WRITING:   "writing",
    }.get(status & STATUS_ACQSTATUS_MASK, "unknown")
    return f"{status:#06x} [{' '.join(names) or '-'}] acquisition {acquisition}"


def run_command(context, args):
    if args.action == "list":
        for descriptor in context.find_devices():
            print("\t".join([
                descriptor.serial_number or "(no serial)",
                descriptor.location,
                descriptor.manufacturer_name or "",
                descriptor.product_name or "",
            ]))
        return 0

    with context.open(args.serial, timeout=args.timeout) as device:
        if args.action == "info":
            info = device.get_info()
            print(f"Product:        {info.manufacturer_name or '?'} {info.product_name or '?'}")
            print(f"Serial number:  {info.serial_number or '?'}")
            print(f"Hardware:       {info.hardware_rev}")
            print(f"Firmware:       {info.firmware_ver:#06x}")
            print(f"Microcode:      type {info.microcode_type:#06x} "
                  f"version {info.microcode_ver:#06x}")
            capabilities = device.capabilities
            print(f"Fast RAM:       {'yes' if capabilities.has_fast_ram_access else 'no'}")
            if capabilities.has_index_freq_sense:
                print(f"Index timing:   {capabilities.index_freq_multiplier * 1e6:g} us/count" +
                      (", new-measurement flag"
                       if capabilities.has_index_freq_avail_flag else ""))
            else:
                print("Index timing:   no")
            print(f"Track 0 flag:   {'yes' if capabilities.has_track0_flag else 'no'}")

        if args.action == "load-microcode":
            with args.bitstream as f:
                bitstream = f.read()
            device.fpga_load_bitstream(bitstream)
            info = device.version_info
            logger.info("microcode type %#06x version %#06x running",
                        info.microcode_type, info.microcode_ver)

        if args.action == "status":
            print(format_status(device.get_status()))

        if args.action == "seek":
            if args.rate is not None:
                device.seek_set_rate(args.rate)
            if args.recalibrate is not None:
                device.recalibrate(args.recalibrate)
                logger.info("recalibrated to track 0")
            result = None
            if args.track is not None and args.track != device.current_track:
                result = device.seek_absolute(args.track)
            elif args.relative is not None:
                result = device.seek_relative(args.relative)
            if result == SeekResult.TrackUnknown:
                logger.warning("head moved, but current track is unknown")
            if device.current_track is None:
                print("track unknown")
            else:
                print(f"track {device.current_track}")

        if args.action == "index":
            if args.wait is None:
                rpm = device.get_index_frequency()
            else:
                rpm = device.get_index_frequency(wait=True, timeout=args.wait)
            print(f"{rpm:.2f} RPM")

        if args.action == "ram-test":
            pattern = bytes((index * 7 + (index >> 8)) & 0xff for index in range(args.length))
            device.ram_addr_set(0)
            device.ram_write(pattern)
            device.ram_addr_set(0)
            readback = device.ram_read(len(pattern))
            mismatches = sum(1 for a, b in zip(pattern, readback) if a != b)
            if mismatches:
                logger.error("RAM test failed: %d of %d bytes differ", mismatches, len(pattern))
                return 1
            logger.info("RAM test passed (%d bytes)", len(pattern))

    return 0


def main(argv=None):
    term_handler = create_logger()

    args = create_argparser().parse_args(argv)
    configure_logger(args, term_handler)

    try:
        with create_context(args) as context:
            return run_command(context, args)

    except DiscFerretError as e:
        logger.error(e)
        return 1

    # User interruption
    except KeyboardInterrupt:
        logger.warning("interrupted")
        return 130 # 128 + SIGINT


# This entry point is invoked via `console_scripts` when installing the package.
def run_main():
    exit(main())


# This entry point is invoked when running `python -m discferret.cli`.
if __name__ == "__main__":
    run_main()
