__all__ = [
    "DiscFerretError",
    "DiscFerretUsageError", "DiscFerretNotInitializedError", "DiscFerretAlreadyInitializedError",
    "DiscFerretBadParameterError", "DiscFerretHandleRequiredError",
    "DiscFerretResourceError", "DiscFerretNoMatchError", "DiscFerretOutOfMemoryError",
    "DiscFerretTransportError", "DiscFerretTimeoutError",
    "DiscFerretProtocolError",
    "DiscFerretHardwareError", "DiscFerretFPGANotConfiguredError", "DiscFerretNotSupportedError",
    "DiscFerretRecalibrationError", "DiscFerretTrackUnknownError",
]


class DiscFerretError(Exception):
    """Base class of every error raised by the DiscFerret library."""


class DiscFerretUsageError(DiscFerretError):
    """The library was called in a way that can never succeed."""


class DiscFerretNotInitializedError(DiscFerretUsageError):
    pass


class DiscFerretAlreadyInitializedError(DiscFerretUsageError):
    pass


class DiscFerretBadParameterError(DiscFerretUsageError, ValueError):
    pass


class DiscFerretHandleRequiredError(DiscFerretUsageError):
    """An operation was attempted on a device that is not open."""


class DiscFerretResourceError(DiscFerretError):
    pass


class DiscFerretNoMatchError(DiscFerretResourceError):
    """No unclaimed device matched the search criteria."""


class DiscFerretOutOfMemoryError(DiscFerretResourceError):
    pass


class DiscFerretTransportError(DiscFerretError):
    """An exchange with the device failed, or moved an unexpected number of bytes."""


class DiscFerretTimeoutError(DiscFerretTransportError):
    pass


class DiscFerretProtocolError(DiscFerretError):
    """The device returned a malformed frame or an unexpected status byte."""


class DiscFerretHardwareError(DiscFerretError):
    pass


class DiscFerretFPGANotConfiguredError(DiscFerretError):
    pass


class DiscFerretNotSupportedError(DiscFerretError):
    """The feature is not available with the firmware or microcode on this device."""


class DiscFerretRecalibrationError(DiscFerretError):
    """Track zero was not reached within the step budget."""


class DiscFerretTrackUnknownError(DiscFerretError):
    """The head position is unknown; the drive must be recalibrated."""
