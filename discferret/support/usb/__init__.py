"""Abstract synchronous USB backend interface."""

from typing import Optional
from abc import ABCMeta, abstractmethod


__all__ = [
    "Error",
    "ErrorNotSupported",
    "ErrorNotFound",
    "ErrorNotOpen",
    "ErrorAccess",
    "ErrorBusy",
    "ErrorOutOfMemory",
    "ErrorDisconnected",
    "ErrorStall",
    "ErrorTimeout",
    "ErrorBabble",
    "AbstractContext",
    "AbstractDevice",
]


class Error(Exception):
    pass


class ErrorNotSupported(Error):
    pass


class ErrorNotFound(Error):
    pass


class ErrorNotOpen(Error):
    pass


class ErrorAccess(Error):
    pass


class ErrorBusy(Error):
    pass


class ErrorOutOfMemory(Error):
    pass


class ErrorDisconnected(Error):
    pass


class ErrorStall(Error):
    pass


class ErrorTimeout(Error):
    pass


class ErrorBabble(Error):
    pass


class AbstractContext(metaclass=ABCMeta):
    @abstractmethod
    def get_devices(self) -> list["AbstractDevice"]:
        pass

    @abstractmethod
    def close(self):
        pass


class AbstractDevice(metaclass=ABCMeta):
    @property
    @abstractmethod
    def vendor_id(self) -> int:
        pass

    @property
    @abstractmethod
    def product_id(self) -> int:
        pass

    @property
    @abstractmethod
    def manufacturer_name(self) -> Optional[str]:
        pass

    @property
    @abstractmethod
    def product_name(self) -> Optional[str]:
        pass

    @property
    @abstractmethod
    def serial_number(self) -> Optional[str]:
        pass

    @property
    @abstractmethod
    def location(self) -> str:
        pass

    @abstractmethod
    def open(self):
        pass

    @abstractmethod
    def close(self):
        pass

    @abstractmethod
    def claim_interface(self, interface: int):
        pass

    @abstractmethod
    def release_interface(self, interface: int):
        pass

    @abstractmethod
    def bulk_transfer_in(self, endpoint: int, length: int, timeout: float) -> bytes:
        """Read up to ``length`` bytes from ``endpoint``, waiting at most ``timeout`` seconds."""

    @abstractmethod
    def bulk_transfer_out(self, endpoint: int, data: bytes, timeout: float) -> int:
        """Write ``data`` to ``endpoint`` and return the number of bytes actually sent."""
