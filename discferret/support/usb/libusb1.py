from typing import Optional
import functools

import usb1

from . import *
from . import __all__ as _abstract_all


__all__ = _abstract_all + ["Context", "Device"]


def _map_exceptions(f):
    def map_error(error):
        match error:
            case usb1.USBErrorInvalidParam() | usb1.USBErrorNotSupported():
                raise ErrorNotSupported() from None
            case usb1.USBErrorNotFound():
                raise ErrorNotFound() from None
            case usb1.USBErrorAccess():
                raise ErrorAccess() from None
            case usb1.USBErrorBusy():
                raise ErrorBusy() from None
            case usb1.USBErrorNoMem():
                raise ErrorOutOfMemory() from None
            case usb1.USBErrorNoDevice():
                raise ErrorDisconnected() from None
            case usb1.USBErrorPipe():
                raise ErrorStall() from None
            case usb1.USBErrorTimeout():
                raise ErrorTimeout() from None
            case usb1.USBErrorOverflow():
                raise ErrorBabble() from None
            case _:
                raise Error(str(error)) from error

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except usb1.USBError as err:
            map_error(err)
    return wrapper


def _timeout_ms(timeout: float) -> int:
    # libusb treats a zero timeout as "wait forever"
    return max(1, round(timeout * 1000))


class Context(AbstractContext):
    @_map_exceptions
    def __init__(self):
        self._impl = usb1.USBContext()

    @_map_exceptions
    def get_devices(self) -> list["Device"]:
        return [
            Device(device)
            for device in self._impl.getDeviceIterator(skip_on_error=True)
        ]

    @_map_exceptions
    def close(self):
        self._impl.close()


class Device(AbstractDevice):
    def __init__(self, _impl_device: usb1.USBDevice):
        self._impl_device = _impl_device
        self._impl_handle: Optional[usb1.USBDeviceHandle] = None

    @property
    def _ensure_open(self) -> usb1.USBDeviceHandle:
        if self._impl_handle is None:
            raise ErrorNotOpen()
        return self._impl_handle

    @property
    @_map_exceptions
    def vendor_id(self) -> int:
        return self._impl_device.getVendorID()

    @property
    @_map_exceptions
    def product_id(self) -> int:
        return self._impl_device.getProductID()

    @property
    @_map_exceptions
    def manufacturer_name(self) -> Optional[str]:
        return self._ensure_open.getASCIIStringDescriptor(
            self._impl_device.getManufacturerDescriptor())

    @property
    @_map_exceptions
    def product_name(self) -> Optional[str]:
        return self._ensure_open.getASCIIStringDescriptor(
            self._impl_device.getProductDescriptor())

    @property
    @_map_exceptions
    def serial_number(self) -> Optional[str]:
        return self._ensure_open.getASCIIStringDescriptor(
            self._impl_device.getSerialNumberDescriptor())

    @property
    @_map_exceptions
    def location(self) -> str:
        return f"{self._impl_device.getBusNumber():03d}/{self._impl_device.getDeviceAddress():03d}"

    @_map_exceptions
    def open(self):
        if self._impl_handle is None:
            self._impl_handle = self._impl_device.open()
            try:
                self._impl_handle.setAutoDetachKernelDriver(True)
            except usb1.USBErrorNotSupported:
                pass

    @_map_exceptions
    def close(self):
        if self._impl_handle is not None:
            self._impl_handle.close()
            self._impl_handle = None

    @_map_exceptions
    def claim_interface(self, interface: int):
        self._ensure_open.claimInterface(interface)

    @_map_exceptions
    def release_interface(self, interface: int):
        self._ensure_open.releaseInterface(interface)

    @_map_exceptions
    def bulk_transfer_in(self, endpoint: int, length: int, timeout: float) -> bytes:
        return bytes(self._ensure_open.bulkRead(endpoint | usb1.ENDPOINT_IN, length,
                                                timeout=_timeout_ms(timeout)))

    @_map_exceptions
    def bulk_transfer_out(self, endpoint: int, data: bytes, timeout: float) -> int:
        return self._ensure_open.bulkWrite(endpoint & ~usb1.ENDPOINT_IN, data,
                                           timeout=_timeout_ms(timeout))
