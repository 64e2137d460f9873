"""
TEK USB Transport Layer

Handles low-level USB control transfers with TEK keyboards.

This module provides:
- Device discovery through an explicit UsbContext
- Interface claim / kernel driver detach and re-attach
- 64-byte packet writes and response reads over class control requests

The ``TransferChannel`` ABC abstracts the raw USB I/O so that tests can
inject a fake channel and no real hardware is needed.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional

import usb.core
import usb.util

from tek_flasher.errors import TransferError

logger = logging.getLogger(__name__)

PACKET_SIZE = 64
READ_BUFFER_SIZE = 4096
DEFAULT_TIMEOUT_MS = 1000
DEFAULT_INTERFACE = 0

# HID class requests (SET_REPORT / GET_REPORT) on a feature report
REQUEST_SET_REPORT = 0x09
REQUEST_GET_REPORT = 0x01
REPORT_VALUE = 0x0300
REPORT_INDEX = 0

REQUEST_TYPE_OUT = usb.util.build_request_type(
    usb.util.CTRL_OUT, usb.util.CTRL_TYPE_CLASS, usb.util.CTRL_RECIPIENT_INTERFACE
)
REQUEST_TYPE_IN = usb.util.build_request_type(
    usb.util.CTRL_IN, usb.util.CTRL_TYPE_CLASS, usb.util.CTRL_RECIPIENT_INTERFACE
)


class TransferChannel(ABC):
    """Abstract control-transfer channel to one device."""

    @abstractmethod
    def open(self, claim: bool = True) -> None:
        """Detach the kernel driver (best effort) and claim the interface."""

    @abstractmethod
    def close(self) -> None:
        """Release the interface and free the handle."""

    @abstractmethod
    def write_packet(self, packet: bytes) -> int:
        """Send one 64-byte packet.  Returns bytes transferred."""

    @abstractmethod
    def read_packet(self, length: int = READ_BUFFER_SIZE) -> bytes:
        """Read one response packet of up to *length* bytes."""

    @abstractmethod
    def attach_kernel_driver(self) -> None:
        """Hand the interface back to the kernel driver."""


class PyUsbChannel(TransferChannel):
    """
    Real USB channel using pyusb (libusb backend).

    Example:
        channel = PyUsbChannel(device)
        channel.open()
        channel.write_packet(packet)
        response = channel.read_packet()
        channel.close()
    """

    def __init__(
        self,
        device: Any,
        interface: int = DEFAULT_INTERFACE,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ):
        """
        Initialize channel.

        Args:
            device: pyusb ``usb.core.Device``
            interface: Interface number to claim (default 0)
            timeout_ms: Per-transfer timeout in milliseconds (default 1000)
        """
        self.device = device
        self.interface = interface
        self.timeout_ms = timeout_ms
        self._claimed = False

    def open(self, claim: bool = True) -> None:
        """
        Detach any kernel driver and claim the interface.

        A failed detach is logged and ignored: the interface may already
        be free. With ``claim=False`` the handle is opened without touching
        the interface, which is what the kernel driver re-attach needs.

        Raises:
            TransferError: If the interface cannot be claimed
        """
        if not claim:
            return

        logger.info("Detach kernel driver ...")
        try:
            self.device.detach_kernel_driver(self.interface)
            logger.info("Kernel driver detached.")
        except (usb.core.USBError, NotImplementedError) as e:
            logger.info("Kernel driver already detached. (%s)", e)

        logger.info("Claim interface %d ...", self.interface)
        try:
            usb.util.claim_interface(self.device, self.interface)
        except usb.core.USBError as e:
            raise TransferError(f"Cannot claim interface {self.interface}: {e}")
        self._claimed = True

    def close(self) -> None:
        """Release the interface and dispose of the device handle."""
        try:
            if self._claimed:
                usb.util.release_interface(self.device, self.interface)
        except usb.core.USBError as e:
            logger.debug("Release interface failed: %s", e)
        finally:
            self._claimed = False
            usb.util.dispose_resources(self.device)

    def write_packet(self, packet: bytes) -> int:
        """
        Send a packet with a class SET_REPORT control request.

        Raises:
            ValueError: If the packet is not 64 bytes
            TransferError: If the transfer fails or times out
        """
        if len(packet) != PACKET_SIZE:
            raise ValueError(f"Packet must be {PACKET_SIZE} bytes, got {len(packet)}")

        try:
            written = self.device.ctrl_transfer(
                REQUEST_TYPE_OUT,
                REQUEST_SET_REPORT,
                REPORT_VALUE,
                REPORT_INDEX,
                packet,
                timeout=self.timeout_ms,
            )
        except usb.core.USBError as e:
            raise TransferError(f"Write error: {e}")

        logger.debug(">>> %s", packet.hex().upper())
        return written

    def read_packet(self, length: int = READ_BUFFER_SIZE) -> bytes:
        """
        Read a response with a class GET_REPORT control request.

        Raises:
            TransferError: If the transfer fails or times out
        """
        try:
            data = self.device.ctrl_transfer(
                REQUEST_TYPE_IN,
                REQUEST_GET_REPORT,
                REPORT_VALUE,
                REPORT_INDEX,
                length,
                timeout=self.timeout_ms,
            )
        except usb.core.USBError as e:
            raise TransferError(f"Read error: {e}")

        data = bytes(data)
        logger.debug("<<< %s", data.hex().upper())
        return data

    def attach_kernel_driver(self) -> None:
        """
        Re-attach the kernel driver to the interface.

        Raises:
            TransferError: If the driver cannot be attached
        """
        try:
            self.device.attach_kernel_driver(self.interface)
        except (usb.core.USBError, NotImplementedError) as e:
            raise TransferError(f"Cannot reattach kernel driver: {e}")


class UsbContext:
    """
    Explicit device discovery context.

    Each flashing stage creates its own context so the device is
    re-enumerated after a mode switch.
    """

    def __init__(self, backend: Optional[Any] = None):
        self.backend = backend
        self._seen: List[Any] = []

    def devices(self) -> List[Any]:
        """Return every device currently visible on the bus."""
        try:
            found = list(usb.core.find(find_all=True, backend=self.backend))
        except usb.core.NoBackendError as e:
            raise TransferError(f"No USB backend available: {e}")
        self._seen.extend(found)
        return found

    def close(self) -> None:
        """Free handles of every device this context enumerated."""
        for device in self._seen:
            usb.util.dispose_resources(device)
        self._seen = []

    def __enter__(self) -> "UsbContext":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


ChannelFactory = Callable[..., TransferChannel]


@contextmanager
def open_channel(
    device: Any,
    channel_factory: ChannelFactory = PyUsbChannel,
    claim: bool = True,
    **kwargs: Any,
) -> Iterator[TransferChannel]:
    """
    Open a channel to *device* and close it on every exit path.

    Args:
        device: Device returned by UsbContext.devices()
        channel_factory: Channel class/factory (tests pass a fake)
        claim: Claim the interface after the kernel driver detach
        **kwargs: Passed to the factory (interface, timeout_ms)
    """
    logger.info("Open device ...")
    channel = channel_factory(device, **kwargs)
    try:
        channel.open(claim=claim)
        yield channel
    finally:
        channel.close()


def describe_device(device: Any) -> str:
    """Format a device like ``Bus 001 Device 004 ID 0e6a:030c``."""
    return (
        f"Bus {getattr(device, 'bus', 0) or 0:03d} "
        f"Device {getattr(device, 'address', 0) or 0:03d} "
        f"ID {device.idVendor:04x}:{device.idProduct:04x}"
    )
