"""
TEK mode detection and switching.

A TEK keyboard enumerates under its normal-mode id while typing and under
the id one below it while in program mode. The mode is never stored; it is
re-derived from the device descriptor at every check.
"""

import logging
from enum import Enum
from typing import Any, Iterable

from tek_flasher.errors import AmbiguousDeviceError, DeviceNotFoundError
from tek_flasher.models.registry import TEK, DeviceIdentity
from .firmware_protocol import build_toggle_mode_packet
from .usb_transport import (
    PACKET_SIZE,
    ChannelFactory,
    PyUsbChannel,
    UsbContext,
    describe_device,
    open_channel,
)

logger = logging.getLogger(__name__)


class Mode(Enum):
    """Observed device state."""
    NORMAL = "normal"
    PROGRAM = "program"
    UNRELATED = "unrelated"


class ModeFilter(Enum):
    """Which TEK modes a device check accepts."""
    NORMAL = "normal"
    PROGRAM = "program"
    EITHER = "either"


def device_identity(device: Any) -> DeviceIdentity:
    """Read the vendor:product pair from a device descriptor."""
    return DeviceIdentity(vendor_id=device.idVendor, product_id=device.idProduct)


def classify(device: Any, identity: DeviceIdentity = TEK.identity) -> Mode:
    """
    Classify a device against a normal-mode identity.

    Args:
        device: Object exposing idVendor / idProduct
        identity: Normal-mode identity of the keyboard

    Returns:
        Mode.NORMAL, Mode.PROGRAM or Mode.UNRELATED
    """
    combined = device_identity(device).combined
    if combined == identity.combined:
        return Mode.NORMAL
    if combined == identity.program_identity().combined:
        return Mode.PROGRAM
    return Mode.UNRELATED


def is_tek(
    device: Any,
    mode: ModeFilter = ModeFilter.EITHER,
    identity: DeviceIdentity = TEK.identity,
) -> bool:
    """True if *device* is a TEK keyboard in a mode accepted by *mode*."""
    observed = classify(device, identity)
    if observed == Mode.UNRELATED:
        return False
    if mode == ModeFilter.EITHER:
        return True
    return observed.value == mode.value


def find_keyboard(devices: Iterable[Any], identity: DeviceIdentity = TEK.identity) -> Any:
    """
    Pick the single TEK keyboard out of *devices*.

    Raises:
        DeviceNotFoundError: No candidate in either mode
        AmbiguousDeviceError: More than one candidate
    """
    candidates = [d for d in devices if is_tek(d, ModeFilter.EITHER, identity)]
    if not candidates:
        raise DeviceNotFoundError("No TEK device found!")
    if len(candidates) > 1:
        found = ", ".join(describe_device(d) for d in candidates)
        raise AmbiguousDeviceError(f"More than one TEK device found! ({found})")
    return candidates[0]


class ModeController:
    """
    Detects and toggles the keyboard between normal and program mode.

    Example:
        controller = ModeController(TEK.identity)
        device = controller.locate(UsbContext())
        if controller.classify(device) == Mode.NORMAL:
            controller.switch(device)
    """

    def __init__(
        self,
        identity: DeviceIdentity = TEK.identity,
        channel_factory: ChannelFactory = PyUsbChannel,
        interface: int = 0,
        timeout_ms: int = 1000,
    ):
        self.identity = identity
        self.channel_factory = channel_factory
        self.interface = interface
        self.timeout_ms = timeout_ms

    def classify(self, device: Any) -> Mode:
        return classify(device, self.identity)

    def is_tek(self, device: Any, mode: ModeFilter = ModeFilter.EITHER) -> bool:
        return is_tek(device, mode, self.identity)

    def locate(self, context: UsbContext) -> Any:
        """Find the one TEK keyboard visible through *context*."""
        device = find_keyboard(context.devices(), self.identity)
        logger.debug("Found %s (%s mode)", describe_device(device), self.classify(device).value)
        return device

    def switch(self, device: Any) -> int:
        """
        Send the toggle-mode command.

        A short write is logged but not raised; the caller re-checks the
        mode after the device re-enumerates.

        Returns:
            Bytes written by the control transfer

        Raises:
            TransferError: If the device cannot be opened or written
        """
        with open_channel(
            device,
            self.channel_factory,
            interface=self.interface,
            timeout_ms=self.timeout_ms,
        ) as channel:
            logger.info("Send switch command!")
            written = channel.write_packet(build_toggle_mode_packet())

        if written != PACKET_SIZE:
            logger.warning(
                "Not all bytes were written switching the mode! (%d/%d)",
                written,
                PACKET_SIZE,
            )
        return written
