"""Keyboard protocol layer - USB transport, mode switching and firmware upload."""

from .usb_transport import (
    TransferChannel,
    PyUsbChannel,
    UsbContext,
    open_channel,
    describe_device,
    PACKET_SIZE,
    DEFAULT_TIMEOUT_MS,
)
from .firmware_protocol import (
    FirmwareUploader,
    upload_firmware,
    build_begin_packet,
    build_checksum_request_packet,
    build_toggle_mode_packet,
    chunk_firmware,
    parse_checksum_response,
    CMD_BEGIN_UPLOAD,
    CMD_REQUEST_CHECKSUM,
    CMD_TOGGLE_MODE,
)
from .mode import (
    Mode,
    ModeFilter,
    ModeController,
    classify,
    is_tek,
    find_keyboard,
)

__all__ = [
    # Transport
    "TransferChannel",
    "PyUsbChannel",
    "UsbContext",
    "open_channel",
    "describe_device",
    "PACKET_SIZE",
    "DEFAULT_TIMEOUT_MS",
    # Firmware protocol
    "FirmwareUploader",
    "upload_firmware",
    "build_begin_packet",
    "build_checksum_request_packet",
    "build_toggle_mode_packet",
    "chunk_firmware",
    "parse_checksum_response",
    "CMD_BEGIN_UPLOAD",
    "CMD_REQUEST_CHECKSUM",
    "CMD_TOGGLE_MODE",
    # Mode switching
    "Mode",
    "ModeFilter",
    "ModeController",
    "classify",
    "is_tek",
    "find_keyboard",
]
