"""
TEK Firmware Upload Protocol Implementation

Every command and data block travels as one 64-byte packet over a class
SET_REPORT control request; the only response is the checksum report.

Protocol sequence (device already in program mode):
1. Send begin packet (0x33, firmware length big-endian in bytes 5-6)
2. Send the firmware in 64-byte packets, in address order, last one
   zero-padded (the device has no address field in this phase)
3. Send checksum request (0x22, flag 0x02 in byte 6)
4. Read the response; bytes 0-1 hold the big-endian 16-bit checksum
5. Compare with the 16-bit truncated sum of all firmware bytes
"""

import logging
from typing import Any, Callable, List, Optional, Tuple

from tek_flasher.hex_file import FirmwareImage, firmware_checksum
from tek_flasher.errors import ChecksumMismatchError, IncompleteChecksumResponseError
from .usb_transport import (
    PACKET_SIZE,
    ChannelFactory,
    PyUsbChannel,
    TransferChannel,
    open_channel,
)

logger = logging.getLogger(__name__)

# Packet opcodes (byte 0)
CMD_BEGIN_UPLOAD = 0x33
CMD_REQUEST_CHECKSUM = 0x22
CMD_TOGGLE_MODE = 0x44

CHECKSUM_FLAG = 0x02

REFLASH_HINT = (
    "You should flash the keyboard again, to make sure the image is properly "
    "written. If the problem persists, your keyboard's flash chip might be broken."
)


def build_packet(opcode: int, fields: Optional[dict] = None) -> bytes:
    """
    Build a 64-byte command packet.

    Args:
        opcode: Command byte placed at offset 0
        fields: Optional {offset: byte} values to set

    Returns:
        Complete packet as bytes
    """
    packet = bytearray(PACKET_SIZE)
    packet[0] = opcode
    for offset, value in (fields or {}).items():
        packet[offset] = value & 0xFF
    return bytes(packet)


def build_begin_packet(firmware_length: int) -> bytes:
    """Begin-upload packet carrying the firmware length in bytes 5-6."""
    return build_packet(
        CMD_BEGIN_UPLOAD,
        {5: (firmware_length >> 8) & 0xFF, 6: firmware_length & 0xFF},
    )


def build_checksum_request_packet() -> bytes:
    return build_packet(CMD_REQUEST_CHECKSUM, {6: CHECKSUM_FLAG})


def build_toggle_mode_packet() -> bytes:
    return build_packet(CMD_TOGGLE_MODE)


def chunk_firmware(data: bytes, chunk_size: int = PACKET_SIZE) -> List[Tuple[int, bytes]]:
    """
    Split firmware into (offset, packet) tuples.

    The final packet is right-padded with zeroes to *chunk_size*.
    """
    chunks: List[Tuple[int, bytes]] = []
    for offset in range(0, len(data), chunk_size):
        chunk = data[offset:offset + chunk_size]
        if len(chunk) < chunk_size:
            chunk = chunk + bytes(chunk_size - len(chunk))
        chunks.append((offset, chunk))
    return chunks


def parse_checksum_response(response: bytes) -> int:
    """
    Extract the device checksum from a response packet.

    Raises:
        IncompleteChecksumResponseError: If fewer than 2 bytes were returned
    """
    if len(response) < 2:
        raise IncompleteChecksumResponseError(
            f"Keyboard gave incomplete result when checking for the checksum "
            f"({len(response)} bytes). Cannot verify checksum!"
        )
    return (response[0] << 8) | response[1]


class FirmwareUploader:
    """
    Handles firmware upload and verification over an open channel.

    Short writes never abort the upload; they are collected in
    ``warnings`` and the final checksum comparison decides the outcome.
    """

    def __init__(self, channel: TransferChannel):
        self.channel = channel
        self.warnings: List[str] = []

    def _send(self, packet: bytes, what: str) -> int:
        written = self.channel.write_packet(packet)
        if written != PACKET_SIZE:
            message = f"Not all bytes have been written {what} ({written}/{PACKET_SIZE})"
            logger.warning("%s! %s", message, REFLASH_HINT)
            self.warnings.append(message)
        return written

    def send_begin(self, firmware_length: int) -> None:
        """Announce the upload and its length."""
        if firmware_length > 0xFFFF:
            logger.warning(
                "Firmware is %d bytes; the length field only carries the low 16 bits",
                firmware_length,
            )
        logger.info("Requesting write access for %d bytes...", firmware_length)
        self._send(build_begin_packet(firmware_length), "when requesting write access")

    def send_firmware(
        self,
        data: bytes,
        progress_cb: Optional[Callable[[int, int], None]] = None,
    ) -> int:
        """
        Stream firmware packets in address order.

        Args:
            data: Firmware bytes
            progress_cb: Optional callback(bytes_sent, total_bytes)

        Returns:
            Number of packets sent
        """
        total = len(data)
        chunks = chunk_firmware(data)
        logger.info("Sending %d bytes in %d packets...", total, len(chunks))

        for offset, packet in chunks:
            self._send(packet, f"at offset {offset}")
            if progress_cb:
                progress_cb(min(offset + PACKET_SIZE, total), total)

        return len(chunks)

    def request_checksum(self) -> int:
        """Ask the device for its checksum and return it."""
        logger.info("Requesting checksum...")
        self._send(build_checksum_request_packet(), "when requesting checksum")
        return parse_checksum_response(self.channel.read_packet())

    def verify(self, data: bytes) -> int:
        """
        Compare the device checksum with the firmware checksum.

        Returns:
            The verified checksum

        Raises:
            IncompleteChecksumResponseError: Response too short
            ChecksumMismatchError: Checksums differ
        """
        expected = firmware_checksum(data)
        actual = self.request_checksum()
        if actual != expected:
            logger.error("Programming failed: checksum mismatch! %s", REFLASH_HINT)
            raise ChecksumMismatchError(expected, actual)
        logger.info("Checksum OK! (0x%04X)", actual)
        return actual

    def upload(
        self,
        image: FirmwareImage,
        progress_cb: Optional[Callable[[int, int], None]] = None,
    ) -> int:
        """
        Complete upload workflow.

        Returns:
            The verified checksum
        """
        self.send_begin(len(image.data))
        self.send_firmware(image.data, progress_cb)
        return self.verify(image.data)


def upload_firmware(
    device: Any,
    image: FirmwareImage,
    channel_factory: ChannelFactory = PyUsbChannel,
    progress_cb: Optional[Callable[[int, int], None]] = None,
    warnings: Optional[List[str]] = None,
    **channel_kwargs: Any,
) -> int:
    """
    Convenience function to open *device* and upload *image*.

    Args:
        device: Device in program mode
        image: Parsed firmware
        channel_factory: Channel class/factory
        progress_cb: Optional progress callback
        warnings: Optional list that receives short-write warnings
        **channel_kwargs: interface / timeout_ms for the channel

    Returns:
        The verified checksum
    """
    with open_channel(device, channel_factory, **channel_kwargs) as channel:
        uploader = FirmwareUploader(channel)
        try:
            return uploader.upload(image, progress_cb)
        finally:
            if warnings is not None:
                warnings.extend(uploader.warnings)
