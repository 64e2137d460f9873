"""
Centralized parsing helpers for firmware files and device ids.

Both the CLI and the flashing workflow must import these helpers rather
than re-implement them.
"""

from pathlib import Path
from typing import Optional, Union

from tek_flasher.hex_file import FirmwareImage, parse_hex_file
from tek_flasher.models.registry import DeviceIdentity


def parse_firmware(path: Union[str, Path]) -> FirmwareImage:
    """
    Parse a firmware hex file.

    This is the single source of truth for firmware loading.
    Wraps the record parser from hex_file.

    Raises:
        FileNotFoundError: If the file does not exist
        HexParseError: If the file is malformed
    """
    return parse_hex_file(path)


def parse_device_id(value: Optional[str]) -> Optional[DeviceIdentity]:
    """
    Parse a USB identity given as "VVVV:PPPP".

    Accepts:
        - Plain hex halves: "0e6a:030c"
        - 0x-prefixed halves: "0x0E6A:0x030C"
        - None or empty for "use the model default"

    Returns:
        DeviceIdentity, or None if value is None or empty.

    Raises:
        ValueError: If value cannot be parsed.
    """
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    try:
        vendor, product = value.split(":")
        vendor_id = int(vendor, 16)
        product_id = int(product, 16)
    except ValueError:
        raise ValueError(
            f"Invalid device id '{value}'. Use vendor:product in hex, e.g. 0e6a:030c."
        )

    if not (0 <= vendor_id <= 0xFFFF and 0 <= product_id <= 0xFFFF):
        raise ValueError(f"Invalid device id '{value}'. Ids are 16-bit values.")

    return DeviceIdentity(vendor_id=vendor_id, product_id=product_id)
