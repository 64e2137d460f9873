"""
TEK Flasher - Firmware flashing utility for TEK keyboards

Hex image parsing, mode switching, chunked upload and checksum verification.
"""

__version__ = "0.1.0"

from tek_flasher.hex_file import FirmwareImage, parse_hex_file
from tek_flasher.core.actions import FlashOrchestrator, flash_firmware

__all__ = [
    "FirmwareImage",
    "parse_hex_file",
    "FlashOrchestrator",
    "flash_firmware",
    "__version__",
]
