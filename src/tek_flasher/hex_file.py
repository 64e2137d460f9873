"""
Firmware hex file parser for TEK keyboards.

Turns the record lines of a firmware file into one flat FirmwareImage.

Firmware line format (one record per line):

    :LLAAAATT<payload>SS

    LL    payload length
    AAAA  16-bit big-endian load address
    TT    record type (0x00 data, 0x01 end of file)
    SS    sum byte, chosen so all decoded bytes sum to 0 mod 256
"""

import binascii
import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Union

from tek_flasher.errors import HexParseError, ParseErrorKind

logger = logging.getLogger(__name__)

RECORD_DATA = 0x00
RECORD_END_OF_FILE = 0x01

INITIAL_IMAGE_SIZE = 64
RECORD_OVERHEAD = 5  # length + address(2) + type + sum


@dataclass(frozen=True)
class FirmwareImage:
    """
    Flat firmware image ready for upload.

    Attributes:
        data: Image bytes, zero-filled where no record wrote
        high_water: Highest address+length written by a data record
        records: Number of data records applied
    """
    data: bytes
    high_water: int = 0
    records: int = 0

    def __len__(self) -> int:
        return len(self.data)

    @property
    def checksum(self) -> int:
        """16-bit truncated sum of every image byte."""
        return firmware_checksum(self.data)

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.data).hexdigest()


def firmware_checksum(data: bytes) -> int:
    """Sum of all bytes, truncated to 16 bits after every addition."""
    checksum = 0
    for byte in data:
        checksum = (checksum + byte) & 0xFFFF
    return checksum


def _decode_line(line: Union[str, bytes], line_number: int) -> bytes:
    """Decode a record line (without the marker character) to bytes."""
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8", errors="strict")
        except UnicodeDecodeError as e:
            raise HexParseError(ParseErrorKind.INVALID_HEX, line_number, str(e))
    try:
        return binascii.unhexlify(line[1:])
    except (binascii.Error, ValueError) as e:
        raise HexParseError(ParseErrorKind.INVALID_HEX, line_number, str(e))


def parse_hex_lines(lines: Iterable[Union[str, bytes]]) -> FirmwareImage:
    """
    Parse firmware record lines into a flat image.

    The image starts at 64 bytes and doubles whenever a data record
    addresses past its end. The full grown buffer is returned.

    Args:
        lines: Record lines as text or raw bytes; trailing newlines are
            ignored. Bytes lines that are not valid UTF-8 are invalid hex.

    Returns:
        FirmwareImage

    Raises:
        HexParseError: On the first malformed line, or if no end-of-file
            record was seen
    """
    image = bytearray(INITIAL_IMAGE_SIZE)
    file_end = False
    high_water = 0
    records = 0

    for line_number, raw_line in enumerate(lines, start=1):
        line = raw_line.strip()
        if not line:
            raise HexParseError(ParseErrorKind.EMPTY_LINE, line_number)
        if file_end:
            raise HexParseError(ParseErrorKind.DATA_AFTER_END, line_number)

        linebytes = _decode_line(line, line_number)
        if not linebytes or linebytes[0] + RECORD_OVERHEAD != len(linebytes):
            raise HexParseError(ParseErrorKind.LENGTH_MISMATCH, line_number)

        if sum(linebytes) & 0xFF != 0:
            raise HexParseError(ParseErrorKind.CHECKSUM_MISMATCH, line_number)

        length = linebytes[0]
        address = (linebytes[1] << 8) | linebytes[2]
        record_type = linebytes[3]
        payload = linebytes[4:4 + length]

        if record_type == RECORD_DATA:
            end = address + len(payload)
            while end > len(image):
                image.extend(bytes(len(image)))
            image[address:end] = payload
            high_water = max(high_water, end)
            records += 1
        elif record_type == RECORD_END_OF_FILE:
            file_end = True
        else:
            raise HexParseError(
                ParseErrorKind.UNKNOWN_RECORD_TYPE,
                line_number,
                f"type 0x{record_type:02X}",
            )

    if not file_end:
        raise HexParseError(ParseErrorKind.MISSING_END_OF_FILE)

    logger.debug(
        "Parsed %d data records, image %d bytes (high water 0x%04X)",
        records,
        len(image),
        high_water,
    )
    return FirmwareImage(data=bytes(image), high_water=high_water, records=records)


def parse_hex_text(text: str) -> FirmwareImage:
    """Parse firmware records from a whole file's text."""
    return parse_hex_lines(text.splitlines())


def parse_hex_file(path: Union[str, Path]) -> FirmwareImage:
    """
    Read and parse a firmware hex file.

    Raises:
        FileNotFoundError: If the file does not exist
        HexParseError: If the file is malformed
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Firmware file not found: {path}")
    return parse_hex_lines(path.read_bytes().splitlines())
