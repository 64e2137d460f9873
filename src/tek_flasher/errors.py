"""
Exception hierarchy for TEK Flasher.

Every failure the flashing workflow can report derives from FlasherError so
the orchestrator can catch a stage's error without swallowing programming
mistakes (TypeError, AttributeError, ...).
"""

from enum import Enum
from typing import Optional


class FlasherError(Exception):
    """Base exception for all flasher errors"""
    pass


class ParseErrorKind(Enum):
    """Reasons a firmware hex file is rejected."""
    EMPTY_LINE = "empty_line"
    DATA_AFTER_END = "data_after_end"
    INVALID_HEX = "invalid_hex"
    LENGTH_MISMATCH = "length_mismatch"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    UNKNOWN_RECORD_TYPE = "unknown_record_type"
    MISSING_END_OF_FILE = "missing_end_of_file"


_PARSE_MESSAGES = {
    ParseErrorKind.EMPTY_LINE: "Unexpected empty line",
    ParseErrorKind.DATA_AFTER_END: "Unexpected data after firmware end",
    ParseErrorKind.INVALID_HEX: "Invalid hex data",
    ParseErrorKind.LENGTH_MISMATCH: "Line length mismatch",
    ParseErrorKind.CHECKSUM_MISMATCH: "Checksum mismatch",
    ParseErrorKind.UNKNOWN_RECORD_TYPE: "Unknown data type",
    ParseErrorKind.MISSING_END_OF_FILE: "Unexpected end of file",
}


class HexParseError(FlasherError):
    """
    Raised when a firmware hex file is malformed.

    Attributes:
        kind: Which rule the input broke
        line: 1-based line number, or None for whole-file errors
    """
    def __init__(self, kind: ParseErrorKind, line: Optional[int] = None, detail: str = ""):
        self.kind = kind
        self.line = line
        self.detail = detail
        message = _PARSE_MESSAGES[kind]
        if line is not None:
            message = f"{message} in line {line}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class DeviceError(FlasherError):
    """Device discovery, mode or transfer failure"""
    pass


class DeviceNotFoundError(DeviceError):
    """No TEK device in either mode is connected"""
    pass


class AmbiguousDeviceError(DeviceError):
    """More than one TEK device is connected"""
    pass


class UnexpectedModeError(DeviceError):
    """Device is in a mode the current stage did not expect"""
    pass


class ModeSwitchError(DeviceError):
    """Device did not leave normal mode after the toggle command"""
    pass


class TransferError(DeviceError):
    """Open, claim or control transfer failed (including timeouts)"""
    pass


class UploadError(FlasherError):
    """Firmware upload or verification failure"""
    pass


class IncompleteChecksumResponseError(UploadError):
    """Device answered the checksum request with fewer than 2 bytes"""
    pass


class ChecksumMismatchError(UploadError):
    """Device-computed checksum differs from the firmware checksum"""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Programming failed: checksum mismatch "
            f"(expected 0x{expected:04X}, device reported 0x{actual:04X})"
        )
