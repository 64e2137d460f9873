"""
Standardized warning and message system for TEK Flasher.

Provides structured warning items with stable codes, and the per-stage
diagnostics the flashing workflow prints when a stage fails.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Dict, Any

from tek_flasher.errors import (
    AmbiguousDeviceError,
    ChecksumMismatchError,
    DeviceNotFoundError,
    HexParseError,
    IncompleteChecksumResponseError,
    ModeSwitchError,
    TransferError,
    UnexpectedModeError,
)


class MessageLevel(Enum):
    """Severity level for messages."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class WarningCode(Enum):
    """Stable warning codes for known conditions."""
    # Device warnings
    W_DEVICE_NOT_FOUND = "W_DEVICE_NOT_FOUND"
    W_DEVICE_AMBIGUOUS = "W_DEVICE_AMBIGUOUS"
    W_UNEXPECTED_MODE = "W_UNEXPECTED_MODE"
    W_MODE_SWITCH_FAILED = "W_MODE_SWITCH_FAILED"

    # Transfer warnings
    W_TRANSFER_ERROR = "W_TRANSFER_ERROR"
    W_SHORT_WRITE = "W_SHORT_WRITE"
    W_KERNEL_DRIVER = "W_KERNEL_DRIVER"

    # Verification warnings
    W_CHECKSUM_MISMATCH = "W_CHECKSUM_MISMATCH"
    W_CHECKSUM_INCOMPLETE = "W_CHECKSUM_INCOMPLETE"

    # Firmware file
    W_FIRMWARE_INVALID = "W_FIRMWARE_INVALID"

    # Generic
    W_UNKNOWN = "W_UNKNOWN"


REFLASH = (
    "Flash the keyboard again to make sure the image is properly written. "
    "If the problem persists, the keyboard's flash chip might be broken."
)

RECONNECT = "Unplug and reconnect the keyboard, then run the flasher again."

# Default remediation hints for each warning code
WARNING_REMEDIATIONS: Dict[WarningCode, str] = {
    WarningCode.W_DEVICE_NOT_FOUND:
        "Check the USB connection; run 'list-devices' to see what is connected.",
    WarningCode.W_DEVICE_AMBIGUOUS:
        "Disconnect all but one TEK keyboard before flashing.",
    WarningCode.W_UNEXPECTED_MODE:
        RECONNECT,
    WarningCode.W_MODE_SWITCH_FAILED:
        "Set DIP switch #5 to 'programmable' and run the flasher again.",
    WarningCode.W_TRANSFER_ERROR:
        "Check cable connection and USB permissions (udev rules or root).",
    WarningCode.W_SHORT_WRITE:
        REFLASH,
    WarningCode.W_KERNEL_DRIVER:
        "The kernel driver may already be attached. Otherwise, unplug and "
        "reconnect the keyboard.",
    WarningCode.W_CHECKSUM_MISMATCH:
        REFLASH,
    WarningCode.W_CHECKSUM_INCOMPLETE:
        REFLASH,
    WarningCode.W_FIRMWARE_INVALID:
        "Check that the firmware file is complete and was not edited.",
    WarningCode.W_UNKNOWN:
        "Check logs for more details.",
}


# Flashing stages, in execution order
STAGE_PREPARE = "prepare"
STAGE_PROGRAM = "program"
STAGE_FINISH = "finish"
STAGE_RELEASE = "release"
STAGES = (STAGE_PREPARE, STAGE_PROGRAM, STAGE_FINISH, STAGE_RELEASE)

STAGE_MESSAGES: Dict[str, str] = {
    STAGE_PREPARE:
        "Some error occurred during switching to programming mode: {error}. "
        "I will not program now but try to switch back.",
    STAGE_PROGRAM:
        "Some error occurred during programming the keyboard: {error}. "
        "Now trying to switch back to normal mode.",
    STAGE_FINISH:
        "Some error occurred during switching back to normal mode: {error}. "
        "Probably you need to reconnect your keyboard.",
    STAGE_RELEASE:
        "Some error occurred during reattaching the kernel driver: {error}. "
        "Maybe the kernel driver is already attached. Otherwise, you probably "
        "need to reconnect your keyboard.",
}


@dataclass
class WarningItem:
    """
    Structured warning message with stable code.

    Attributes:
        level: Severity (INFO, WARN, ERROR)
        code: Stable warning code for programmatic handling
        title: Short, user-facing title
        detail: Longer explanation of the issue
        remediation: Suggested action to resolve the issue
    """
    level: MessageLevel
    code: WarningCode
    title: str
    detail: str = ""
    remediation: str = ""

    def __post_init__(self):
        """Set default remediation if not provided."""
        if not self.remediation and self.code in WARNING_REMEDIATIONS:
            self.remediation = WARNING_REMEDIATIONS[self.code]

    @classmethod
    def info(cls, code: WarningCode, title: str, detail: str = "", remediation: str = "") -> "WarningItem":
        """Create an INFO-level warning."""
        return cls(MessageLevel.INFO, code, title, detail, remediation)

    @classmethod
    def warn(cls, code: WarningCode, title: str, detail: str = "", remediation: str = "") -> "WarningItem":
        """Create a WARN-level warning."""
        return cls(MessageLevel.WARN, code, title, detail, remediation)

    @classmethod
    def error(cls, code: WarningCode, title: str, detail: str = "", remediation: str = "") -> "WarningItem":
        """Create an ERROR-level warning."""
        return cls(MessageLevel.ERROR, code, title, detail, remediation)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON/display."""
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "detail": self.detail,
            "remediation": self.remediation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WarningItem":
        """Rebuild a WarningItem stored with to_dict()."""
        return cls(
            MessageLevel(data["level"]),
            WarningCode(data["code"]),
            data["title"],
            data.get("detail", ""),
            data.get("remediation", ""),
        )


def code_for_error(error: Exception) -> WarningCode:
    """Map an exception raised by a stage to a warning code."""
    if isinstance(error, DeviceNotFoundError):
        return WarningCode.W_DEVICE_NOT_FOUND
    if isinstance(error, AmbiguousDeviceError):
        return WarningCode.W_DEVICE_AMBIGUOUS
    if isinstance(error, ModeSwitchError):
        return WarningCode.W_MODE_SWITCH_FAILED
    if isinstance(error, UnexpectedModeError):
        return WarningCode.W_UNEXPECTED_MODE
    if isinstance(error, ChecksumMismatchError):
        return WarningCode.W_CHECKSUM_MISMATCH
    if isinstance(error, IncompleteChecksumResponseError):
        return WarningCode.W_CHECKSUM_INCOMPLETE
    if isinstance(error, HexParseError):
        return WarningCode.W_FIRMWARE_INVALID
    if isinstance(error, TransferError):
        if "kernel driver" in str(error).lower():
            return WarningCode.W_KERNEL_DRIVER
        return WarningCode.W_TRANSFER_ERROR
    return WarningCode.W_UNKNOWN


def code_for_message(message: str) -> WarningCode:
    """Detect a warning code from a plain message string."""
    msg = message.lower()

    if "no tek device" in msg:
        return WarningCode.W_DEVICE_NOT_FOUND
    if "more than one" in msg:
        return WarningCode.W_DEVICE_AMBIGUOUS
    if "dip" in msg or "mode switching did not work" in msg:
        return WarningCode.W_MODE_SWITCH_FAILED
    if "already in" in msg:
        return WarningCode.W_UNEXPECTED_MODE
    if "checksum mismatch" in msg:
        return WarningCode.W_CHECKSUM_MISMATCH
    if "incomplete result" in msg:
        return WarningCode.W_CHECKSUM_INCOMPLETE
    if "not all bytes" in msg:
        return WarningCode.W_SHORT_WRITE
    if "kernel driver" in msg:
        return WarningCode.W_KERNEL_DRIVER
    if "error" in msg or "timeout" in msg or "timed out" in msg:
        return WarningCode.W_TRANSFER_ERROR
    return WarningCode.W_UNKNOWN


def diagnose_stage_error(stage: str, error: Exception, fatal: bool = True) -> WarningItem:
    """
    Build the operator diagnostic for a failed stage.

    Args:
        stage: One of STAGES
        error: Exception the stage raised
        fatal: ERROR level if the failure decides the outcome, WARN for cleanup

    Returns:
        WarningItem whose title is the stage message
    """
    title = STAGE_MESSAGES[stage].format(error=error)
    factory = WarningItem.error if fatal else WarningItem.warn
    return factory(code_for_error(error), title, detail=type(error).__name__)


_LEVEL_FACTORIES = {
    MessageLevel.INFO: WarningItem.info,
    MessageLevel.WARN: WarningItem.warn,
    MessageLevel.ERROR: WarningItem.error,
}


def warnings_from_strings(
    warning_strings: List[str],
    default_level: MessageLevel = MessageLevel.WARN,
) -> List[WarningItem]:
    """Convert plain warning strings to a WarningItem list."""
    factory = _LEVEL_FACTORIES[default_level]
    return [factory(code_for_message(msg), msg) for msg in warning_strings]


def result_to_warnings(result: "OperationResult") -> List[WarningItem]:
    """
    Convert an OperationResult's warnings and errors to WarningItems.

    Stage failures reuse the diagnostics recorded in
    ``metadata["diagnostics"]``; only messages without a stored diagnostic
    (short writes, load errors) fall back to message matching.
    Errors come first so the CLI shows the deciding failure at the top.
    """
    diagnostics = {
        item["title"]: WarningItem.from_dict(item)
        for item in result.metadata.get("diagnostics", [])
    }

    def convert(messages: List[str], level: MessageLevel) -> List[WarningItem]:
        items = []
        for msg in messages:
            if msg in diagnostics:
                items.append(diagnostics[msg])
            else:
                items.extend(warnings_from_strings([msg], level))
        return items

    return convert(result.errors, MessageLevel.ERROR) + convert(result.warnings, MessageLevel.WARN)
