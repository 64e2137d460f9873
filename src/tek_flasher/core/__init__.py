"""
Core module for TEK Flasher.

This module provides the single source of truth for:
- Firmware file and device id parsing (parsing.py)
- Flash configuration and settle delays (config.py)
- Result objects (results.py)
- The flashing stage sequence (actions.py)
- Standardized warnings/diagnostics (messages.py)

The CLI should call into this module rather than implementing its own logic.
"""

from .parsing import parse_firmware, parse_device_id
from .config import FlashConfig, default_config
from .results import OperationResult
from .messages import (
    MessageLevel,
    WarningCode,
    WarningItem,
    STAGES,
    diagnose_stage_error,
    warnings_from_strings,
    result_to_warnings,
)
from .actions import (
    FlashOrchestrator,
    load_firmware,
    flash_firmware,
    scan_devices,
)

__all__ = [
    # Parsing
    "parse_firmware",
    "parse_device_id",
    # Config
    "FlashConfig",
    "default_config",
    # Results
    "OperationResult",
    # Messages
    "MessageLevel",
    "WarningCode",
    "WarningItem",
    "STAGES",
    "diagnose_stage_error",
    "warnings_from_strings",
    "result_to_warnings",
    # Actions
    "FlashOrchestrator",
    "load_firmware",
    "flash_firmware",
    "scan_devices",
]
