"""
Flashing configuration.

No readiness signal exists after a mode switch; the settle delays are the
only guard against talking to a device that is still re-enumerating.
"""

from dataclasses import dataclass
from typing import Optional

from tek_flasher.models.registry import DEFAULT_MODEL, DeviceIdentity, KeyboardModel, get_model

DEFAULT_TIMEOUT_MS = 1000
DEFAULT_INTERFACE = 0

PREPARE_SETTLE_S = 2.0
FINISH_SETTLE_S = 2.0
RELEASE_SETTLE_S = 4.0


@dataclass(frozen=True)
class FlashConfig:
    """
    Parameters for one flashing run.

    Attributes:
        model: Model name shown in results
        identity: Normal-mode USB identity (program mode is one below)
        program_mode_hint: Shown when the keyboard refuses program mode
        timeout_ms: Per control transfer timeout
        interface: USB interface used for all transfers
        prepare_settle_s: Wait after switching into program mode
        finish_settle_s: Wait before switching back to normal mode
        release_settle_s: Wait before re-attaching the kernel driver
    """
    model: str
    identity: DeviceIdentity
    program_mode_hint: str = ""
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    interface: int = DEFAULT_INTERFACE
    prepare_settle_s: float = PREPARE_SETTLE_S
    finish_settle_s: float = FINISH_SETTLE_S
    release_settle_s: float = RELEASE_SETTLE_S

    @classmethod
    def for_model(
        cls,
        model: KeyboardModel,
        identity: Optional[DeviceIdentity] = None,
        **overrides,
    ) -> "FlashConfig":
        """Build a config from a registry model, optionally overriding its id."""
        return cls(
            model=model.name,
            identity=identity or model.identity,
            program_mode_hint=model.program_mode_hint,
            **overrides,
        )


def default_config() -> FlashConfig:
    return FlashConfig.for_model(get_model(DEFAULT_MODEL))
