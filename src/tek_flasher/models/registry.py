"""
Model registry for TEK keyboards.

Provides a single source of truth for:
- USB identities (normal-mode vendor:product id)
- The program-mode identity rule (normal id minus one)
- Operator hints shown when the mode switch does not take effect

Usage:
    from tek_flasher.models import list_models, get_model

    model = get_model("TEK")
    normal = model.identity
    program = model.identity.program_identity()
"""

from dataclasses import dataclass
from typing import Dict, List


@dataclass(frozen=True)
class DeviceIdentity:
    """USB vendor:product pair read from a device descriptor."""
    vendor_id: int
    product_id: int

    @property
    def combined(self) -> int:
        """Return the 32-bit id 0x<vendor><product>."""
        return (self.vendor_id << 16) | self.product_id

    @classmethod
    def from_combined(cls, value: int) -> "DeviceIdentity":
        """Build an identity from a 32-bit 0x<vendor><product> value."""
        value &= 0xFFFFFFFF
        return cls(vendor_id=(value >> 16) & 0xFFFF, product_id=value & 0xFFFF)

    def program_identity(self) -> "DeviceIdentity":
        """Program-mode identity: the combined id one below normal mode."""
        return DeviceIdentity.from_combined(self.combined - 1)

    def __str__(self) -> str:
        return f"{self.vendor_id:04x}:{self.product_id:04x}"


@dataclass(frozen=True)
class KeyboardModel:
    """Definition of a supported keyboard."""
    name: str
    identity: DeviceIdentity
    description: str = ""
    program_mode_hint: str = ""

    @property
    def program_identity(self) -> DeviceIdentity:
        return self.identity.program_identity()


TEK = KeyboardModel(
    name="TEK",
    identity=DeviceIdentity(vendor_id=0x0E6A, product_id=0x030C),
    description="Truly Ergonomic Keyboard",
    program_mode_hint="Did you set DIP #5 to 'programmable'?",
)

MODELS: Dict[str, KeyboardModel] = {
    TEK.name: TEK,
}

DEFAULT_MODEL = TEK.name


def list_models() -> List[KeyboardModel]:
    """Return all registered models sorted by name."""
    return [MODELS[name] for name in sorted(MODELS)]


def get_model(name: str) -> KeyboardModel:
    """
    Look up a model by name (case-insensitive).

    Raises:
        KeyError: If the model is not registered
    """
    for key, model in MODELS.items():
        if key.lower() == name.strip().lower():
            return model
    raise KeyError(f"Unknown model '{name}'. Known models: {', '.join(sorted(MODELS))}")
