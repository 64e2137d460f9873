"""
Result objects for core operations.

The CLI prints a summary from the same data it can also dump as JSON.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any


STAGE_OK = "ok"
STAGE_FAILED = "failed"
STAGE_SKIPPED = "skipped"


@dataclass
class OperationResult:
    """
    Unified result object for core operations.

    Attributes:
        ok: Whether the operation completed successfully
        operation: Name of the operation (e.g., "flash_firmware")
        model: Keyboard model name
        device: Normal-mode USB id the run targeted
        bytes_len: Number of firmware bytes processed
        hashes: Dict of hash values (sha256, checksum)
        stages: Outcome per flashing stage (ok / failed / skipped)
        warnings: Non-blocking issues encountered
        errors: Blocking errors that caused failure
        metadata: Additional operation-specific data
        logs: Captured log lines from the operation
    """
    ok: bool
    operation: str
    model: str = ""
    device: str = ""
    bytes_len: int = 0
    hashes: Dict[str, str] = field(default_factory=dict)
    stages: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        self.ok = False

    def mark_stage(self, stage: str, outcome: str) -> None:
        self.stages[stage] = outcome

    def to_summary(self) -> str:
        """Generate a human-readable summary string."""
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.model:
            lines.append(f"  Model: {self.model}")
        if self.device:
            lines.append(f"  Device: {self.device}")
        if self.bytes_len:
            lines.append(f"  Bytes: {self.bytes_len:,}")

        for name, value in self.hashes.items():
            lines.append(f"  {name}: {value[:16]}")

        if self.stages:
            lines.append("  Stages:")
            for stage, outcome in self.stages.items():
                lines.append(f"    {stage}: {outcome}")

        if self.warnings:
            lines.append("  Warnings:")
            for warn in self.warnings:
                lines.append(f"    - {warn}")

        if self.errors:
            lines.append("  Errors:")
            for err in self.errors:
                lines.append(f"    - {err}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "ok": self.ok,
            "operation": self.operation,
            "model": self.model,
            "device": self.device,
            "bytes_len": self.bytes_len,
            "hashes": self.hashes,
            "stages": self.stages,
            "warnings": self.warnings,
            "errors": self.errors,
            "metadata": self.metadata,
            "logs": self.logs,
        }

    @classmethod
    def success(
        cls,
        operation: str,
        model: str = "",
        bytes_len: int = 0,
        **kwargs,
    ) -> "OperationResult":
        """Create a successful result."""
        return cls(ok=True, operation=operation, model=model, bytes_len=bytes_len, **kwargs)

    @classmethod
    def failure(
        cls,
        operation: str,
        error: str,
        model: str = "",
        **kwargs,
    ) -> "OperationResult":
        """Create a failed result."""
        result = cls(ok=False, operation=operation, model=model, **kwargs)
        result.errors.append(error)
        return result
