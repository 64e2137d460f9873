"""
TEK Flasher CLI

Command-line interface for flashing, inspecting firmware and listing devices.
"""

import sys
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn

from tek_flasher.errors import FlasherError
from tek_flasher.core.parsing import parse_device_id as _parse_device_id_core
from tek_flasher.core.config import FlashConfig
from tek_flasher.core.results import OperationResult
from tek_flasher.core.actions import (
    flash_firmware as core_flash_firmware,
    load_firmware as core_load_firmware,
    scan_devices as core_scan_devices,
)
from tek_flasher.core.messages import (
    WarningItem,
    MessageLevel,
    result_to_warnings,
)
from tek_flasher.models import (
    DEFAULT_MODEL,
    DeviceIdentity,
    get_model as registry_get_model,
    list_models as registry_list_models,
)
from tek_flasher.protocol.mode import Mode

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("tek_flasher")

# Setup Rich console
console = Console()

app = typer.Typer(help="TEK Flasher - Firmware flashing for TEK keyboards")


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    """Print success message."""
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    """Print warning message."""
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    """Print error message."""
    console.print(f"❌ {text}", style="red")


def print_structured_warning(warning: WarningItem, verbose: bool = False) -> None:
    """Print a structured warning with its remediation."""
    if warning.level == MessageLevel.ERROR:
        style = "red"
        icon = "❌"
    elif warning.level == MessageLevel.WARN:
        style = "yellow"
        icon = "⚠️"
    else:
        style = "blue"
        icon = "ℹ️"

    console.print(f"{icon} [{warning.code.value}] {warning.title}", style=style)
    if verbose and warning.detail:
        console.print(f"   {warning.detail}", style="dim")
    if warning.remediation:
        console.print(f"   → {warning.remediation}", style="cyan")


def print_warnings_from_result(result: OperationResult, verbose: bool = False) -> None:
    """Print all warnings from an OperationResult using structured format."""
    for warning in result_to_warnings(result):
        print_structured_warning(warning, verbose=verbose)


def parse_device_id(value: Optional[str]) -> Optional[DeviceIdentity]:
    """
    Parse a vendor:product id.

    CLI wrapper around core.parsing.parse_device_id that converts
    ValueError to typer.BadParameter for proper CLI error handling.
    """
    try:
        return _parse_device_id_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def build_config(model: str, device_id: Optional[str]) -> FlashConfig:
    """Resolve --model / --device-id into a FlashConfig."""
    try:
        keyboard = registry_get_model(model)
    except KeyError as e:
        raise typer.BadParameter(str(e.args[0]))
    return FlashConfig.for_model(keyboard, identity=parse_device_id(device_id))


@app.command()
def flash(
    firmware: Optional[str] = typer.Argument(None, help="Firmware hex file"),
    model: str = typer.Option(DEFAULT_MODEL, "--model", "-m", help="Keyboard model"),
    device_id: Optional[str] = typer.Option(
        None,
        "--device-id",
        help="Override normal-mode USB id (vendor:product in hex, e.g. 0e6a:030c)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show packet-level logs"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output result as JSON"),
) -> None:
    """
    Flash a firmware hex file to the connected keyboard.

    Switches the keyboard into program mode, uploads and verifies the
    image, switches back and re-attaches the kernel driver. Cleanup steps
    run even when programming fails.
    """
    if firmware is None:
        print_error("Error: Filename parameter missing!")
        return

    config = build_config(model, device_id)
    if verbose:
        logger.setLevel(logging.DEBUG)

    print_header(f"Flashing {Path(firmware).name} to {config.model} ({config.identity})")

    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Uploading firmware...", total=None)

        def on_progress(sent: int, total: int) -> None:
            progress.update(task, completed=sent, total=total)

        result = core_flash_firmware(firmware, config, progress_cb=on_progress)

    if output_json:
        console.print_json(json.dumps(result.to_dict()))
        return

    console.print(result.to_summary())
    print_warnings_from_result(result, verbose=verbose)

    if result.ok:
        print_success("Firmware flashed and verified")
    else:
        print_error("Flashing failed")
    console.print("\nDone.")


@app.command()
def inspect(
    firmware: str = typer.Argument(..., help="Firmware hex file"),
    preview: int = typer.Option(64, "--preview", "-p", help="Bytes to show in the hex preview"),
) -> None:
    """Parse a firmware file and show image properties without touching a device."""
    print_header("Firmware Inspection")

    image, result = core_load_firmware(firmware)
    if image is None:
        for err in result.errors:
            print_error(err)
        raise typer.Exit(1)

    table = Table(title="Image Properties")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("File", Path(firmware).name)
    table.add_row("Image size", f"{len(image):,} bytes (0x{len(image):04X})")
    table.add_row("Highest address", f"0x{image.high_water:04X}")
    table.add_row("Data records", str(image.records))
    table.add_row("Checksum", f"0x{image.checksum:04X}")
    table.add_row("Packets", str((len(image) + 63) // 64))
    table.add_row("SHA256", image.sha256)

    console.print(table)

    if len(image) > 0xFFFF:
        print_warning("Image exceeds 64 KiB; the upload length field only carries 16 bits")

    console.print(f"\n[bold]First {min(preview, len(image))} bytes:[/bold]")
    hex_lines = []
    for offset in range(0, min(preview, len(image)), 16):
        chunk = image.data[offset:offset + 16]
        hex_part = " ".join(f"{b:02X}" for b in chunk)
        ascii_part = "".join(chr(b) if 32 <= b < 127 else "." for b in chunk)
        hex_lines.append(f"0x{offset:04X} | {hex_part:<48} | {ascii_part}")
    console.print("\n".join(hex_lines))

    print_success("Inspection complete")


@app.command("list-devices")
def list_devices(
    model: str = typer.Option(DEFAULT_MODEL, "--model", "-m", help="Keyboard model"),
    device_id: Optional[str] = typer.Option(None, "--device-id", help="Override normal-mode USB id"),
) -> None:
    """List visible USB devices and mark TEK keyboards with their mode."""
    print_header("USB Devices")
    config = build_config(model, device_id)

    try:
        devices = core_scan_devices(config)
    except FlasherError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if not devices:
        print_warning("No USB devices found")
        return

    table = Table(title="Seeing the following devices")
    table.add_column("Device", style="cyan")
    table.add_column("TEK mode", style="green")

    tek_count = 0
    for description, mode in devices:
        if mode == Mode.UNRELATED:
            table.add_row(description, "-")
        else:
            tek_count += 1
            table.add_row(description, mode.value)

    console.print(table)

    if tek_count == 0:
        print_warning(f"No {config.model} keyboard found")
    elif tek_count > 1:
        print_warning(f"More than one {config.model} keyboard found; flashing will refuse to run")


@app.command("list-models")
def list_models() -> None:
    """List supported keyboard models and their USB ids."""
    print_header("Supported Keyboards")

    table = Table(title="Models")
    table.add_column("Model", style="cyan")
    table.add_column("Description", style="green")
    table.add_column("Normal mode", style="yellow")
    table.add_column("Program mode", style="magenta")

    for keyboard in registry_list_models():
        table.add_row(
            keyboard.name,
            keyboard.description or "-",
            str(keyboard.identity),
            str(keyboard.program_identity),
        )

    console.print(table)


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
