"""
Core workflow actions for TEK Flasher.

The flashing run is a fixed sequence of four stages:

    prepare  -> switch the keyboard into program mode
    program  -> upload and verify the firmware
    finish   -> switch back into normal mode
    release  -> hand interface 0 back to the kernel driver

Every stage re-discovers the keyboard through a fresh UsbContext and
leaves its handle closed. A failing stage is logged with a diagnosis and
the following stages still run, so the keyboard is left usable whenever
possible. Only a failed prepare stage skips programming.
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple, Union

from tek_flasher.errors import (
    FlasherError,
    HexParseError,
    ModeSwitchError,
    UnexpectedModeError,
)
from tek_flasher.hex_file import FirmwareImage
from tek_flasher.protocol.firmware_protocol import upload_firmware
from tek_flasher.protocol.mode import Mode, ModeController, classify
from tek_flasher.protocol.usb_transport import (
    PACKET_SIZE,
    ChannelFactory,
    PyUsbChannel,
    UsbContext,
    describe_device,
    open_channel,
)
from .config import FlashConfig, default_config
from .messages import (
    STAGE_FINISH,
    STAGE_PREPARE,
    STAGE_PROGRAM,
    STAGE_RELEASE,
    diagnose_stage_error,
)
from .parsing import parse_firmware
from .results import STAGE_FAILED, STAGE_OK, STAGE_SKIPPED, OperationResult

logger = logging.getLogger(__name__)


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "tek_flasher"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


class FlashOrchestrator:
    """
    Runs the prepare / program / finish / release sequence.

    Example:
        orchestrator = FlashOrchestrator(default_config())
        result = orchestrator.run(image)
    """

    def __init__(
        self,
        config: FlashConfig,
        context_factory: Callable[[], UsbContext] = UsbContext,
        channel_factory: ChannelFactory = PyUsbChannel,
        sleep: Callable[[float], None] = time.sleep,
        progress_cb: Optional[Callable[[int, int], None]] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Identity, timeouts and settle delays
            context_factory: Creates a discovery context per stage
            channel_factory: Creates a TransferChannel for a device
            sleep: Delay function used for settle waits
            progress_cb: Optional upload progress callback(bytes_sent, total)
        """
        self.config = config
        self.context_factory = context_factory
        self.channel_factory = channel_factory
        self.sleep = sleep
        self.progress_cb = progress_cb
        self.controller = ModeController(
            identity=config.identity,
            channel_factory=channel_factory,
            interface=config.interface,
            timeout_ms=config.timeout_ms,
        )

    def _settle(self, seconds: float) -> None:
        if seconds > 0:
            logger.debug("Waiting %.1fs for the keyboard to re-enumerate", seconds)
            self.sleep(seconds)

    def _switch(self, device: Any, result: OperationResult) -> None:
        written = self.controller.switch(device)
        if written != PACKET_SIZE:
            result.add_warning(
                f"Not all bytes were written switching the mode ({written}/{PACKET_SIZE})"
            )

    def log_devices(self) -> None:
        """Log every visible USB device before touching the keyboard."""
        try:
            with self.context_factory() as context:
                devices = context.devices()
                logger.info("Seeing the following devices:")
                for device in devices:
                    logger.info("  %s", describe_device(device))
        except FlasherError as e:
            logger.warning("Cannot list USB devices: %s", e)

    def prepare(self, result: OperationResult) -> None:
        """Switch a normal-mode keyboard into program mode."""
        with self.context_factory() as context:
            device = self.controller.locate(context)
            if self.controller.classify(device) == Mode.PROGRAM:
                raise UnexpectedModeError(
                    "TEK is already in program mode. That is strange. I won't continue now"
                )
            logger.info("TEK is in normal mode. Switch to program mode ...")
            self._switch(device, result)

    def program(self, image: FirmwareImage, result: OperationResult) -> None:
        """Upload and verify the firmware on a program-mode keyboard."""
        with self.context_factory() as context:
            device = self.controller.locate(context)
            if self.controller.classify(device) == Mode.NORMAL:
                message = "TEK is still in normal mode. Mode switching did not work!"
                if self.config.program_mode_hint:
                    message = f"{message} {self.config.program_mode_hint}"
                raise ModeSwitchError(message)

            logger.info("TEK is in program mode. Flash firmware ...")
            checksum = upload_firmware(
                device,
                image,
                channel_factory=self.channel_factory,
                progress_cb=self.progress_cb,
                warnings=result.warnings,
                interface=self.config.interface,
                timeout_ms=self.config.timeout_ms,
            )
            result.metadata["device_checksum"] = f"0x{checksum:04X}"
            result.metadata["verified"] = True

    def finish(self, result: OperationResult) -> None:
        """Switch a program-mode keyboard back to normal mode."""
        with self.context_factory() as context:
            device = self.controller.locate(context)
            if self.controller.classify(device) == Mode.NORMAL:
                raise UnexpectedModeError("TEK is already in normal mode. That is strange.")
            logger.info("TEK is still in program mode. Switch to normal mode ...")
            self._switch(device, result)

    def release(self, result: OperationResult) -> None:
        """Re-attach the kernel driver so the keyboard types again."""
        with self.context_factory() as context:
            device = self.controller.locate(context)
            logger.info("Reattach kernel driver")
            with open_channel(
                device,
                self.channel_factory,
                claim=False,
                interface=self.config.interface,
                timeout_ms=self.config.timeout_ms,
            ) as channel:
                channel.attach_kernel_driver()

    def _run_stage(
        self,
        stage: str,
        action: Callable[[], None],
        result: OperationResult,
        fatal: bool,
    ) -> bool:
        """
        Run one stage, converting its FlasherError into a diagnostic.

        Returns:
            True if the stage succeeded
        """
        try:
            action()
        except FlasherError as e:
            item = diagnose_stage_error(stage, e, fatal=fatal)
            result.metadata.setdefault("diagnostics", []).append(item.to_dict())
            if fatal:
                logger.error(item.title)
                result.add_error(item.title)
            else:
                logger.warning(item.title)
                result.add_warning(item.title)
            result.mark_stage(stage, STAGE_FAILED)
            return False

        result.mark_stage(stage, STAGE_OK)
        return True

    def run(self, image: FirmwareImage) -> OperationResult:
        """
        Execute all stages against *image*.

        The result is ok only if prepare and program (including checksum
        verification) succeeded. Finish and release failures are warnings.
        """
        result = OperationResult.success(
            operation="flash_firmware",
            model=self.config.model,
            bytes_len=len(image),
            device=str(self.config.identity),
            hashes={"sha256": image.sha256, "checksum": f"0x{image.checksum:04X}"},
        )
        result.metadata["verified"] = False

        self.log_devices()

        if self._run_stage(STAGE_PREPARE, lambda: self.prepare(result), result, fatal=True):
            self._settle(self.config.prepare_settle_s)
            self._run_stage(
                STAGE_PROGRAM, lambda: self.program(image, result), result, fatal=True
            )
        else:
            result.mark_stage(STAGE_PROGRAM, STAGE_SKIPPED)

        self._settle(self.config.finish_settle_s)
        self._run_stage(STAGE_FINISH, lambda: self.finish(result), result, fatal=False)

        self._settle(self.config.release_settle_s)
        self._run_stage(STAGE_RELEASE, lambda: self.release(result), result, fatal=False)

        logger.info("Done.")
        return result


def load_firmware(firmware_path: Union[str, Path]) -> Tuple[Optional[FirmwareImage], OperationResult]:
    """
    Parse a firmware file into an image and a load result.

    Returns:
        (image, result); image is None if the file could not be parsed
    """
    path = Path(firmware_path)
    try:
        image = parse_firmware(path)
    except (FileNotFoundError, HexParseError) as e:
        return None, OperationResult.failure("load_firmware", str(e), metadata={"path": str(path)})
    except OSError as e:
        return None, OperationResult.failure(
            "load_firmware", f"Cannot read {path}: {e}", metadata={"path": str(path)}
        )

    result = OperationResult.success(
        operation="load_firmware",
        bytes_len=len(image),
        hashes={"sha256": image.sha256, "checksum": f"0x{image.checksum:04X}"},
        metadata={
            "path": str(path),
            "high_water": image.high_water,
            "records": image.records,
        },
    )
    return image, result


def flash_firmware(
    firmware_path: Union[str, Path],
    config: Optional[FlashConfig] = None,
    context_factory: Callable[[], UsbContext] = UsbContext,
    channel_factory: ChannelFactory = PyUsbChannel,
    sleep: Callable[[float], None] = time.sleep,
    progress_cb: Optional[Callable[[int, int], None]] = None,
) -> OperationResult:
    """
    Parse *firmware_path* and flash it to the connected keyboard.

    A file that fails to parse ends the run before any device is touched.

    Args:
        firmware_path: Path to the firmware hex file
        config: Flash configuration (default: TEK model)
        context_factory: Discovery context factory (tests pass a fake)
        channel_factory: Channel factory (tests pass a fake)
        sleep: Settle delay function
        progress_cb: Optional upload progress callback

    Returns:
        OperationResult with stage outcomes, warnings and captured logs
    """
    config = config or default_config()

    with _capture_logs() as logs:
        image, load_result = load_firmware(firmware_path)
        if image is None:
            load_result.operation = "flash_firmware"
            load_result.model = config.model
            load_result.logs = list(logs)
            return load_result

        orchestrator = FlashOrchestrator(
            config,
            context_factory=context_factory,
            channel_factory=channel_factory,
            sleep=sleep,
            progress_cb=progress_cb,
        )
        result = orchestrator.run(image)
        result.metadata.update(
            {k: v for k, v in load_result.metadata.items() if k not in result.metadata}
        )

    result.logs = list(logs)
    return result


def scan_devices(
    config: Optional[FlashConfig] = None,
    context_factory: Callable[[], UsbContext] = UsbContext,
) -> List[Tuple[str, Mode]]:
    """
    List every visible USB device with its TEK mode classification.

    Raises:
        TransferError: If no USB backend is available
    """
    config = config or default_config()
    with context_factory() as context:
        return [
            (describe_device(device), classify(device, config.identity))
            for device in context.devices()
        ]
