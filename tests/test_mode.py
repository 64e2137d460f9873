"""Tests for TEK mode classification, discovery and switching."""

from dataclasses import dataclass

import pytest

from tek_flasher.errors import AmbiguousDeviceError, DeviceNotFoundError, TransferError
from tek_flasher.models.registry import TEK, DeviceIdentity
from tek_flasher.protocol.firmware_protocol import build_toggle_mode_packet
from tek_flasher.protocol.mode import (
    Mode,
    ModeController,
    ModeFilter,
    classify,
    find_keyboard,
    is_tek,
)
from tek_flasher.protocol.usb_transport import describe_device


@dataclass
class FakeDevice:
    idVendor: int
    idProduct: int
    bus: int = 1
    address: int = 4


NORMAL = FakeDevice(0x0E6A, 0x030C)
PROGRAM = FakeDevice(0x0E6A, 0x030B)
OTHER = FakeDevice(0x046D, 0xC52B)
TEK_IDENTITY = TEK.identity


class TestDeviceIdentity:
    def test_combined_and_program_identity(self):
        assert TEK_IDENTITY.combined == 0x0E6A030C
        assert TEK_IDENTITY.program_identity() == DeviceIdentity(0x0E6A, 0x030B)

    def test_program_identity_borrows_across_halves(self):
        """Program id is the combined 32-bit value minus one."""
        identity = DeviceIdentity(0x1234, 0x0000)
        assert identity.program_identity() == DeviceIdentity(0x1233, 0xFFFF)

    def test_str_format(self):
        assert str(TEK_IDENTITY) == "0e6a:030c"


class TestClassify:
    def test_normal_program_unrelated(self):
        assert classify(NORMAL) == Mode.NORMAL
        assert classify(PROGRAM) == Mode.PROGRAM
        assert classify(OTHER) == Mode.UNRELATED

    def test_one_above_normal_is_unrelated(self):
        assert classify(FakeDevice(0x0E6A, 0x030D)) == Mode.UNRELATED

    def test_custom_identity(self):
        identity = DeviceIdentity(0x046D, 0xC52C)
        assert classify(OTHER, identity) == Mode.PROGRAM
        assert classify(NORMAL, identity) == Mode.UNRELATED


class TestIsTek:
    def test_either_accepts_both_modes(self):
        assert is_tek(NORMAL, ModeFilter.EITHER)
        assert is_tek(PROGRAM, ModeFilter.EITHER)
        assert not is_tek(OTHER, ModeFilter.EITHER)

    def test_specific_mode_filters(self):
        assert is_tek(NORMAL, ModeFilter.NORMAL)
        assert not is_tek(NORMAL, ModeFilter.PROGRAM)
        assert is_tek(PROGRAM, ModeFilter.PROGRAM)
        assert not is_tek(PROGRAM, ModeFilter.NORMAL)
        assert not is_tek(OTHER, ModeFilter.NORMAL)


class TestFindKeyboard:
    def test_single_keyboard_among_others(self):
        assert find_keyboard([OTHER, PROGRAM, OTHER]) is PROGRAM

    def test_none_found(self):
        with pytest.raises(DeviceNotFoundError) as exc:
            find_keyboard([OTHER])
        assert "No TEK device found" in str(exc.value)

    def test_empty_bus(self):
        with pytest.raises(DeviceNotFoundError):
            find_keyboard([])

    def test_two_keyboards_is_ambiguous(self):
        """Never pick the first match when two are connected."""
        second = FakeDevice(0x0E6A, 0x030C, bus=2, address=7)
        with pytest.raises(AmbiguousDeviceError) as exc:
            find_keyboard([NORMAL, second])
        assert "More than one TEK device found" in str(exc.value)
        assert "Bus 002 Device 007" in str(exc.value)

    def test_normal_and_program_together_is_ambiguous(self):
        with pytest.raises(AmbiguousDeviceError):
            find_keyboard([NORMAL, PROGRAM])


def test_describe_device() -> None:
    assert describe_device(NORMAL) == "Bus 001 Device 004 ID 0e6a:030c"


class RecordingChannel:
    """Minimal channel double for switch tests."""

    instances = []

    def __init__(self, device, written=64, fail=False, **kwargs):
        self.device = device
        self.kwargs = kwargs
        self.packets = []
        self.written = written
        self.fail = fail
        self.closed = False
        RecordingChannel.instances.append(self)

    def open(self, claim=True):
        if self.fail:
            raise TransferError("Cannot claim interface 0: busy")

    def close(self):
        self.closed = True

    def write_packet(self, packet):
        self.packets.append(packet)
        return self.written


class TestModeController:
    def setup_method(self):
        RecordingChannel.instances = []

    def test_switch_sends_toggle_packet(self):
        controller = ModeController(channel_factory=RecordingChannel, timeout_ms=250)

        assert controller.switch(NORMAL) == 64

        channel = RecordingChannel.instances[0]
        assert channel.packets == [build_toggle_mode_packet()]
        assert channel.kwargs == {"interface": 0, "timeout_ms": 250}
        assert channel.closed

    def test_short_write_is_not_an_error(self):
        def factory(device, **kwargs):
            return RecordingChannel(device, written=12, **kwargs)

        controller = ModeController(channel_factory=factory)
        assert controller.switch(NORMAL) == 12
        assert RecordingChannel.instances[0].closed

    def test_open_failure_propagates_and_closes(self):
        def factory(device, **kwargs):
            return RecordingChannel(device, fail=True, **kwargs)

        controller = ModeController(channel_factory=factory)
        with pytest.raises(TransferError):
            controller.switch(NORMAL)
        assert RecordingChannel.instances[0].closed
        assert RecordingChannel.instances[0].packets == []

    def test_locate_uses_context_devices(self):
        class Context:
            def devices(self):
                return [OTHER, NORMAL]

        controller = ModeController()
        assert controller.locate(Context()) is NORMAL
        assert controller.classify(NORMAL) == Mode.NORMAL
        assert controller.is_tek(PROGRAM, ModeFilter.PROGRAM)
