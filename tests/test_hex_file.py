"""Tests for firmware hex file parsing."""

import pytest

from tek_flasher.errors import HexParseError, ParseErrorKind
from tek_flasher.hex_file import (
    INITIAL_IMAGE_SIZE,
    FirmwareImage,
    firmware_checksum,
    parse_hex_file,
    parse_hex_lines,
    parse_hex_text,
)

END_RECORD = ":00000001FF"


def make_record(address: int, record_type: int, payload: bytes = b"") -> str:
    """Build a record line with a valid sum byte."""
    body = bytes([len(payload), address >> 8, address & 0xFF, record_type]) + payload
    checksum = (-sum(body)) & 0xFF
    return ":" + (body + bytes([checksum])).hex().upper()


def test_make_record_matches_known_line() -> None:
    """Helper output should match a hand-computed record."""
    assert make_record(0, 0, bytes([1, 2, 3, 4])) == ":0400000001020304F2"
    assert make_record(0, 1) == END_RECORD


def test_two_line_file_places_payload_at_address_zero() -> None:
    """Data record + end record gives an image starting with the payload."""
    image = parse_hex_lines([":02000000ABCD86", END_RECORD])

    assert isinstance(image, FirmwareImage)
    assert len(image) >= 4
    assert image.data[0:2] == bytes([0xAB, 0xCD])
    assert image.high_water == 2
    assert image.records == 1


def test_image_starts_at_64_bytes_zero_filled() -> None:
    image = parse_hex_lines([make_record(0x10, 0, b"\x55"), END_RECORD])

    assert len(image) == INITIAL_IMAGE_SIZE
    assert image.data[0x10] == 0x55
    assert image.data.count(0) == INITIAL_IMAGE_SIZE - 1


def test_image_doubles_until_record_fits() -> None:
    """A record ending past the buffer doubles it, possibly several times."""
    image = parse_hex_lines([make_record(0x100, 0, b"\x01\x02"), END_RECORD])

    # 64 -> 128 -> 256 -> 512
    assert len(image) == 512
    assert image.data[0x100:0x102] == b"\x01\x02"
    assert image.high_water == 0x102


def test_record_ending_exactly_at_boundary_does_not_grow() -> None:
    image = parse_hex_lines([make_record(0x3E, 0, b"\xAA\xBB"), END_RECORD])
    assert len(image) == INITIAL_IMAGE_SIZE


def test_later_record_overwrites_earlier() -> None:
    lines = [
        make_record(0, 0, b"\x11\x22"),
        make_record(1, 0, b"\x33"),
        END_RECORD,
    ]
    image = parse_hex_lines(lines)
    assert image.data[0:2] == b"\x11\x33"
    assert image.records == 2


def test_trailing_newlines_are_ignored() -> None:
    image = parse_hex_lines([":02000000ABCD86\n", END_RECORD + "\r\n"])
    assert image.data[0:2] == b"\xAB\xCD"


def test_lowercase_hex_is_accepted() -> None:
    image = parse_hex_lines([":02000000abcd86", END_RECORD.lower()])
    assert image.data[0:2] == b"\xAB\xCD"


class TestParseErrors:
    """Each malformed input reports its kind and 1-based line number."""

    def test_empty_line(self):
        with pytest.raises(HexParseError) as exc:
            parse_hex_lines([":02000000ABCD86", "", END_RECORD])
        assert exc.value.kind == ParseErrorKind.EMPTY_LINE
        assert exc.value.line == 2
        assert "Unexpected empty line in line 2" in str(exc.value)

    def test_whitespace_only_line_counts_as_empty(self):
        with pytest.raises(HexParseError) as exc:
            parse_hex_lines(["   ", END_RECORD])
        assert exc.value.kind == ParseErrorKind.EMPTY_LINE
        assert exc.value.line == 1

    def test_data_after_end_record(self):
        with pytest.raises(HexParseError) as exc:
            parse_hex_lines([END_RECORD, ":02000000ABCD86"])
        assert exc.value.kind == ParseErrorKind.DATA_AFTER_END
        assert exc.value.line == 2

    def test_empty_line_after_end_record_is_empty_line(self):
        """Emptiness is checked before the end-of-file state."""
        with pytest.raises(HexParseError) as exc:
            parse_hex_lines([END_RECORD, ""])
        assert exc.value.kind == ParseErrorKind.EMPTY_LINE

    def test_missing_end_record(self):
        with pytest.raises(HexParseError) as exc:
            parse_hex_lines([":02000000ABCD86"])
        assert exc.value.kind == ParseErrorKind.MISSING_END_OF_FILE
        assert exc.value.line is None
        assert str(exc.value) == "Unexpected end of file"

    def test_no_lines_at_all(self):
        with pytest.raises(HexParseError) as exc:
            parse_hex_lines([])
        assert exc.value.kind == ParseErrorKind.MISSING_END_OF_FILE

    def test_invalid_hex_digit(self):
        with pytest.raises(HexParseError) as exc:
            parse_hex_lines([":02000000ABCZ86", END_RECORD])
        assert exc.value.kind == ParseErrorKind.INVALID_HEX
        assert exc.value.line == 1

    def test_odd_number_of_digits(self):
        with pytest.raises(HexParseError) as exc:
            parse_hex_lines([":02000000ABCD8", END_RECORD])
        assert exc.value.kind == ParseErrorKind.INVALID_HEX

    def test_length_field_disagrees_with_line(self):
        # Length says 3 but only 2 payload bytes follow
        body = bytes([3, 0, 0, 0, 0xAB, 0xCD])
        line = ":" + (body + bytes([(-sum(body)) & 0xFF])).hex()
        with pytest.raises(HexParseError) as exc:
            parse_hex_lines([line, END_RECORD])
        assert exc.value.kind == ParseErrorKind.LENGTH_MISMATCH
        assert exc.value.line == 1

    def test_marker_only_line_is_length_mismatch(self):
        with pytest.raises(HexParseError) as exc:
            parse_hex_lines([":", END_RECORD])
        assert exc.value.kind == ParseErrorKind.LENGTH_MISMATCH

    def test_single_flipped_byte_is_checksum_mismatch(self):
        """Changing one payload byte breaks the per-line sum."""
        with pytest.raises(HexParseError) as exc:
            parse_hex_lines([":02000000ABCE86", END_RECORD])
        assert exc.value.kind == ParseErrorKind.CHECKSUM_MISMATCH
        assert exc.value.line == 1
        assert "Checksum mismatch in line 1" in str(exc.value)

    @pytest.mark.parametrize("position", range(7))
    def test_any_flipped_byte_is_rejected(self, position):
        """Flipping any byte fails; the length byte fails the length check."""
        record = bytearray.fromhex("02000000ABCD86")
        record[position] ^= 0x01
        lines = [make_record(0, 0, b"\x01"), ":" + record.hex().upper(), END_RECORD]

        with pytest.raises(HexParseError) as exc:
            parse_hex_lines(lines)

        if position == 0:
            assert exc.value.kind == ParseErrorKind.LENGTH_MISMATCH
        else:
            assert exc.value.kind == ParseErrorKind.CHECKSUM_MISMATCH
        assert exc.value.line == 2

    def test_non_utf8_bytes_line_is_invalid_hex(self):
        with pytest.raises(HexParseError) as exc:
            parse_hex_lines([b":02000000ABCD86", b":\xff\xfe", b":00000001FF"])
        assert exc.value.kind == ParseErrorKind.INVALID_HEX
        assert exc.value.line == 2

    def test_checksum_error_reports_later_line(self):
        lines = [make_record(0, 0, b"\x01"), make_record(1, 0, b"\x02")[:-2] + "00", END_RECORD]
        with pytest.raises(HexParseError) as exc:
            parse_hex_lines(lines)
        assert exc.value.kind == ParseErrorKind.CHECKSUM_MISMATCH
        assert exc.value.line == 2

    def test_unknown_record_type(self):
        with pytest.raises(HexParseError) as exc:
            parse_hex_lines([make_record(0, 0x04, b"\x00\x00"), END_RECORD])
        assert exc.value.kind == ParseErrorKind.UNKNOWN_RECORD_TYPE
        assert exc.value.line == 1
        assert "0x04" in str(exc.value)


def test_firmware_checksum_truncates_to_16_bits() -> None:
    assert firmware_checksum(b"") == 0
    assert firmware_checksum(bytes([0xAB, 0xCD])) == 0xAB + 0xCD
    # 300 * 0xFF = 76500 -> 76500 mod 65536 = 10964
    assert firmware_checksum(bytes([0xFF]) * 300) == 76500 % 65536


def test_image_checksum_covers_padding() -> None:
    image = parse_hex_lines([":02000000ABCD86", END_RECORD])
    assert image.checksum == 0xAB + 0xCD
    assert len(image.sha256) == 64


def test_parse_hex_text_splits_lines() -> None:
    image = parse_hex_text(":02000000ABCD86\n:00000001FF\n")
    assert image.data[0:2] == b"\xAB\xCD"


def test_parse_hex_file_reads_from_disk(tmp_path) -> None:
    path = tmp_path / "firmware.hex"
    path.write_text(":02000000ABCD86\n:00000001FF\n", encoding="utf-8")

    image = parse_hex_file(path)
    assert image.data[0:2] == b"\xAB\xCD"


def test_parse_hex_file_not_utf8(tmp_path) -> None:
    """Undecodable bytes are a parse error naming the line."""
    path = tmp_path / "firmware.hex"
    path.write_bytes(b":02000000ABCD86\n:\xff\xfe\n")

    with pytest.raises(HexParseError) as exc:
        parse_hex_file(path)
    assert exc.value.kind == ParseErrorKind.INVALID_HEX
    assert exc.value.line == 2


def test_parse_hex_file_crlf_line_endings(tmp_path) -> None:
    path = tmp_path / "firmware.hex"
    path.write_bytes(b":02000000ABCD86\r\n:00000001FF\r\n")

    assert parse_hex_file(path).data[0:2] == b"\xAB\xCD"


def test_parse_hex_file_missing(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        parse_hex_file(tmp_path / "missing.hex")
