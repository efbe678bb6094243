"""Tests for the bounds-checked byte cursor."""

import pytest

from drmcore.drm.cursor import Cursor
from drmcore.drm.exceptions import DrmError, TruncatedInput, UnexpectedEndOfData


class TestIntegerReads:
    """Fixed-width integer decoding."""

    def test_big_and_little_endian(self):
        r = Cursor(b'\x01\x02\x03\x04\x05\x06\x07\x08\x09\x0a\x0b\x0c')
        assert r.read_u16be() == 0x0102
        assert r.read_u32be() == 0x03040506
        assert r.read_u16le() == 0x0807
        assert r.read_u32le() == 0x0c0b0a09
        assert r.position == 12
        assert r.remaining == 0

    def test_read_past_end_raises(self):
        """A short read fails and leaves the position untouched."""
        r = Cursor(b'\x00\x01\x02')
        r.skip(2)
        with pytest.raises(UnexpectedEndOfData) as excinfo:
            r.read_u16be()
        assert excinfo.value.needed == 4
        assert excinfo.value.have == 3
        assert r.position == 2

    def test_error_hierarchy(self):
        with pytest.raises(TruncatedInput):
            Cursor(b'').read_u32be()
        assert issubclass(UnexpectedEndOfData, DrmError)


class TestByteReads:
    """Raw byte reads and skipping."""

    def test_read_bytes_copies(self):
        data = bytearray(b'abcdef')
        r = Cursor(data)
        chunk = r.read_bytes(3)
        data[0:3] = b'xyz'
        assert chunk == b'abc'
        assert r.read_bytes(3) == b'def'

    def test_read_zero_bytes(self):
        r = Cursor(b'')
        assert r.read_bytes(0) == b''
        assert r.position == 0

    def test_negative_length_rejected(self):
        with pytest.raises(UnexpectedEndOfData):
            Cursor(b'abcd').read_bytes(-1)

    def test_initial_position(self):
        r = Cursor(b'abcd', position=2)
        assert r.remaining == 2
        assert r.read_bytes(2) == b'cd'

    def test_skip_bounds(self):
        r = Cursor(b'abcd')
        with pytest.raises(UnexpectedEndOfData):
            r.skip(5)
        r.skip(4)
        assert r.remaining == 0


class TestPaddedString:
    """NUL-terminated strings in 4-byte aligned fields."""

    def test_alignment_advances_past_padding(self):
        r = Cursor(b'hi\x00\x00')
        assert r.read_padded_string(3) == 'hi'
        assert r.position == 4

    def test_exact_multiple_without_terminator(self):
        r = Cursor(b'abcdXYZ')
        assert r.read_padded_string(4) == 'abcd'
        assert r.position == 4

    def test_unterminated_stops_at_declared_length(self):
        r = Cursor(b'abcdefgh')
        assert r.read_padded_string(5) == 'abcde'
        assert r.position == 8

    def test_invalid_utf8_is_replaced(self):
        r = Cursor(b'a\xffb\x00')
        assert r.read_padded_string(4) == 'a�b'

    def test_aligned_length_must_be_available(self):
        r = Cursor(b'hi\x00')
        with pytest.raises(UnexpectedEndOfData):
            r.read_padded_string(3)

    def test_empty_string(self):
        r = Cursor(b'next')
        assert r.read_padded_string(0) == ''
        assert r.position == 0
