"""Tests for key ID normalization and content key records."""

from uuid import UUID

import pytest

from drmcore.drm.key import ContentKey, KeyType, kid_from_guid, kid_to_uuid, swap_guid_bytes


class TestGuid:
    """Mixed-endian GUID byte order."""

    def test_swap(self):
        data = bytes(range(16))
        assert swap_guid_bytes(data) == bytes([3, 2, 1, 0, 5, 4, 7, 6]) + bytes(range(8, 16))

    def test_swap_is_involution(self):
        data = bytes.fromhex('0102030405060708090a0b0c0d0e0f10')
        assert swap_guid_bytes(swap_guid_bytes(data)) == data

    def test_matches_little_endian_uuid(self):
        data = bytes.fromhex('d5fbd6b82ed93e4e8e2a44a1b0d6e4c1')
        assert kid_from_guid(data) == UUID(bytes_le=data)

    def test_wrong_length(self):
        with pytest.raises(AssertionError):
            swap_guid_bytes(b'\x00' * 15)


class TestKidToUuid:
    """License container key IDs."""

    def test_sixteen_bytes(self):
        kid = bytes.fromhex('00112233445566778899aabbccddeeff')
        assert kid_to_uuid(kid) == UUID('00112233-4455-6677-8899-aabbccddeeff')

    def test_empty(self):
        assert kid_to_uuid(b'') == UUID(int=0)

    def test_decimal(self):
        assert kid_to_uuid(b'12345') == UUID(int=12345)

    def test_short_is_right_padded(self):
        assert kid_to_uuid(b'\xab\xcd') == UUID('abcd0000-0000-0000-0000-000000000000')

    def test_too_long(self):
        with pytest.raises(ValueError):
            kid_to_uuid(b'\x01' * 17)


class TestContentKey:
    """Key records and classification."""

    def test_type_from_value(self):
        assert KeyType.from_value(2) is KeyType.CONTENT
        assert KeyType.from_value(99) is KeyType.UNTYPED

    def test_content_classification(self):
        kid = UUID(int=1)
        assert ContentKey(kid, b'\x00' * 16).is_content
        assert not ContentKey(kid, b'\x00' * 16, KeyType.UNTYPED).is_content
        assert not ContentKey(kid, b'\x00' * 16, KeyType.SIGNING).is_content

    def test_repr_hides_key(self):
        key = ContentKey(UUID(int=1), bytes.fromhex('0f' * 16))
        assert '0f0f' not in repr(key)
        assert str(key) == '00000000000000000000000000000001:' + '0f' * 16
