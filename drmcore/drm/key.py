from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class KeyType(Enum):
    """
    Classification of a key container in a license response.

    UNTYPED is the protocol's unset default; such keys are still decrypted and kept.
    """
    UNTYPED = 0
    SIGNING = 1
    CONTENT = 2
    KEY_CONTROL = 3
    OPERATOR_SESSION = 4
    ENTITLEMENT = 5
    OEM_CONTENT = 6

    @classmethod
    def from_value(cls, value: int) -> 'KeyType':
        try:
            return cls(value)
        except ValueError:
            return cls.UNTYPED


def swap_guid_bytes(data: bytes) -> bytes:
    """
    Converts between the mixed-endian GUID layout and big-endian UUID byte order.

    Bytes 0-3, 4-5 and 6-7 are each reversed; bytes 8-15 are left untouched.
    Applying it twice returns the input.

    Args:
        data (bytes): A 16-byte identifier.

    Returns:
        bytes: The identifier in the other byte order.
    """
    assert len(data) == 16, f'Invalid key ID length: expected 16 bytes, got {len(data)}'
    return data[3::-1] + data[5:3:-1] + data[7:5:-1] + data[8:]


def kid_from_guid(data: bytes) -> UUID:
    """Builds the canonical key ID from a GUID-ordered identifier taken from header metadata."""
    return UUID(bytes=swap_guid_bytes(data))


def kid_to_uuid(kid: bytes) -> UUID:
    """
    Normalizes a key container ID into a UUID.

    Args:
        kid (bytes): Raw key ID as carried by the license.

    Returns:
        UUID: 16-byte IDs map directly; empty IDs map to the nil UUID, decimal strings
              to their integer value and shorter IDs are right-padded with zeros.

    Raises:
        ValueError: If the ID is longer than 16 bytes.
    """
    if not kid:
        return UUID(int=0)

    # Some services issue numeric key IDs as decimal text
    if kid.decode('utf-8', errors='replace').isdigit() and len(kid) != 16:
        return UUID(int=int(kid.decode('utf-8')))

    if len(kid) > 16:
        raise ValueError(f'Invalid key ID length: expected at most 16 bytes, got {len(kid)}')

    return UUID(bytes=kid.ljust(16, b'\x00'))


@dataclass(frozen=True)
class ContentKey:
    kid: UUID
    key: bytes
    type: KeyType = KeyType.CONTENT

    @property
    def is_content(self) -> bool:
        return self.type is KeyType.CONTENT

    def __repr__(self) -> str:
        return f'ContentKey(kid={self.kid}, type={self.type.name})'

    def __str__(self) -> str:
        return f'{self.kid.hex}:{self.key.hex()}'


__all__ = ('KeyType', 'ContentKey', 'swap_guid_bytes', 'kid_from_guid', 'kid_to_uuid')
