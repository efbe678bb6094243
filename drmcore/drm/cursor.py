from typing import Union

from drmcore.drm.exceptions import UnexpectedEndOfData


class Cursor:
    """
    Bounds-checked reader over an immutable byte buffer.

    Every read first checks that enough bytes remain from the current position, so no
    parser built on top of it can slice past the end of the underlying data.
    Integer reads decode straight from a memoryview of the buffer without copying it.
    """

    def __init__(self, data: Union[bytes, bytearray, memoryview], position: int = 0):
        """
        Args:
            data (bytes): The buffer to read from. It is never modified.
            position (int, optional): Initial offset within the buffer. Defaults to 0.
        """
        self._data = bytes(data)
        self._view = memoryview(self._data)
        self._pos = position

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def position(self) -> int:
        return self._pos

    @position.setter
    def position(self, value: int) -> None:
        assert 0 <= value <= len(self._data), f'Position out of range: {value}'
        self._pos = value

    @property
    def remaining(self) -> int:
        return max(len(self._data) - self._pos, 0)

    def ensure(self, n: int) -> None:
        """
        Checks that at least `n` bytes remain from the current position.

        Raises:
            UnexpectedEndOfData: If fewer than `n` bytes remain.
        """
        if n < 0 or self.remaining < n:
            raise UnexpectedEndOfData(needed=self._pos + n, have=len(self._data))

    def _take(self, n: int) -> memoryview:
        self.ensure(n)
        view = self._view[self._pos:self._pos + n]
        self._pos += n
        return view

    def read_bytes(self, n: int) -> bytes:
        """Reads exactly `n` bytes and advances past them."""
        return bytes(self._take(n))

    def skip(self, n: int) -> None:
        self._take(n)

    def read_u16be(self) -> int:
        return int.from_bytes(self._take(2), byteorder='big', signed=False)

    def read_u32be(self) -> int:
        return int.from_bytes(self._take(4), byteorder='big', signed=False)

    def read_u16le(self) -> int:
        return int.from_bytes(self._take(2), byteorder='little', signed=False)

    def read_u32le(self) -> int:
        return int.from_bytes(self._take(4), byteorder='little', signed=False)

    def read_padded_string(self, raw_len: int) -> str:
        """
        Reads a NUL-terminated string stored in a 4-byte aligned field.

        The field occupies `raw_len` rounded up to the next multiple of 4. The value ends at
        the first NUL byte, or after `raw_len` bytes when there is none, and is decoded as
        UTF-8 with invalid sequences replaced.

        Args:
            raw_len (int): Declared length of the string before alignment padding.

        Returns:
            str: The decoded string.
        """
        aligned = (raw_len + 3) & ~3
        field = self.read_bytes(aligned)
        end = field.find(b'\x00')
        if end < 0:
            end = min(raw_len, aligned)
        return field[:end].decode('utf-8', errors='replace')


__all__ = ('Cursor',)
