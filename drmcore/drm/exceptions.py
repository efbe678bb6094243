"""
Error taxonomy for the certificate, elliptic-curve and license components.

None of these errors carries key material: messages name the failing structure,
offsets or key IDs only.
"""

from typing import Optional
from uuid import UUID


class DrmError(Exception):
    """Base class for every error raised by drmcore."""


class TruncatedInput(DrmError):
    """Fewer bytes are available than a field declares."""


class UnexpectedEndOfData(TruncatedInput):
    """Raised by the byte cursor when a read would run past the end of the buffer."""

    def __init__(self, needed: int, have: int):
        super().__init__(f'unexpected end of data: need {needed} bytes, have {have}')
        self.needed = needed
        self.have = have


class BadMagic(DrmError):

    def __init__(self, expected: bytes, got: bytes):
        super().__init__(f'invalid magic: expected {expected!r}, got {got!r}')
        self.expected = expected
        self.got = got


class UnsupportedVersion(DrmError):

    def __init__(self, kind: str, version: int):
        super().__init__(f'unsupported {kind} version: {version}')
        self.kind = kind
        self.version = version


class MalformedStructure(DrmError):
    """Lengths or counts inside a structure are inconsistent."""


class UnknownEnumValue(DrmError):

    def __init__(self, kind: str, value: int):
        super().__init__(f'invalid enum value {value} for {kind}')
        self.kind = kind
        self.value = value


class CryptoInputError(DrmError):
    """Cryptographic input failed validation."""


class PointNotOnCurve(CryptoInputError):
    pass


class InvalidScalar(CryptoInputError):
    pass


class DecryptionFailed(DrmError):
    pass


class SignatureMismatch(DrmError):
    """Signature verification failed. The reason is deliberately not reported."""

    def __init__(self):
        super().__init__('signature mismatch')


class ChainUntrusted(DrmError):
    pass


class ResponseAuthenticationFailed(DrmError):
    """The license response signature did not match; no key from it may be used."""


class KeyUnwrapFailed(DrmError):
    """A single key container could not be decrypted or unpadded."""

    def __init__(self, reason: str, kid: Optional[UUID] = None, raw_kid: bytes = b''):
        label = str(kid) if kid else (raw_kid.hex() or '<empty>')
        super().__init__(f'unable to unwrap key {label}: {reason}')
        self.reason = reason
        self.kid = kid
        self.raw_kid = raw_kid


__all__ = (
    'DrmError', 'TruncatedInput', 'UnexpectedEndOfData', 'BadMagic', 'UnsupportedVersion', 'MalformedStructure',
    'UnknownEnumValue', 'CryptoInputError', 'PointNotOnCurve', 'InvalidScalar', 'DecryptionFailed',
    'SignatureMismatch', 'ChainUntrusted', 'ResponseAuthenticationFailed', 'KeyUnwrapFailed'
)
