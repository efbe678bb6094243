"""
P-256 primitives: deterministic ECDSA-SHA256 and EC ElGamal.

Inputs and outputs are raw byte strings only: 32-byte big-endian scalars, 64-byte
X || Y points and 64-byte R || S signatures. Curve library objects never leave this module.
"""

from dataclasses import dataclass

from Cryptodome.Hash import SHA256
from Cryptodome.PublicKey import ECC
from Cryptodome.PublicKey.ECC import EccKey, EccPoint
from Cryptodome.Signature import DSS

from drmcore.drm import CURVE, ELGAMAL_CIPHERTEXT_SIZE, POINT_SIZE, SCALAR_SIZE, SIGNATURE_SIZE
from drmcore.drm.exceptions import (
    DecryptionFailed, InvalidScalar, PointNotOnCurve, SignatureMismatch, UnexpectedEndOfData)

# Convert bytes to a big-endian unsigned integer
bytes2int = lambda x: int.from_bytes(x, byteorder='big', signed=False)

# Field prime p of P-256
P256_PRIME = 0xFFFFFFFF00000001000000000000000000000000FFFFFFFFFFFFFFFFFFFFFFFF

# Order n of the P-256 base point
P256_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551


@dataclass(frozen=True)
class EccKeyPair:
    private_key: bytes  # 32-byte scalar
    public_key: bytes  # 64-byte X || Y

    def __repr__(self) -> str:
        return f'EccKeyPair(public_key={self.public_key.hex()})'


def _point_to_bytes(point: EccPoint) -> bytes:
    x, y = point.xy
    return int(x).to_bytes(SCALAR_SIZE, 'big') + int(y).to_bytes(SCALAR_SIZE, 'big')


def _bytes_to_point(data: bytes) -> EccPoint:
    """
    Decodes a raw 64-byte X || Y encoding into a curve point.

    Raises:
        PointNotOnCurve: If the encoding has the wrong size or does not lie on P-256.
    """
    if len(data) != POINT_SIZE:
        raise PointNotOnCurve(f'invalid point size: expected {POINT_SIZE} bytes, got {len(data)}')

    # The library accepts (0, 0) as the point at infinity, which has no affine encoding
    x, y = bytes2int(data[:SCALAR_SIZE]), bytes2int(data[SCALAR_SIZE:])
    if x == 0 and y == 0:
        raise PointNotOnCurve('point not on curve')

    # Coordinates must be reduced; the library would silently take them mod p
    if x >= P256_PRIME or y >= P256_PRIME:
        raise PointNotOnCurve('point not on curve')

    try:
        return EccPoint(x, y, curve=CURVE)
    except ValueError:
        raise PointNotOnCurve('point not on curve') from None


def _private_key(private_scalar: bytes) -> EccKey:
    if len(private_scalar) != SCALAR_SIZE:
        raise InvalidScalar(f'invalid scalar size: expected {SCALAR_SIZE} bytes, got {len(private_scalar)}')
    d = bytes2int(private_scalar)
    if not 0 < d < P256_ORDER:
        raise InvalidScalar('scalar out of range for P-256')
    return ECC.construct(curve=CURVE, d=d)


def _public_key(public_point: bytes) -> EccKey:
    point = _bytes_to_point(public_point)
    x, y = point.xy
    return ECC.construct(curve=CURVE, point_x=int(x), point_y=int(y))


def generate_key_pair() -> EccKeyPair:
    """Generates a fresh P-256 key pair from the library's cryptographically secure source."""
    key = ECC.generate(curve=CURVE)
    return EccKeyPair(
        private_key=int(key.d).to_bytes(SCALAR_SIZE, 'big'),
        public_key=_point_to_bytes(key.pointQ)
    )


def public_key(private_scalar: bytes) -> bytes:
    """Derives the 64-byte public point of a 32-byte private scalar."""
    return _point_to_bytes(_private_key(private_scalar).pointQ)


def sign(private_scalar: bytes, message: bytes) -> bytes:
    """
    Signs a message with ECDSA-SHA256 using an RFC 6979 deterministic nonce.

    The same key and message always produce the same signature.

    Args:
        private_scalar (bytes): 32-byte private scalar.
        message (bytes): Raw message; it is hashed with SHA-256 here.

    Returns:
        bytes: 64-byte R || S signature.

    Raises:
        InvalidScalar: If the scalar is not a valid P-256 private key.
    """
    signer = DSS.new(_private_key(private_scalar), 'deterministic-rfc6979', encoding='binary')
    return signer.sign(SHA256.new(message))


def verify(public_point: bytes, message: bytes, signature: bytes) -> None:
    """
    Verifies an ECDSA-SHA256 signature.

    Both the fixed 64-byte R || S encoding and DER are accepted, since certificate
    issuers emit either for the same algorithm.

    Args:
        public_point (bytes): 64-byte X || Y public key.
        message (bytes): Raw signed message.
        signature (bytes): 64-byte R || S or DER-encoded signature.

    Raises:
        PointNotOnCurve: If the public key is not a valid P-256 point.
        SignatureMismatch: If the signature is malformed or does not match.
    """
    key = _public_key(public_point)
    encoding = 'binary' if len(signature) == SIGNATURE_SIZE else 'der'
    verifier = DSS.new(key, 'fips-186-3', encoding=encoding)
    try:
        verifier.verify(SHA256.new(message), signature)
    except (ValueError, TypeError):
        raise SignatureMismatch() from None


def elgamal_encrypt(public_point: bytes, message_point: bytes) -> bytes:
    """
    Encrypts a curve point to a public key with EC ElGamal.

    A fresh random scalar k is drawn for every call:
        C1 = G * k
        C2 = message_point + public_point * k

    Args:
        public_point (bytes): 64-byte X || Y recipient public key.
        message_point (bytes): 64-byte X || Y point to encrypt.

    Returns:
        bytes: 128-byte ciphertext C1 || C2.

    Raises:
        PointNotOnCurve: If either input is not a valid P-256 point.
    """
    recipient = _bytes_to_point(public_point)
    message = _bytes_to_point(message_point)

    ephemeral = ECC.generate(curve=CURVE)
    point1 = ephemeral.pointQ
    point2 = message + recipient * int(ephemeral.d)

    return _point_to_bytes(point1) + _point_to_bytes(point2)


def elgamal_decrypt(private_scalar: bytes, ciphertext: bytes) -> bytes:
    """
    Decrypts an EC ElGamal ciphertext and returns the X coordinate of the message point.

    Only the first 128 bytes are used; trailing data is ignored.

    Args:
        private_scalar (bytes): 32-byte recipient private scalar.
        ciphertext (bytes): At least 128 bytes, C1 || C2.

    Returns:
        bytes: 32-byte X coordinate of C2 - private_scalar * C1.

    Raises:
        UnexpectedEndOfData: If the ciphertext is shorter than 128 bytes.
        PointNotOnCurve: If C1 or C2 is not a valid P-256 point.
        InvalidScalar: If the scalar is not a valid P-256 private key.
        DecryptionFailed: If the result is the point at infinity.
    """
    if len(ciphertext) < ELGAMAL_CIPHERTEXT_SIZE:
        raise UnexpectedEndOfData(needed=ELGAMAL_CIPHERTEXT_SIZE, have=len(ciphertext))

    point1 = _bytes_to_point(ciphertext[:POINT_SIZE])
    point2 = _bytes_to_point(ciphertext[POINT_SIZE:ELGAMAL_CIPHERTEXT_SIZE])
    key = _private_key(private_scalar)

    decrypted = point2 + (-(point1 * int(key.d)))
    if decrypted.is_point_at_infinity():
        raise DecryptionFailed('decrypted to identity point')

    return int(decrypted.x).to_bytes(SCALAR_SIZE, 'big')


__all__ = (
    'EccKeyPair', 'generate_key_pair', 'public_key', 'sign', 'verify', 'elgamal_encrypt', 'elgamal_decrypt'
)
