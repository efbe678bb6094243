"""
License key derivation and content key unwrapping.

A session key is stretched with AES-CMAC into three purpose-bound keys. The server
key authenticates the license response with HMAC-SHA256 before anything in it is
trusted; the encryption key then unwraps each key container with AES-CBC and PKCS#7.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union
from uuid import UUID

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import cmac, hashes, hmac
from cryptography.hazmat.primitives.ciphers import Cipher
from cryptography.hazmat.primitives.ciphers.algorithms import AES
from cryptography.hazmat.primitives.ciphers.modes import CBC
from cryptography.hazmat.primitives.padding import PKCS7
from google.protobuf.message import DecodeError
from pywidevine.license_protocol_pb2 import License, SignedMessage

from drmcore.drm import (
    AUTHENTICATION_KEY_LABEL, AUTHENTICATION_KEY_SIZE_BITS, ENCRYPTION_KEY_LABEL, ENCRYPTION_KEY_SIZE_BITS)
from drmcore.drm.exceptions import KeyUnwrapFailed, MalformedStructure, ResponseAuthenticationFailed
from drmcore.drm.key import ContentKey, KeyType, kid_to_uuid

logger = logging.getLogger(__name__)


def derive_context(request: bytes) -> Tuple[bytes, bytes]:
    """
    Builds the encryption and authentication derivation contexts for a license request.

    Expected structure:
        - b'ENCRYPTION\\x00' + request + b'\\x00\\x00\\x00\\x80' (128-bit key)
        - b'AUTHENTICATION\\x00' + request + b'\\x00\\x00\\x02\\x00' (512-bit key)

    Args:
        request (bytes): The serialized license request message the response answers.

    Returns:
        Tuple[bytes, bytes]: The encryption context and the authentication context.
    """
    enc_context = ENCRYPTION_KEY_LABEL + request + ENCRYPTION_KEY_SIZE_BITS
    mac_context = AUTHENTICATION_KEY_LABEL + request + AUTHENTICATION_KEY_SIZE_BITS
    return enc_context, mac_context


def _cmac(key: bytes, counter: int, context: bytes) -> bytes:
    cipher = cmac.CMAC(
        algorithm=AES(key),
        backend=default_backend()
    )
    cipher.update(bytes([counter]) + context)
    return cipher.finalize()


@dataclass(frozen=True, repr=False)
class DerivedKeys:
    enc_key: bytes  # 16 bytes, unwraps key containers
    mac_key_server: bytes  # 32 bytes, authenticates the license response
    mac_key_client: bytes  # 32 bytes, authenticates renewal requests

    def __repr__(self) -> str:
        return 'DerivedKeys(<redacted>)'

    def sign_request(self, message: bytes) -> bytes:
        """Computes the HMAC-SHA256 signature of a client request with the client MAC key."""
        signer = hmac.HMAC(self.mac_key_client, hashes.SHA256(), backend=default_backend())
        signer.update(message)
        return signer.finalize()


def derive_keys(session_key: bytes, enc_context: bytes, mac_context: bytes) -> DerivedKeys:
    """
    Derives the encryption, server MAC and client MAC keys from a session key.

        enc_key        = CMAC(session_key, 0x01 || enc_context)
        mac_key_server = CMAC(session_key, 0x01 || mac_context) || CMAC(session_key, 0x02 || mac_context)
        mac_key_client = CMAC(session_key, 0x03 || mac_context) || CMAC(session_key, 0x04 || mac_context)

    Args:
        session_key (bytes): AES key shared with the license server.
        enc_context (bytes): Encryption key derivation context.
        mac_context (bytes): Authentication key derivation context.

    Returns:
        DerivedKeys: All three keys.

    Raises:
        MalformedStructure: If the session key is not a valid AES key size.
    """
    if len(session_key) not in (16, 24, 32):
        raise MalformedStructure(f'invalid session key size: {len(session_key)} bytes')

    return DerivedKeys(
        enc_key=_cmac(session_key, 1, enc_context),
        mac_key_server=_cmac(session_key, 1, mac_context) + _cmac(session_key, 2, mac_context),
        mac_key_client=_cmac(session_key, 3, mac_context) + _cmac(session_key, 4, mac_context)
    )


def _parse_signed_license(license_body: bytes) -> SignedMessage:
    signed_message = SignedMessage()
    try:
        signed_message.ParseFromString(license_body)
    except DecodeError as e:
        raise MalformedStructure(f'license response is not a signed message: {e}') from None

    if signed_message.type != SignedMessage.MessageType.Value('LICENSE'):
        raise MalformedStructure(f'expected a license message, got message type {signed_message.type}')

    return signed_message


def _authenticate(keys: DerivedKeys, signed_message: SignedMessage) -> None:
    """
    Verifies the response HMAC over the message bytes exactly as received.

    Raises:
        ResponseAuthenticationFailed: If the signature does not match.
    """
    verifier = hmac.HMAC(keys.mac_key_server, hashes.SHA256(), backend=default_backend())
    verifier.update(signed_message.oemcrypto_core_message or b'')
    verifier.update(signed_message.msg)
    try:
        verifier.verify(signed_message.signature)
    except InvalidSignature:
        raise ResponseAuthenticationFailed('license response signature mismatch') from None


def _unwrap_key(key: bytes, iv: bytes, enc_data: bytes) -> bytes:
    """
    Decrypts a wrapped key with AES-CBC and removes its PKCS#7 padding.

    Raises:
        ValueError: If the IV, ciphertext length or padding is invalid.
    """
    cipher = Cipher(
        algorithm=AES(key),
        mode=CBC(iv),
        backend=default_backend()
    )

    decryptor = cipher.decryptor()
    dec_padded_data = decryptor.update(enc_data) + decryptor.finalize()

    unpadder = PKCS7(AES.block_size).unpadder()
    return unpadder.update(dec_padded_data) + unpadder.finalize()


@dataclass(frozen=True)
class UnwrapResult:
    keys: Tuple[ContentKey, ...] = ()
    errors: Tuple[KeyUnwrapFailed, ...] = field(default=())

    @property
    def content_keys(self) -> List[ContentKey]:
        return [k for k in self.keys if k.is_content]

    @property
    def failed_kids(self) -> List[Optional[UUID]]:
        return [e.kid for e in self.errors]

    def get(self, kid: Union[UUID, str]) -> Optional[ContentKey]:
        kid = kid if isinstance(kid, UUID) else UUID(kid)
        return next((k for k in self.keys if k.kid == kid), None)


def unwrap(keys: DerivedKeys, license_body: bytes) -> UnwrapResult:
    """
    Authenticates a license response and unwraps every key container in it.

    Args:
        keys (DerivedKeys): Keys derived for this transaction.
        license_body (bytes): Serialized signed license message.

    Returns:
        UnwrapResult: Keys that were unwrapped and the per-key failures.

    Raises:
        MalformedStructure: If the response cannot be decoded.
        ResponseAuthenticationFailed: If the response signature does not match.
    """
    signed_message = _parse_signed_license(license_body)
    _authenticate(keys, signed_message)

    license_message = License()
    try:
        license_message.ParseFromString(signed_message.msg)
    except DecodeError as e:
        raise MalformedStructure(f'authenticated license payload is not a license: {e}') from None

    unwrapped, errors = [], []
    for container in license_message.key:
        try:
            kid = kid_to_uuid(container.id)
        except ValueError as e:
            errors.append(KeyUnwrapFailed(str(e), raw_kid=container.id))
            continue

        try:
            key = _unwrap_key(keys.enc_key, container.iv, container.key)
        except ValueError as e:
            # Wrong IV size, partial block or bad padding
            logger.debug('Unable to unwrap key %s: %s', kid, e)
            errors.append(KeyUnwrapFailed(str(e) or 'invalid padding', kid=kid, raw_kid=container.id))
            continue

        # An unset type reads back as the first enum value, so presence is checked explicitly
        key_type = KeyType.from_value(container.type) if container.HasField('type') else KeyType.UNTYPED
        unwrapped.append(ContentKey(kid=kid, key=key, type=key_type))

    logger.info('Unwrapped %s key(s), %s failure(s)', len(unwrapped), len(errors))
    return UnwrapResult(keys=tuple(unwrapped), errors=tuple(errors))


def derive_and_unwrap(session_key: bytes, license_body: bytes, enc_context: bytes, mac_context: bytes) -> UnwrapResult:
    """
    Derives the transaction keys from a session key and unwraps a license response with them.

    The derived keys live only for the duration of this call.

    Args:
        session_key (bytes): AES key shared with the license server.
        license_body (bytes): Serialized signed license message.
        enc_context (bytes): Encryption key derivation context.
        mac_context (bytes): Authentication key derivation context.

    Returns:
        UnwrapResult: Keys that were unwrapped and the per-key failures.

    Raises:
        MalformedStructure: If the session key or response is malformed.
        ResponseAuthenticationFailed: If the response signature does not match.
    """
    return unwrap(derive_keys(session_key, enc_context, mac_context), license_body)


__all__ = ('DerivedKeys', 'UnwrapResult', 'derive_context', 'derive_keys', 'unwrap', 'derive_and_unwrap')
