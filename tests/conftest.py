"""Shared fixtures and byte-level builders for certificate chains and license responses."""

import os
from typing import Iterable, List, Optional, Sequence, Tuple

import pytest
from construct import Bytes, Const, Int16ub, Int32ub, PrefixedArray, Struct, this
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.ciphers import Cipher
from cryptography.hazmat.primitives.ciphers.algorithms import AES
from cryptography.hazmat.primitives.ciphers.modes import CBC
from cryptography.hazmat.primitives.padding import PKCS7
from pywidevine.license_protocol_pb2 import License, SignedMessage

from drmcore.drm import ecc
from drmcore.drm.bcert import AttributeTag, KeyUsage
from drmcore.drm.license import derive_context, derive_keys

ChainHeader = Struct(
    'magic' / Const(b'CHAI'),
    'version' / Int32ub,
    'total_length' / Int32ub,
    'flags' / Int32ub,
    'cert_count' / Int32ub
)

CertHeader = Struct(
    'magic' / Const(b'CERT'),
    'version' / Int32ub,
    'total_length' / Int32ub,
    'signed_length' / Int32ub
)

AttributeHeader = Struct(
    'flags' / Int16ub,
    'tag' / Int16ub,
    'length' / Int32ub
)

BasicPayload = Struct(
    'cert_id' / Bytes(16),
    'security_level' / Int32ub,
    'flags' / Int32ub,
    'cert_type' / Int32ub,
    'public_key_digest' / Bytes(32),
    'expiration_date' / Int32ub,
    'client_id' / Bytes(16)
)

KeyEntry = Struct(
    'key_type' / Int16ub,
    'key_length' / Int16ub,  # bits
    'flags' / Int32ub,
    'key' / Bytes(lambda ctx: ctx.key_length // 8),
    'usages' / PrefixedArray(Int32ub, Int32ub)
)

KeyPayload = PrefixedArray(Int32ub, KeyEntry)

SignaturePayload = Struct(
    'signature_type' / Int16ub,
    'signature_length' / Int16ub,
    'signature' / Bytes(this.signature_length),
    'key_length' / Int32ub,  # bits
    'signing_key' / Bytes(lambda ctx: ctx.key_length // 8)
)

SIGNATURE_ATTRIBUTE_SIZE = AttributeHeader.sizeof() + 2 + 2 + 64 + 4 + 64


def build_attribute(tag: int, payload: bytes, flags: int = 0, length: Optional[int] = None) -> bytes:
    """Encodes one TLV attribute; `length` overrides the declared total length."""
    declared = AttributeHeader.sizeof() + len(payload) if length is None else length
    return AttributeHeader.build(dict(flags=flags, tag=tag, length=declared)) + payload


def build_basic(security_level: int = 3000, cert_type: int = 2, expiration_date: int = 0xFFFFFFFF,
                cert_id: bytes = b'\x11' * 16, client_id: bytes = b'\x22' * 16) -> bytes:
    payload = BasicPayload.build(dict(
        cert_id=cert_id,
        security_level=security_level,
        flags=0,
        cert_type=cert_type,
        public_key_digest=b'\x33' * 32,
        expiration_date=expiration_date,
        client_id=client_id
    ))
    return build_attribute(AttributeTag.BASIC, payload)


def build_keys(keys: Iterable[Tuple[bytes, Sequence[int]]]) -> bytes:
    payload = KeyPayload.build([
        dict(key_type=1, key_length=len(key) * 8, flags=0, key=key, usages=list(usages))
        for key, usages in keys
    ])
    return build_attribute(AttributeTag.KEY, payload)


def build_signature(signature: bytes, signing_key: bytes, signature_type: int = 1) -> bytes:
    payload = SignaturePayload.build(dict(
        signature_type=signature_type,
        signature_length=len(signature),
        signature=signature,
        key_length=len(signing_key) * 8,
        signing_key=signing_key
    ))
    return build_attribute(AttributeTag.SIGNATURE, payload)


def padded(text: bytes) -> bytes:
    """Length-prefixed string field padded to a 4-byte boundary."""
    return Int32ub.build(len(text)) + text + b'\x00' * (-len(text) % 4)


def build_certificate(attributes: List[bytes], signer: Optional[ecc.EccKeyPair] = None,
                      signature_type: int = 1, version: int = 1) -> bytes:
    """
    Assembles a CERT record.

    With a signer, a signature attribute naming the signer's public key is appended and
    the signature covers the header and every preceding attribute.
    """
    body = b''.join(attributes)
    signed_length = CertHeader.sizeof() + len(body)
    total_length = signed_length + (SIGNATURE_ATTRIBUTE_SIZE if signer else 0)
    header = CertHeader.build(dict(version=version, total_length=total_length, signed_length=signed_length))
    signed = header + body

    if signer is None:
        return signed

    signature = ecc.sign(signer.private_key, signed)
    return signed + build_signature(signature, signer.public_key, signature_type)


def build_chain(certificates: List[bytes], version: int = 1, flags: int = 0) -> bytes:
    body = b''.join(certificates)
    header = ChainHeader.build(dict(
        version=version,
        total_length=ChainHeader.sizeof() + len(body),
        flags=flags,
        cert_count=len(certificates)
    ))
    return header + body


def _aes_cbc_encrypt(key: bytes, iv: bytes, data: bytes, pad: bool = True) -> bytes:
    if pad:
        padder = PKCS7(AES.block_size).padder()
        data = padder.update(data) + padder.finalize()
    encryptor = Cipher(AES(key), CBC(iv), backend=default_backend()).encryptor()
    return encryptor.update(data) + encryptor.finalize()


def build_license(session_key: bytes, request: bytes, containers: List[dict], tamper: bool = False,
                  core_message: bytes = b'') -> bytes:
    """
    Builds a signed license response the way a license server would.

    Each container dict holds `kid`, `key` and optionally `type` (omitted leaves the
    field unset) and `pad=False` to encrypt the key without PKCS#7 padding.
    """
    enc_context, mac_context = derive_context(request)
    keys = derive_keys(session_key, enc_context, mac_context)

    license_message = License()
    for container in containers:
        iv = os.urandom(16)
        entry = license_message.key.add()
        entry.id = container['kid']
        entry.iv = iv
        entry.key = _aes_cbc_encrypt(keys.enc_key, iv, container['key'], container.get('pad', True))
        if 'type' in container:
            entry.type = container['type']

    msg = license_message.SerializeToString()
    signer = hmac.HMAC(keys.mac_key_server, hashes.SHA256(), backend=default_backend())
    signer.update(core_message + msg)
    signature = signer.finalize()
    if tamper:
        signature = bytes([signature[0] ^ 0x01]) + signature[1:]

    signed_message = SignedMessage()
    signed_message.type = SignedMessage.MessageType.Value('LICENSE')
    signed_message.msg = msg
    signed_message.signature = signature
    if core_message:
        signed_message.oemcrypto_core_message = core_message
    return signed_message.SerializeToString()


@pytest.fixture(scope='session')
def root_pair() -> ecc.EccKeyPair:
    return ecc.generate_key_pair()


@pytest.fixture(scope='session')
def leaf_pair() -> ecc.EccKeyPair:
    return ecc.generate_key_pair()


@pytest.fixture(scope='session')
def encryption_pair() -> ecc.EccKeyPair:
    return ecc.generate_key_pair()


@pytest.fixture
def root_cert(root_pair) -> bytes:
    """Self-issued root whose signing key is the trust anchor."""
    return build_certificate([
        build_basic(security_level=3000, cert_type=4),
        build_keys([(root_pair.public_key, [KeyUsage.SIGN, KeyUsage.ISSUER_ALL])])
    ], signer=root_pair)


@pytest.fixture
def leaf_cert(root_pair, leaf_pair, encryption_pair) -> bytes:
    return build_certificate([
        build_basic(security_level=3000, cert_type=2),
        build_keys([
            (leaf_pair.public_key, [KeyUsage.SIGN]),
            (encryption_pair.public_key, [KeyUsage.ENCRYPT_KEY])
        ])
    ], signer=root_pair)


@pytest.fixture
def signed_chain(leaf_cert, root_cert) -> bytes:
    return build_chain([leaf_cert, root_cert])


@pytest.fixture
def session_key() -> bytes:
    return bytes(range(16))


@pytest.fixture
def license_request() -> bytes:
    return b'\x08\x01\x12\x10' + b'license-request!'
