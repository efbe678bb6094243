"""
Binary certificate (BCert) chain parsing.

A chain is a `CHAI` container holding `CERT` records back to back, leaf first and
root last. Each certificate is a sequence of TLV attributes. Recognized attribute
tags decode into typed records; anything else is kept as opaque bytes so that newer
certificates still parse.

Every certificate keeps its literal byte range, and signatures are always checked
against `raw[:signed_length]`, never against a re-encoding of the parsed fields.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Dict, Iterator, Optional, Tuple, Union

from construct import Bytes, Int16ub, Int32ub, Struct

from drmcore.drm import ATTRIBUTE_HEADER_SIZE, CERT_MAGIC, CHAIN_MAGIC, MAX_FEATURES, SUPPORTED_VERSIONS
from drmcore.drm.cursor import Cursor
from drmcore.drm.exceptions import BadMagic, MalformedStructure, UnsupportedVersion

logger = logging.getLogger(__name__)


class AttributeTag(IntEnum):
    BASIC = 0x0001
    DOMAIN = 0x0002
    PC = 0x0003
    DEVICE = 0x0004
    FEATURE = 0x0005
    KEY = 0x0006
    MANUFACTURER = 0x0007
    SIGNATURE = 0x0008
    SILVERLIGHT = 0x0009
    METERING = 0x000A
    EXT_DATA_SIGN_KEY = 0x000B
    EXT_DATA_CONTAINER = 0x000C
    EXT_DATA_SIGNATURE = 0x000D
    EXT_DATA_HWID = 0x000E
    SERVER = 0x000F
    SECURITY_VERSION = 0x0010
    SECURITY_VERSION_2 = 0x0011


class CertType(IntEnum):
    UNKNOWN = 0
    PC = 1
    DEVICE = 2
    DOMAIN = 3
    ISSUER = 4
    CRL_SIGNER = 5
    SERVICE = 6
    SILVERLIGHT = 7
    APPLICATION = 8
    METERING = 9
    KEY_FILE_SIGNER = 10
    SERVER = 11
    LICENSE_SIGNER = 12
    SECURE_TIME_SERVER = 13
    RPROV_MODEL_AUTH = 14


class KeyUsage(IntEnum):
    UNKNOWN = 0
    SIGN = 1
    ENCRYPT_KEY = 2
    SIGN_CRL = 3
    ISSUER_ALL = 4
    ISSUER_INDIV = 5
    ISSUER_DEVICE = 6
    ISSUER_LINK = 7
    ISSUER_DOMAIN = 8
    ISSUER_SILVERLIGHT = 9
    ISSUER_APPLICATION = 10
    ISSUER_CRL = 11
    ISSUER_METERING = 12
    ISSUER_SIGN_KEYFILE = 13
    SIGN_KEYFILE = 14
    ISSUER_SERVER = 15
    ENCRYPT_KEY_SAMPLE_PROTECTION_RC4 = 16
    RESERVED_2 = 17
    ISSUER_SIGN_LICENSE = 18
    SIGN_LICENSE = 19
    SIGN_RESPONSE = 20
    PRND_ENCRYPT_KEY_DEPRECATED = 21
    ENCRYPT_KEY_SAMPLE_PROTECTION_AES128_CTR = 22
    ISSUER_SECURE_TIME_SERVER = 23
    ISSUER_RPROV_MODEL_AUTH = 24


class SignatureType(IntEnum):
    ECDSA_P256_SHA256 = 1


class KeyType(IntEnum):
    ECC_P256 = 1


class _Structures:
    chain_header = Struct(
        'version' / Int32ub,
        'total_length' / Int32ub,
        'flags' / Int32ub,
        'cert_count' / Int32ub
    )

    cert_header = Struct(
        'version' / Int32ub,
        'total_length' / Int32ub,
        'signed_length' / Int32ub
    )

    attribute_header = Struct(
        'flags' / Int16ub,
        'tag' / Int16ub,
        'length' / Int32ub  # includes this header
    )

    basic = Struct(
        'cert_id' / Bytes(16),
        'security_level' / Int32ub,
        'flags' / Int32ub,
        'cert_type' / Int32ub,
        'public_key_digest' / Bytes(32),
        'expiration_date' / Int32ub,
        'client_id' / Bytes(16)
    )

    pc = Struct('security_version' / Int32ub)

    device = Struct(
        'max_license' / Int32ub,
        'max_header' / Int32ub,
        'max_chain_depth' / Int32ub
    )

    security_version = Struct(
        'security_version' / Int32ub,
        'platform_identifier' / Int32ub
    )

    server = Struct('warning_days' / Int32ub)


def _read_struct(cursor: Cursor, structure: Struct) -> dict:
    """
    Decodes a fixed-size record at the cursor position.

    The cursor bounds-checks and consumes exactly `structure.sizeof()` bytes; construct
    only decodes the slice it is handed.
    """
    parsed = structure.parse(cursor.read_bytes(structure.sizeof()))
    return {k: v for k, v in parsed.items() if not k.startswith('_')}


@dataclass(frozen=True)
class BasicInfo:
    cert_id: bytes
    security_level: int
    flags: int
    cert_type: int
    public_key_digest: bytes
    expiration_date: int  # epoch seconds
    client_id: bytes

    NEVER_EXPIRES = 0xFFFFFFFF

    @property
    def never_expires(self) -> bool:
        return self.expiration_date == self.NEVER_EXPIRES


@dataclass(frozen=True)
class DomainInfo:
    service_id: bytes
    account_id: bytes
    revision_timestamp: int
    domain_url: str


@dataclass(frozen=True)
class PcInfo:
    security_version: int


@dataclass(frozen=True)
class DeviceInfo:
    max_license: int
    max_header: int
    max_chain_depth: int


@dataclass(frozen=True)
class FeatureInfo:
    features: Tuple[int, ...]


@dataclass(frozen=True)
class CertKey:
    key_type: int
    key: bytes  # X || Y for P-256
    flags: int
    usages: Tuple[int, ...]

    def has_usage(self, usage: int) -> bool:
        return int(usage) in self.usages


@dataclass(frozen=True)
class KeyInfo:
    keys: Tuple[CertKey, ...]


@dataclass(frozen=True)
class ManufacturerInfo:
    flags: int
    name: str
    model_name: str
    model_number: str


@dataclass(frozen=True)
class SignatureInfo:
    signature_type: int
    signature: bytes
    signing_key: bytes  # issuer public key that produced the signature


@dataclass(frozen=True)
class SilverlightInfo:
    security_version: int
    platform_identifier: int


@dataclass(frozen=True)
class MeteringInfo:
    metering_id: bytes
    metering_url: str


@dataclass(frozen=True)
class ExtDataSignKeyInfo:
    key_type: int
    flags: int
    key: bytes


@dataclass(frozen=True)
class ServerInfo:
    warning_days: int


@dataclass(frozen=True)
class SecurityVersionInfo:
    security_version: int
    platform_identifier: int


AttributeData = Union[
    BasicInfo, DomainInfo, PcInfo, DeviceInfo, FeatureInfo, KeyInfo, ManufacturerInfo, SignatureInfo,
    SilverlightInfo, MeteringInfo, ExtDataSignKeyInfo, ServerInfo, SecurityVersionInfo, bytes
]


@dataclass(frozen=True)
class Attribute:
    flags: int
    tag: int
    data: AttributeData  # raw payload bytes for unknown and container tags

    @property
    def is_opaque(self) -> bool:
        return isinstance(self.data, bytes)


def _parse_basic(r: Cursor) -> BasicInfo:
    return BasicInfo(**_read_struct(r, _Structures.basic))


def _parse_domain(r: Cursor) -> DomainInfo:
    service_id = r.read_bytes(16)
    account_id = r.read_bytes(16)
    revision_timestamp = r.read_u32be()
    domain_url = r.read_padded_string(r.read_u32be())
    return DomainInfo(service_id, account_id, revision_timestamp, domain_url)


def _parse_pc(r: Cursor) -> PcInfo:
    return PcInfo(**_read_struct(r, _Structures.pc))


def _parse_device(r: Cursor) -> DeviceInfo:
    return DeviceInfo(**_read_struct(r, _Structures.device))


def _parse_feature(r: Cursor) -> FeatureInfo:
    count = min(r.read_u32be(), MAX_FEATURES)
    return FeatureInfo(tuple(r.read_u32be() for _ in range(count)))


def _parse_key(r: Cursor) -> KeyInfo:
    keys = []
    for _ in range(r.read_u32be()):
        key_type = r.read_u16be()
        key_length = r.read_u16be() // 8  # declared in bits
        flags = r.read_u32be()
        key = r.read_bytes(key_length)
        usages = tuple(r.read_u32be() for _ in range(r.read_u32be()))
        keys.append(CertKey(key_type=key_type, key=key, flags=flags, usages=usages))
    return KeyInfo(tuple(keys))


def _parse_manufacturer(r: Cursor) -> ManufacturerInfo:
    flags = r.read_u32be()
    name = r.read_padded_string(r.read_u32be())
    model_name = r.read_padded_string(r.read_u32be())
    model_number = r.read_padded_string(r.read_u32be())
    return ManufacturerInfo(flags, name, model_name, model_number)


def _parse_signature(r: Cursor) -> SignatureInfo:
    signature_type = r.read_u16be()
    signature = r.read_bytes(r.read_u16be())
    signing_key = r.read_bytes(r.read_u32be() // 8)  # declared in bits
    return SignatureInfo(signature_type, signature, signing_key)


def _parse_silverlight(r: Cursor) -> SilverlightInfo:
    return SilverlightInfo(**_read_struct(r, _Structures.security_version))


def _parse_metering(r: Cursor) -> MeteringInfo:
    metering_id = r.read_bytes(16)
    metering_url = r.read_padded_string(r.read_u32be())
    return MeteringInfo(metering_id, metering_url)


def _parse_ext_data_sign_key(r: Cursor) -> ExtDataSignKeyInfo:
    key_type = r.read_u16be()
    key_length = r.read_u16be() // 8
    flags = r.read_u32be()
    return ExtDataSignKeyInfo(key_type=key_type, flags=flags, key=r.read_bytes(key_length))


def _parse_server(r: Cursor) -> ServerInfo:
    return ServerInfo(**_read_struct(r, _Structures.server))


def _parse_security_version(r: Cursor) -> SecurityVersionInfo:
    return SecurityVersionInfo(**_read_struct(r, _Structures.security_version))


# Container tags (EXT_DATA_CONTAINER, EXT_DATA_SIGNATURE, EXT_DATA_HWID) are kept opaque
_DECODERS: Dict[int, Callable[[Cursor], AttributeData]] = {
    AttributeTag.BASIC: _parse_basic,
    AttributeTag.DOMAIN: _parse_domain,
    AttributeTag.PC: _parse_pc,
    AttributeTag.DEVICE: _parse_device,
    AttributeTag.FEATURE: _parse_feature,
    AttributeTag.KEY: _parse_key,
    AttributeTag.MANUFACTURER: _parse_manufacturer,
    AttributeTag.SIGNATURE: _parse_signature,
    AttributeTag.SILVERLIGHT: _parse_silverlight,
    AttributeTag.METERING: _parse_metering,
    AttributeTag.EXT_DATA_SIGN_KEY: _parse_ext_data_sign_key,
    AttributeTag.SERVER: _parse_server,
    AttributeTag.SECURITY_VERSION: _parse_security_version,
    AttributeTag.SECURITY_VERSION_2: _parse_security_version,
}


def _parse_attribute(r: Cursor) -> Attribute:
    header = _read_struct(r, _Structures.attribute_header)
    if header['length'] < ATTRIBUTE_HEADER_SIZE:
        raise MalformedStructure(
            f'attribute 0x{header["tag"]:04X} declares {header["length"]} bytes, '
            f'less than its {ATTRIBUTE_HEADER_SIZE}-byte header')

    payload = r.read_bytes(header['length'] - ATTRIBUTE_HEADER_SIZE)
    decoder = _DECODERS.get(header['tag'])
    data = decoder(Cursor(payload)) if decoder else payload
    return Attribute(flags=header['flags'], tag=header['tag'], data=data)


@dataclass(frozen=True)
class Certificate:
    version: int
    total_length: int
    signed_length: int  # prefix of `raw` covered by the signature
    attributes: Tuple[Attribute, ...]
    raw: bytes

    def _find(self, kind: type) -> Optional[AttributeData]:
        return next((a.data for a in self.attributes if isinstance(a.data, kind)), None)

    @property
    def basic_info(self) -> Optional[BasicInfo]:
        return self._find(BasicInfo)

    @property
    def key_info(self) -> Optional[KeyInfo]:
        return self._find(KeyInfo)

    @property
    def signature_info(self) -> Optional[SignatureInfo]:
        return self._find(SignatureInfo)

    @property
    def manufacturer_info(self) -> Optional[ManufacturerInfo]:
        return self._find(ManufacturerInfo)

    @property
    def security_level(self) -> Optional[int]:
        basic = self.basic_info
        return basic.security_level if basic else None

    @property
    def cert_type(self) -> Optional[int]:
        basic = self.basic_info
        return basic.cert_type if basic else None

    @property
    def keys(self) -> Iterator[CertKey]:
        """All embedded keys, in attribute order then key order."""
        for attribute in self.attributes:
            if isinstance(attribute.data, KeyInfo):
                yield from attribute.data.keys

    def key_by_usage(self, usage: int) -> Optional[bytes]:
        """
        Returns the first embedded public key carrying the given usage.

        Keys are never selected by position: a certificate may list several keys and
        only their usage markers say what each one is for.

        Args:
            usage (int): A `KeyUsage` value.

        Returns:
            bytes or None: The raw public key bytes, or None if no key carries that usage.
        """
        return next((k.key for k in self.keys if k.has_usage(usage)), None)

    @property
    def signing_key(self) -> Optional[bytes]:
        return self.key_by_usage(KeyUsage.SIGN)

    @property
    def encryption_key(self) -> Optional[bytes]:
        return self.key_by_usage(KeyUsage.ENCRYPT_KEY)

    @property
    def signed_bytes(self) -> bytes:
        return self.raw[:self.signed_length]


@dataclass(frozen=True)
class Chain:
    version: int
    flags: int
    certificates: Tuple[Certificate, ...]

    def __len__(self) -> int:
        return len(self.certificates)

    def __iter__(self) -> Iterator[Certificate]:
        return iter(self.certificates)

    def __getitem__(self, index: int) -> Certificate:
        return self.certificates[index]

    def leaf(self) -> Optional[Certificate]:
        return self.certificates[0] if self.certificates else None

    def root(self) -> Optional[Certificate]:
        return self.certificates[-1] if self.certificates else None

    @property
    def security_level(self) -> Optional[int]:
        leaf = self.leaf()
        return leaf.security_level if leaf else None


def _check_magic(r: Cursor, expected: bytes) -> None:
    magic = r.read_bytes(len(expected))
    if magic != expected:
        raise BadMagic(expected=expected, got=magic)


def _check_version(kind: str, version: int) -> None:
    if version not in SUPPORTED_VERSIONS:
        raise UnsupportedVersion(kind, version)


def _parse_certificate(r: Cursor) -> Certificate:
    start = r.position
    _check_magic(r, CERT_MAGIC)

    header = _read_struct(r, _Structures.cert_header)
    _check_version('certificate', header['version'])

    # The declared length covers the CERT header itself
    if header['total_length'] < r.position - start:
        raise MalformedStructure(f'certificate total length {header["total_length"]} is shorter than its header')

    end = start + header['total_length']
    attributes = []
    # Fewer than a header's worth of bytes before the boundary are trailing padding
    while min(end, len(r.data)) - r.position >= ATTRIBUTE_HEADER_SIZE:
        attributes.append(_parse_attribute(r))

    raw = r.data[start:min(end, len(r.data))]

    # Trailing bytes up to the certificate boundary are skipped
    r.position = min(end, len(r.data))

    return Certificate(
        version=header['version'],
        total_length=header['total_length'],
        signed_length=header['signed_length'],
        attributes=tuple(attributes),
        raw=raw
    )


def parse_certificate(data: bytes) -> Certificate:
    """
    Parses a single `CERT` record.

    Args:
        data (bytes): Raw certificate bytes, starting at its magic.

    Returns:
        Certificate: The parsed certificate.

    Raises:
        DrmError: If the certificate is truncated or structurally invalid.
    """
    return _parse_certificate(Cursor(data))


def parse_chain(data: bytes) -> Chain:
    """
    Parses a `CHAI` certificate chain.

    Certificates are parsed sequentially, each bounded by its own declared length.
    Any error aborts the whole chain; no partially parsed chain is returned.

    Args:
        data (bytes): Raw chain bytes, starting at its magic.

    Returns:
        Chain: The parsed chain, leaf first and root last.

    Raises:
        DrmError: If the chain or any certificate is truncated or structurally invalid.
    """
    r = Cursor(data)
    _check_magic(r, CHAIN_MAGIC)

    header = _read_struct(r, _Structures.chain_header)
    _check_version('chain', header['version'])

    certificates = tuple(_parse_certificate(r) for _ in range(header['cert_count']))
    for index, cert in enumerate(certificates):
        logger.debug(
            'Parsed certificate %s: type=%s, security_level=%s, attributes=%s',
            index, cert.cert_type, cert.security_level, len(cert.attributes))

    return Chain(version=header['version'], flags=header['flags'], certificates=certificates)


__all__ = (
    'AttributeTag', 'CertType', 'KeyUsage', 'SignatureType', 'KeyType', 'BasicInfo', 'DomainInfo', 'PcInfo',
    'DeviceInfo', 'FeatureInfo', 'CertKey', 'KeyInfo', 'ManufacturerInfo', 'SignatureInfo', 'SilverlightInfo',
    'MeteringInfo', 'ExtDataSignKeyInfo', 'ServerInfo', 'SecurityVersionInfo', 'Attribute', 'Certificate', 'Chain',
    'parse_certificate', 'parse_chain'
)
