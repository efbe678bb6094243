"""
Chain-of-trust verification for parsed certificate chains.

Each certificate except the root must carry a signature over its own signed prefix
that validates under the signing key of the next certificate. The root is accepted
only against a trust anchor supplied by the caller, never on its own say-so.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from drmcore.drm import ecc
from drmcore.drm.bcert import Certificate, Chain, SignatureType
from drmcore.drm.exceptions import ChainUntrusted, DrmError, MalformedStructure, UnknownEnumValue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifiedChain:
    chain: Chain
    leaf: Certificate
    signing_key: Optional[bytes]
    encryption_key: Optional[bytes]

    @property
    def security_level(self) -> Optional[int]:
        return self.leaf.security_level


def _verify_signature(cert: Certificate, issuer_key: bytes) -> None:
    """
    Checks a certificate's signature block against an issuer public key.

    Raises:
        MalformedStructure: If the signature block is missing or the signed length is inconsistent.
        UnknownEnumValue: If the signature algorithm is not ECDSA-P256-SHA256.
        SignatureMismatch: If the signature does not verify.
    """
    signature = cert.signature_info
    if signature is None:
        raise MalformedStructure('malformed chain: certificate has no signature attribute')

    if signature.signature_type != SignatureType.ECDSA_P256_SHA256:
        raise UnknownEnumValue('SignatureType', signature.signature_type)

    # Verifying anything but the literal signed prefix would be meaningless
    if cert.signed_length > len(cert.raw):
        raise MalformedStructure(
            f'signed length {cert.signed_length} exceeds certificate size {len(cert.raw)}')

    ecc.verify(issuer_key, cert.signed_bytes, signature.signature)


def _verify_root(cert: Certificate, trusted_root_key: bytes) -> None:
    signature = cert.signature_info
    if signature is not None and signature.signing_key == trusted_root_key:
        # Issued directly by the anchor
        _verify_signature(cert, trusted_root_key)
        return

    if cert.signing_key == trusted_root_key:
        # The anchor is the root's own signing key
        return

    raise ChainUntrusted('root certificate does not match the trust anchor')


def verify_chain(chain: Chain, trusted_root_key: bytes) -> VerifiedChain:
    """
    Verifies a certificate chain from leaf to root against a trust anchor.

    For every certificate `i` below the root, its signature over `raw[:signed_length]`
    must validate under certificate `i + 1`'s signing-usage key. The root is accepted
    when its signature block names the anchor as issuer and that signature verifies, or,
    failing that, when its own signing key is the anchor. A single failure rejects the
    whole chain.

    Args:
        chain (Chain): The parsed chain, leaf first.
        trusted_root_key (bytes): 64-byte X || Y public key trusted a priori.

    Returns:
        VerifiedChain: The leaf certificate and its signing and encryption keys.

    Raises:
        ChainUntrusted: If any link fails. The underlying cause is chained for debugging only.
    """
    if not len(chain):
        raise ChainUntrusted('malformed chain: no certificates')

    try:
        for index in range(len(chain) - 1):
            cert, issuer = chain[index], chain[index + 1]
            issuer_key = issuer.signing_key
            if issuer_key is None:
                raise MalformedStructure(f'malformed chain: certificate {index + 1} has no signing key')
            _verify_signature(cert, issuer_key)
            logger.debug('Certificate %s verified by certificate %s', index, index + 1)

        _verify_root(chain.root(), trusted_root_key)
    except ChainUntrusted:
        raise
    except DrmError as e:
        logger.debug('Chain verification failed: %s', e)
        raise ChainUntrusted('certificate chain is not trusted') from e

    leaf = chain.leaf()
    logger.info(
        'Verified chain of %s certificate(s), security level %s',
        len(chain), leaf.security_level)

    return VerifiedChain(
        chain=chain,
        leaf=leaf,
        signing_key=leaf.signing_key,
        encryption_key=leaf.encryption_key
    )


__all__ = ('VerifiedChain', 'verify_chain')
