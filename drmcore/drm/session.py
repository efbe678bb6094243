import logging
from typing import List, Optional

from drmcore.drm import SESSION_KEY_SIZE, ecc
from drmcore.drm.bcert import parse_chain
from drmcore.drm.exceptions import DrmError
from drmcore.drm.key import kid_from_guid
from drmcore.drm.license import UnwrapResult, derive_and_unwrap, derive_context
from drmcore.drm.trust import VerifiedChain, verify_chain


class Session:
    """
    A single license transaction: verify the server, exchange a session key, unwrap keys.

    The session key and anything derived from it belong to this object only and are
    dropped by `close()`. Nothing here performs I/O; request and response bytes are
    produced and delivered by the caller.
    """

    def __init__(self, server_key: Optional[bytes] = None):
        """
        Args:
            server_key (bytes, optional): 64-byte X || Y key-encryption key of the license
                server, when it is already known and trusted. Otherwise use `verify_server`.
        """
        self.logger = logging.getLogger(self.__class__.__name__)
        self._server_key = server_key
        self._server: Optional[VerifiedChain] = None
        self._session_key: Optional[bytes] = None

    @property
    def server(self) -> Optional[VerifiedChain]:
        return self._server

    @property
    def established(self) -> bool:
        return self._session_key is not None

    @property
    def session_key(self) -> bytes:
        if self._session_key is None:
            raise DrmError('session key has not been established')
        return self._session_key

    def verify_server(self, chain: bytes, trusted_root_key: bytes) -> VerifiedChain:
        """
        Parses and verifies the license server's certificate chain.

        The leaf certificate's key-encryption key becomes the target of `establish`.
        A chain without one is still accepted here; its absence only matters once a
        session key has to be sent.

        Args:
            chain (bytes): Raw certificate chain received from the server.
            trusted_root_key (bytes): 64-byte trust anchor.

        Returns:
            VerifiedChain: The verified chain.
        """
        verified = verify_chain(parse_chain(chain), trusted_root_key)
        self._server = verified
        if verified.encryption_key:
            self._server_key = verified.encryption_key
        else:
            self.logger.warning('Server certificate carries no key-encryption key')
        return verified

    def establish(self, server_key: Optional[bytes] = None) -> bytes:
        """
        Creates a session key and encrypts it to the server with EC ElGamal.

        A fresh random curve point is picked; the first 16 bytes of its X coordinate are
        the session key, and the whole point is what gets encrypted.

        Args:
            server_key (bytes, optional): Overrides the server key from `verify_server`.

        Returns:
            bytes: The 128-byte ciphertext to send to the server.
        """
        server_key = server_key or self._server_key
        if not server_key:
            raise DrmError('no server key-encryption key available')

        message_point = ecc.generate_key_pair().public_key
        ciphertext = ecc.elgamal_encrypt(server_key, message_point)

        # X leads the X || Y encoding
        self._session_key = message_point[:SESSION_KEY_SIZE]
        self.logger.debug('Session key established')
        return ciphertext

    def parse_license(self, license_body: bytes, request: bytes, guid_kids: Optional[List[bytes]] = None) -> UnwrapResult:
        """
        Derives the transaction keys and unwraps the keys of a license response.

        Args:
            license_body (bytes): Serialized signed license message.
            request (bytes): The license request message the response answers.
            guid_kids (List[bytes], optional): Key IDs requested in the content header, in
                their GUID byte order; missing ones are reported in the log.

        Returns:
            UnwrapResult: Keys that were unwrapped and the per-key failures.
        """
        enc_context, mac_context = derive_context(request)
        result = derive_and_unwrap(self.session_key, license_body, enc_context, mac_context)

        for kid in map(kid_from_guid, guid_kids or []):
            if result.get(kid) is None:
                self.logger.warning('Requested key %s is not in the license', kid)

        for error in result.errors:
            self.logger.error('%s', error)

        return result

    def close(self) -> None:
        self._session_key = None
        self._server = None


__all__ = ('Session',)
