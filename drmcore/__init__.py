from drmcore.drm.bcert import Certificate, Chain, parse_certificate, parse_chain
from drmcore.drm.ecc import EccKeyPair, elgamal_decrypt, elgamal_encrypt, generate_key_pair, sign, verify
from drmcore.drm.exceptions import *
from drmcore.drm.key import ContentKey, KeyType, kid_from_guid, swap_guid_bytes
from drmcore.drm.license import DerivedKeys, UnwrapResult, derive_and_unwrap, derive_context, derive_keys
from drmcore.drm.session import Session
from drmcore.drm.trust import VerifiedChain, verify_chain

__version__ = '1.0.0'
