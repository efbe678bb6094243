# Container magics for the binary certificate format
CHAIN_MAGIC = b'CHAI'
CERT_MAGIC = b'CERT'

# Structure versions accepted for both the chain container and its certificates
SUPPORTED_VERSIONS = (1, 2)

# Every attribute starts with flags (u16), tag (u16) and a length (u32) that includes the header
ATTRIBUTE_HEADER_SIZE = 8

# The feature attribute is capped regardless of its declared count
MAX_FEATURES = 32

# P-256 raw encodings used at every component boundary
CURVE = 'P-256'
SCALAR_SIZE = 32
POINT_SIZE = 64  # X || Y, no SEC1 prefix
SIGNATURE_SIZE = 64  # R || S
ELGAMAL_CIPHERTEXT_SIZE = 128  # C1 || C2

# Session key carried in the ElGamal message point (AES-128)
SESSION_KEY_SIZE = 16

# Key derivation contexts
# https://github.com/devine-dl/pywidevine/blob/master/pywidevine/cdm.py
ENCRYPTION_KEY_LABEL = b'ENCRYPTION\x00'
ENCRYPTION_KEY_SIZE_BITS = b'\x00\x00\x00\x80'  # 128
AUTHENTICATION_KEY_LABEL = b'AUTHENTICATION\x00'
AUTHENTICATION_KEY_SIZE_BITS = b'\x00\x00\x02\x00'  # 512
