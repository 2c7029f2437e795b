"""Protocol defaults and configuration names."""

NESTED_CONTENT_TYPE = "JWT"
DEFAULT_TOKEN_TYPE = "JWT"

DEFAULT_SIGNATURE_ALGORITHM = "RS256"
DEFAULT_KEY_MANAGEMENT_ALGORITHM = "RSA-OAEP"
DEFAULT_CONTENT_ENCRYPTION_ALGORITHM = "A256GCM"
DEFAULT_VERIFY_ALGORITHMS = frozenset({"RS256"})
DEFAULT_DECRYPT_ALGORITHMS = frozenset({"RSA-OAEP", "RSA-OAEP-256"})

MIN_RSA_KEY_BITS = 2048
DEFAULT_EXP_OFFSET_S = 300
DEFAULT_URL_TIMEOUT_S = 5.0
MAX_KEY_SOURCE_BYTES = 65_536
MAX_TOKEN_BYTES = 262_144

# MicroProfile JWT configuration property names.
VERIFIER_PUBLIC_KEY = "mp.jwt.verify.publickey"
VERIFIER_PUBLIC_KEY_LOCATION = "mp.jwt.verify.publickey.location"
VERIFIER_PUBLIC_KEY_ALGORITHM = "mp.jwt.verify.publickey.algorithm"
DECRYPTOR_KEY_LOCATION = "mp.jwt.decrypt.key.location"
DECRYPTOR_KEY_ALGORITHM = "mp.jwt.decrypt.key.algorithm"
ISSUER = "mp.jwt.verify.issuer"
AUDIENCES = "mp.jwt.verify.audiences"
CLOCK_SKEW = "mp.jwt.verify.clock.skew"
TOKEN_AGE = "mp.jwt.verify.token.age"
TOKEN_HEADER = "mp.jwt.token.header"

KNOWN_CONFIG_NAMES = {
    VERIFIER_PUBLIC_KEY,
    VERIFIER_PUBLIC_KEY_LOCATION,
    VERIFIER_PUBLIC_KEY_ALGORITHM,
    DECRYPTOR_KEY_LOCATION,
    DECRYPTOR_KEY_ALGORITHM,
    ISSUER,
    AUDIENCES,
    CLOCK_SKEW,
    TOKEN_AGE,
    TOKEN_HEADER,
}
