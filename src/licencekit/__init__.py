from .licence import Licence
from .codec import (
    CURRENT_VERSION,
    SUPPORTED_VERSIONS,
    LicenceFormatError,
    from_binary,
    from_xml,
    load_licence,
    signable_payload,
    to_binary,
    to_xml,
)
from .crypto import (
    DsaKey,
    KeyCapability,
    KeyFamily,
    KeyPair,
    RsaKey,
    UnsupportedAlgorithmError,
    generate_keypair,
    load_certificate,
    load_certificate_private_key,
    load_private_key,
    load_public_key,
)
from .signing import sign_licence, verify_licence
from .ntp import TimeSourceUnavailable, network_time
from .validation import ValidationResult, validate
from .runtime import LicenceValidationError, require_valid, require_valid_licence
from .policy import (
    has_attribute,
    has_feature,
    licence_features,
    require_attribute,
    require_feature,
    PolicyError,
)
from .io import (
    const_time_equal,
    find_file_candidates,
    load_public_key_file,
    public_key_fingerprint_sha256,
    PublicKeyLoadError,
)
from .context import LicenceContext

__version__ = "0.1.0"

__all__ = [
    "Licence",
    "CURRENT_VERSION",
    "SUPPORTED_VERSIONS",
    "LicenceFormatError",
    "from_binary",
    "from_xml",
    "load_licence",
    "signable_payload",
    "to_binary",
    "to_xml",
    "DsaKey",
    "KeyCapability",
    "KeyFamily",
    "KeyPair",
    "RsaKey",
    "UnsupportedAlgorithmError",
    "generate_keypair",
    "load_certificate",
    "load_certificate_private_key",
    "load_private_key",
    "load_public_key",
    "sign_licence",
    "verify_licence",
    "TimeSourceUnavailable",
    "network_time",
    "ValidationResult",
    "validate",
    "LicenceValidationError",
    "require_valid",
    "require_valid_licence",
    "has_attribute",
    "has_feature",
    "licence_features",
    "require_attribute",
    "require_feature",
    "PolicyError",
    "const_time_equal",
    "find_file_candidates",
    "load_public_key_file",
    "public_key_fingerprint_sha256",
    "PublicKeyLoadError",
    "LicenceContext",
]

# Testing utilities - conditionally imported to avoid pytest dependency in production
try:
    from .testing_utils import (
        TestKeys,
        make_fixed_time_source,
        unavailable_time_source,
    )

    __all__ += ["TestKeys", "make_fixed_time_source", "unavailable_time_source"]
except ImportError:
    # pytest not available, testing utilities not exported
    pass
