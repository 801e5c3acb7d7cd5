from __future__ import annotations

import hashlib
import logging

from .codec import signable_payload
from .crypto import DsaKey, KeyCapability, RsaKey, UnsupportedAlgorithmError
from .licence import Licence

logger = logging.getLogger(__name__)


def _unsupported(key: object) -> UnsupportedAlgorithmError:
    return UnsupportedAlgorithmError(
        f"Only RSA and DSA signatures are supported, got {type(key).__name__}"
    )


def sign_licence(licence: Licence, private_key: KeyCapability) -> bool:
    """
    Sign a licence in place with an RSA or DSA-family private key.

    The signature covers the signable payload (binary form without the
    signature). RSA keys sign the payload with SHA-512; DSA-family keys sign the
    SHA-512 digest of the payload. Only the licence signature is modified.

    Args:
        licence: Licence to sign.
        private_key: RsaKey or DsaKey holding private material.

    Returns:
        True if the signature was created and attached, False if the key is
        public-only (the licence is left unchanged).

    Raises:
        ValueError: If private_key is None.
        UnsupportedAlgorithmError: If the key is neither RsaKey nor DsaKey.
    """
    if private_key is None:
        raise ValueError("Private key cannot be None")
    if not isinstance(private_key, (RsaKey, DsaKey)):
        raise _unsupported(private_key)

    if private_key.public_only:
        logger.debug("Cannot sign licence %s: key is public-only", licence.serial)
        return False

    payload = signable_payload(licence)

    if isinstance(private_key, RsaKey):
        signature = private_key.sign(payload)
    else:
        signature = private_key.sign(hashlib.sha512(payload).digest())

    licence._attach_signature(signature)
    logger.debug(
        "Signed licence %s with %s key", licence.serial, private_key.family.value
    )
    return True


def verify_licence(licence: Licence, public_key: KeyCapability) -> bool:
    """
    Verify a licence signature against an RSA or DSA-family key.

    A signature produced by the other family, a corrupted signature or changed
    content all yield False; they never raise.

    Args:
        licence: Licence to verify.
        public_key: RsaKey or DsaKey (private keys verify with their public half).

    Returns:
        True if the signature matches the licence content.

    Raises:
        ValueError: If public_key is None.
        UnsupportedAlgorithmError: If the key is neither RsaKey nor DsaKey.
    """
    if public_key is None:
        raise ValueError("Public key cannot be None")
    if not isinstance(public_key, (RsaKey, DsaKey)):
        raise _unsupported(public_key)

    signature = licence.signature
    if signature is None:
        return False

    payload = signable_payload(licence)

    if isinstance(public_key, RsaKey):
        ok = public_key.verify(payload, signature)
    else:
        ok = public_key.verify(hashlib.sha512(payload).digest(), signature)

    logger.debug(
        "Signature check for licence %s with %s key: %s",
        licence.serial,
        public_key.family.value,
        "ok" if ok else "mismatch",
    )
    return ok
