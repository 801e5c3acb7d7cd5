from __future__ import annotations

import enum
import hashlib
from dataclasses import dataclass
from typing import Optional, Union

from cryptography import x509
from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import dsa, ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)
from cryptography.hazmat.primitives.serialization import pkcs12
from ecdsa import NIST256p, SigningKey, VerifyingKey
from ecdsa.curves import UnknownCurveError
from ecdsa.der import UnexpectedDER
from ecdsa.keys import BadDigestError, BadSignatureError, MalformedPointError
from ecdsa.util import MalformedSignature, sigdecode_string, sigencode_string

RSA_KEY_SIZE = 2048
RSA_PUBLIC_EXPONENT = 65537


class UnsupportedAlgorithmError(TypeError):
    """Exception raised when a key belongs to neither the RSA nor the DSA family."""

    pass


class KeyFamily(enum.Enum):
    """Closed set of supported signature algorithm families."""

    RSA = "rsa"
    DSA = "dsa"


@dataclass(frozen=True)
class KeyPair:
    """
    Immutable container for a PEM-encoded signing keypair.

    Attributes:
        private_pem: PEM-encoded private key (bytes). Must be kept secret.
        public_pem: PEM-encoded public key (bytes). Safe to distribute.
        family: Algorithm family of the keypair.
    """

    private_pem: bytes
    public_pem: bytes
    family: KeyFamily = KeyFamily.DSA


@dataclass(frozen=True)
class RsaKey:
    """
    RSA-family key capability.

    Signs the raw payload with RSASSA-PKCS1-v1_5 over a SHA-512 digest.

    Attributes:
        key: A ``cryptography`` RSA private or public key.
    """

    key: Union[rsa.RSAPrivateKey, rsa.RSAPublicKey]

    family = KeyFamily.RSA

    @property
    def public_only(self) -> bool:
        return not isinstance(self.key, rsa.RSAPrivateKey)

    def _verifier(self) -> rsa.RSAPublicKey:
        if isinstance(self.key, rsa.RSAPrivateKey):
            return self.key.public_key()
        return self.key

    def public_key(self) -> "RsaKey":
        return RsaKey(self._verifier())

    def public_pem(self) -> bytes:
        return self._verifier().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )

    def sign(self, payload: bytes) -> bytes:
        """
        Sign a payload.

        Raises:
            ValueError: If the key holds no private material.
        """
        if not isinstance(self.key, rsa.RSAPrivateKey):
            raise ValueError("RSA key is public-only and cannot sign")
        return self.key.sign(payload, padding.PKCS1v15(), hashes.SHA512())

    def verify(self, payload: bytes, signature: bytes) -> bool:
        try:
            self._verifier().verify(
                signature, payload, padding.PKCS1v15(), hashes.SHA512()
            )
        except InvalidSignature:
            return False
        return True


@dataclass(frozen=True)
class DsaKey:
    """
    DSA-family key capability.

    Operates on a precomputed SHA-512 digest and produces fixed-width
    ``r || s`` signatures. Two backings are accepted: ECDSA keys from
    ``ecdsa`` (deterministic, RFC 6979) and classic finite-field DSA keys from
    ``cryptography``. For classic DSA each half is as wide as the subgroup
    order ``q``.

    Attributes:
        key: An ``ecdsa`` SigningKey/VerifyingKey, or a ``cryptography``
             DSAPrivateKey/DSAPublicKey.
    """

    key: Union[SigningKey, VerifyingKey, dsa.DSAPrivateKey, dsa.DSAPublicKey]

    family = KeyFamily.DSA

    @property
    def public_only(self) -> bool:
        return not isinstance(self.key, (SigningKey, dsa.DSAPrivateKey))

    def _verifier(self) -> Union[VerifyingKey, dsa.DSAPublicKey]:
        if isinstance(self.key, SigningKey):
            return self.key.verifying_key
        if isinstance(self.key, dsa.DSAPrivateKey):
            return self.key.public_key()
        return self.key

    def public_key(self) -> "DsaKey":
        return DsaKey(self._verifier())

    def public_pem(self) -> bytes:
        verifier = self._verifier()
        if isinstance(verifier, dsa.DSAPublicKey):
            return verifier.public_bytes(
                serialization.Encoding.PEM,
                serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        return verifier.to_pem()

    def sign(self, digest: bytes) -> bytes:
        """
        Sign a digest.

        Raises:
            ValueError: If the key holds no private material.
        """
        if isinstance(self.key, dsa.DSAPrivateKey):
            der = self.key.sign(digest, Prehashed(hashes.SHA512()))
            r, s = decode_dss_signature(der)
            width = _dsa_half_width(self.key.public_key())
            return r.to_bytes(width, "big") + s.to_bytes(width, "big")
        if not isinstance(self.key, SigningKey):
            raise ValueError("DSA key is public-only and cannot sign")
        return self.key.sign_digest_deterministic(
            digest,
            hashfunc=hashlib.sha512,
            sigencode=sigencode_string,
            allow_truncate=True,
        )

    def verify(self, digest: bytes, signature: bytes) -> bool:
        verifier = self._verifier()
        if isinstance(verifier, dsa.DSAPublicKey):
            width = _dsa_half_width(verifier)
            if len(signature) != 2 * width:
                return False
            r = int.from_bytes(signature[:width], "big")
            s = int.from_bytes(signature[width:], "big")
            try:
                verifier.verify(
                    encode_dss_signature(r, s), digest, Prehashed(hashes.SHA512())
                )
            except InvalidSignature:
                return False
            return True
        try:
            return verifier.verify_digest(
                signature,
                digest,
                sigdecode=sigdecode_string,
                allow_truncate=True,
            )
        except (BadSignatureError, BadDigestError, MalformedSignature):
            return False


def _dsa_half_width(key: dsa.DSAPublicKey) -> int:
    q = key.parameters().parameter_numbers().q
    return (q.bit_length() + 7) // 8


KeyCapability = Union[RsaKey, DsaKey]


def generate_keypair(family: KeyFamily = KeyFamily.DSA) -> KeyPair:
    """
    Generate a new signing keypair.

    DSA-family keys are ECDSA on the P-256 (NIST256p) curve; RSA-family keys are
    2048-bit with public exponent 65537. The private key should stay with the
    vendor, the public key ships with applications.

    Args:
        family: Algorithm family of the new keypair.

    Returns:
        KeyPair containing PEM-encoded private and public keys.
    """
    if family is KeyFamily.RSA:
        priv = rsa.generate_private_key(
            public_exponent=RSA_PUBLIC_EXPONENT, key_size=RSA_KEY_SIZE
        )
        return KeyPair(
            private_pem=priv.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            ),
            public_pem=RsaKey(priv).public_pem(),
            family=family,
        )
    if family is KeyFamily.DSA:
        sk = SigningKey.generate(curve=NIST256p)
        return KeyPair(
            private_pem=sk.to_pem(), public_pem=sk.verifying_key.to_pem(), family=family
        )
    raise UnsupportedAlgorithmError(f"Unsupported key family: {family!r}")


def _ecdsa_error(e: Exception) -> UnsupportedAlgorithmError:
    return UnsupportedAlgorithmError(f"Elliptic curve key not usable for signing: {e}")


def _wrap_public(key: object) -> KeyCapability:
    if isinstance(key, rsa.RSAPublicKey):
        return RsaKey(key)
    if isinstance(key, dsa.DSAPublicKey):
        return DsaKey(key)
    if isinstance(key, ec.EllipticCurvePublicKey):
        der = key.public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        try:
            return DsaKey(VerifyingKey.from_der(der))
        except (UnknownCurveError, UnexpectedDER, MalformedPointError) as e:
            raise _ecdsa_error(e) from e
    raise UnsupportedAlgorithmError(
        f"Only RSA and DSA-family keys are supported, got {type(key).__name__}"
    )


def load_private_key(pem_bytes: bytes, password: Optional[bytes] = None) -> KeyCapability:
    """
    Load a private key capability from PEM-encoded bytes.

    Args:
        pem_bytes: PEM-formatted private key (PKCS#8, PKCS#1, SEC1 or OpenSSL DSA).
        password: Passphrase for encrypted keys.

    Returns:
        RsaKey or DsaKey holding private material.

    Raises:
        UnsupportedAlgorithmError: If the key is not RSA, DSA or elliptic curve.
        ValueError: If the PEM data is invalid or the password is wrong.
    """
    try:
        key = serialization.load_pem_private_key(pem_bytes, password=password)
    except UnsupportedAlgorithm as e:
        raise UnsupportedAlgorithmError(str(e)) from e
    return _wrap_private(key)


def _wrap_private(key: object) -> KeyCapability:
    if isinstance(key, rsa.RSAPrivateKey):
        return RsaKey(key)
    if isinstance(key, dsa.DSAPrivateKey):
        return DsaKey(key)
    if isinstance(key, ec.EllipticCurvePrivateKey):
        der = key.private_bytes(
            serialization.Encoding.DER,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        try:
            return DsaKey(SigningKey.from_der(der))
        except (UnknownCurveError, UnexpectedDER, MalformedPointError) as e:
            raise _ecdsa_error(e) from e
    raise UnsupportedAlgorithmError(
        f"Only RSA and DSA-family keys are supported, got {type(key).__name__}"
    )


def load_public_key(pem_bytes: bytes) -> KeyCapability:
    """
    Load a public key capability from PEM-encoded bytes.

    Args:
        pem_bytes: PEM-formatted SubjectPublicKeyInfo.

    Returns:
        Public-only RsaKey or DsaKey.

    Raises:
        UnsupportedAlgorithmError: If the key is not RSA, DSA or elliptic curve.
        ValueError: If the PEM data is invalid.
    """
    try:
        key = serialization.load_pem_public_key(pem_bytes)
    except UnsupportedAlgorithm as e:
        raise UnsupportedAlgorithmError(str(e)) from e
    return _wrap_public(key)


def load_certificate(data: bytes) -> KeyCapability:
    """
    Extract the subject public key capability from an X.509 certificate.

    The certificate is only used as a key container; no chain or validity
    checks are performed.

    Args:
        data: PEM or DER encoded certificate.

    Returns:
        Public-only RsaKey or DsaKey.
    """
    if data.lstrip().startswith(b"-----BEGIN"):
        cert = x509.load_pem_x509_certificate(data)
    else:
        cert = x509.load_der_x509_certificate(data)
    return _wrap_public(cert.public_key())


def load_certificate_private_key(
    data: bytes, password: Optional[bytes] = None
) -> KeyCapability:
    """
    Extract the signing key capability from a PKCS#12 (PFX) bundle.

    This is the vendor-side counterpart of :func:`load_certificate`: the
    bundle holds the certificate together with its private key.

    Args:
        data: DER encoded PKCS#12 bundle.
        password: Bundle passphrase, or None for an unencrypted bundle.

    Returns:
        RsaKey or DsaKey holding private material.

    Raises:
        ValueError: If the bundle is invalid, the password is wrong, or the
                    bundle carries no private key.
        UnsupportedAlgorithmError: If the key is not RSA, DSA or elliptic curve.
    """
    try:
        key, _cert, _extra = pkcs12.load_key_and_certificates(data, password)
    except UnsupportedAlgorithm as e:
        raise UnsupportedAlgorithmError(str(e)) from e
    if key is None:
        raise ValueError("PKCS#12 bundle does not contain a private key")
    return _wrap_private(key)
