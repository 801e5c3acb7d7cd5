from __future__ import annotations

import hashlib
import os
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .crypto import KeyCapability, UnsupportedAlgorithmError, load_public_key


class PublicKeyLoadError(RuntimeError):
    """Exception raised when loading or validating a public key fails."""

    pass


def const_time_equal(a: bytes, b: bytes) -> bool:
    """
    Compare two byte strings in time independent of where they differ.

    Lengths are compared first; equal-length inputs are folded with XOR over
    every position without short-circuiting.
    """
    if len(a) != len(b):
        return False
    acc = 0
    for x, y in zip(a, b):
        acc |= x ^ y
    return acc == 0


def find_file_candidates(
    filename: str,
    *,
    extra_dirs: Optional[Sequence[Union[str, os.PathLike]]] = None,
    base_file: Optional[Union[str, os.PathLike]] = None,
    include_cwd: bool = True,
) -> List[Path]:
    """
    Build an ordered, deduplicated list of candidate paths for a key file.

    Search order: directory of ``base_file``, then the working directory, then
    ``extra_dirs``.

    Raises:
        ValueError: If filename is empty or whitespace-only.
    """
    if not filename or not str(filename).strip():
        raise ValueError("filename must be non-empty")

    dirs: List[Path] = []
    if base_file is not None:
        dirs.append(Path(base_file).resolve().parent)
    if include_cwd:
        dirs.append(Path.cwd())
    for d in extra_dirs or ():
        dirs.append(Path(d).expanduser().resolve())

    unique: List[Path] = []
    for d in dirs:
        p = d / filename
        if p not in unique:
            unique.append(p)
    return unique


def _normalize_pem_bytes(pem_bytes: bytes) -> bytes:
    data = pem_bytes.replace(b"\r\n", b"\n").replace(b"\r", b"\n").strip()
    return data + b"\n"


def public_key_fingerprint_sha256(pem_bytes: bytes) -> str:
    """
    Compute the SHA-256 fingerprint (lowercase hex) of a PEM public key.

    Line endings and surrounding whitespace are normalized first, so the same
    key saved on different platforms has the same fingerprint.
    """
    return hashlib.sha256(_normalize_pem_bytes(pem_bytes)).hexdigest()


def fingerprint_is_pinned(pem_bytes: bytes, pinned_fingerprints_sha256: Sequence[str]) -> bool:
    """Check a PEM key against allowed fingerprints using constant-time comparison."""
    fp = public_key_fingerprint_sha256(pem_bytes).encode("ascii")
    matched = False
    for allowed in pinned_fingerprints_sha256:
        candidate = str(allowed).strip().lower().encode("ascii", errors="replace")
        matched |= const_time_equal(fp, candidate)
    return matched


def load_public_key_file(
    pubkey_path: Union[str, os.PathLike],
    *,
    pinned_fingerprints_sha256: Optional[Sequence[str]] = None,
) -> KeyCapability:
    """
    Load a public key capability from a PEM file, optionally enforcing pinning.

    Args:
        pubkey_path: Path to the PEM public key file.
        pinned_fingerprints_sha256: Allowed SHA-256 fingerprints
                                    (case-insensitive). When given, the key
                                    must match one of them.

    Returns:
        Public-only RsaKey or DsaKey.

    Raises:
        PublicKeyLoadError: If the file cannot be read, is not a supported PEM
                            public key, or is not pinned.
    """
    p = Path(pubkey_path).expanduser()

    try:
        data = p.read_bytes()
    except OSError as e:
        raise PublicKeyLoadError(f"Failed to read public key file: {p}") from e

    if b"BEGIN PUBLIC KEY" not in data:
        raise PublicKeyLoadError(f"Not a PEM public key file: {p}")

    if pinned_fingerprints_sha256 is not None and not fingerprint_is_pinned(
        data, pinned_fingerprints_sha256
    ):
        raise PublicKeyLoadError(
            "Public key fingerprint not pinned/allowed. "
            f"Got {public_key_fingerprint_sha256(data)}."
        )

    try:
        return load_public_key(data)
    except (ValueError, UnsupportedAlgorithmError) as e:
        raise PublicKeyLoadError(f"Unusable public key in {p}: {e}") from e
