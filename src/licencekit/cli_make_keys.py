from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional

from .crypto import KeyFamily, generate_keypair

PRIVATE_KEY_FILE = "licence_signing_private.pem"
PUBLIC_KEY_FILE = "licence_signing_public.pem"


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI command to generate a new keypair for licence signing.

    Writes licence_signing_private.pem (keep secret, vendor-only) and
    licence_signing_public.pem (ships with the application) into the output
    directory, creating it if needed, and prints both paths.

    Command-line arguments:
        --family: rsa or dsa (ECDSA P-256), default dsa
        --out-dir: Output directory for the PEM files (default: '.')
    """
    ap = argparse.ArgumentParser(description="Generate a licence signing keypair.")
    ap.add_argument(
        "--family",
        choices=[f.value for f in KeyFamily],
        default=KeyFamily.DSA.value,
        help="Key algorithm family (default: dsa)",
    )
    ap.add_argument(
        "--out-dir",
        default=".",
        help=f"Output directory for {PRIVATE_KEY_FILE} and {PUBLIC_KEY_FILE}",
    )
    args = ap.parse_args(argv)

    out_dir = Path(args.out_dir).expanduser().resolve()
    out_dir.mkdir(parents=True, exist_ok=True)

    kp = generate_keypair(KeyFamily(args.family))

    priv_path = out_dir / PRIVATE_KEY_FILE
    pub_path = out_dir / PUBLIC_KEY_FILE

    priv_path.write_bytes(kp.private_pem)
    pub_path.write_bytes(kp.public_pem)

    print(str(priv_path))
    print(str(pub_path))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
