from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from .cli_make_keys import PUBLIC_KEY_FILE
from .io import public_key_fingerprint_sha256


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI command to display the SHA-256 fingerprint of the public signing key.

    The fingerprint is what applications pin when loading the key.
    """
    ap = argparse.ArgumentParser(description="Show a public key fingerprint.")
    ap.add_argument("--public-key", default=PUBLIC_KEY_FILE)
    args = ap.parse_args(argv)

    try:
        data = Path(args.public_key).expanduser().read_bytes()
    except OSError as e:
        print(f"Error: cannot read {args.public_key}: {e}", file=sys.stderr)
        return 1

    print(public_key_fingerprint_sha256(data))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
