from __future__ import annotations

import argparse
import base64
import binascii
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .cli_make_keys import PUBLIC_KEY_FILE
from .codec import load_licence
from .crypto import UnsupportedAlgorithmError, load_certificate, load_public_key
from .ntp import NTP_SERVER, network_time
from .validation import ValidationResult, validate


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI command to validate a licence file.

    Prints the validation result name and exits 0 only for VALID (1 for any
    other result, 2 for unreadable input).

    Command-line arguments:
        --licence (required): Licence file (binary, base64 binary or XML)
        --public-key: Public key PEM (default 'licence_signing_public.pem')
        --certificate: X.509 certificate to take the key from instead
        --no-network-time: Use the local clock only
        --ntp-server: NTP host (default $LICENCEKIT_NTP_SERVER or pool.ntp.org)
        --verbose: Enable debug logging
    """
    ap = argparse.ArgumentParser(description="Validate a signed licence.")
    ap.add_argument("--licence", required=True)
    key_group = ap.add_mutually_exclusive_group()
    key_group.add_argument("--public-key", default=PUBLIC_KEY_FILE)
    key_group.add_argument("--certificate", default=None)
    ap.add_argument("--no-network-time", action="store_true")
    ap.add_argument(
        "--ntp-server", default=os.environ.get("LICENCEKIT_NTP_SERVER", NTP_SERVER)
    )
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.certificate:
            key = load_certificate(Path(args.certificate).expanduser().read_bytes())
        else:
            key = load_public_key(Path(args.public_key).expanduser().read_bytes())
        data = Path(args.licence).expanduser().read_bytes()
        licence = load_licence(_unwrap_base64(data))
    except (OSError, ValueError, UnsupportedAlgorithmError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    result = validate(
        licence,
        key,
        use_network_time=not args.no_network_time,
        time_source=lambda: network_time(args.ntp_server),
    )
    print(result.name)
    return 0 if result is ValidationResult.VALID else 1


def _unwrap_base64(data: bytes) -> bytes:
    """Accept the base64 text printed by licencekit-issue as well as raw bytes."""
    text = data.strip()
    if not text or text.startswith(b"<"):
        return data
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return data


if __name__ == "__main__":
    raise SystemExit(main())
