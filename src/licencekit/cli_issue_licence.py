from __future__ import annotations

import argparse
import base64
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

from .cli_make_keys import PRIVATE_KEY_FILE
from .codec import to_binary, to_xml
from .crypto import UnsupportedAlgorithmError, load_private_key
from .licence import Licence
from .signing import sign_licence


def _parse_attributes(pairs: Optional[List[str]]) -> Dict[str, str]:
    """
    Parse repeated KEY=VALUE arguments into a dictionary.

    Raises:
        ValueError: If an item has no '=' or an empty key, or a key repeats.
    """
    out: Dict[str, str] = {}
    for item in pairs or []:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"--attr expects KEY=VALUE, got {item!r}")
        if key in out:
            raise ValueError(f"--attr {key!r} given more than once")
        out[key] = value
    return out


def _parse_time(s: Optional[str]) -> Optional[datetime]:
    if not s:
        return None
    value = datetime.fromisoformat(s)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def main(argv: Optional[List[str]] = None) -> int:
    """
    CLI command to issue (create and sign) a new licence.

    The licence carries the given serial (or a fresh one), a validity window
    starting at --not-before (open if omitted) and ending --days after now
    (open if 0), and the --attr attributes. Binary output is written raw to
    --out, or base64-encoded to stdout; XML is written as text.

    Command-line arguments:
        --private-key: Private key PEM file (default 'licence_signing_private.pem')
        --serial: Licence serial UUID (default: generated)
        --days: Validity in days from now (default 30, 0 = no expiry)
        --not-before: ISO-8601 start of validity (naive values are UTC)
        --attr: KEY=VALUE attribute, repeatable
        --format: binary or xml (default binary)
        --out: Output file (default stdout)
        --verbose: Enable debug logging
    """
    ap = argparse.ArgumentParser(description="Issue a signed licence.")
    ap.add_argument("--private-key", default=PRIVATE_KEY_FILE)
    ap.add_argument("--serial", default=None)
    ap.add_argument(
        "--days", type=int, default=30, help="expiry in days (0 = no expiry)"
    )
    ap.add_argument("--not-before", default=None, help="ISO-8601 start of validity")
    ap.add_argument(
        "--attr", action="append", metavar="KEY=VALUE", help="licence attribute"
    )
    ap.add_argument("--format", choices=["binary", "xml"], default="binary")
    ap.add_argument("--out", default=None)
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        attributes = _parse_attributes(args.attr)
        not_before = _parse_time(args.not_before)
        priv = load_private_key(Path(args.private_key).expanduser().read_bytes())
        not_after = (
            None
            if args.days == 0
            else datetime.now(timezone.utc) + timedelta(days=args.days)
        )
        licence = Licence.create(args.serial, not_before, not_after, attributes)
    except (OSError, ValueError, UnsupportedAlgorithmError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if not sign_licence(licence, priv):
        print("Error: the key cannot sign (public-only key)", file=sys.stderr)
        return 1

    try:
        if args.format == "xml":
            output = to_xml(licence).encode("utf-8")
        else:
            output = to_binary(licence)
        if args.out:
            Path(args.out).expanduser().write_bytes(output)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if args.out:
        print(str(licence.serial))
    elif args.format == "xml":
        print(output.decode("utf-8"))
    else:
        print(base64.b64encode(output).decode("ascii"))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
