from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Union

from .codec import load_licence
from .crypto import KeyCapability
from .licence import Licence
from .ntp import network_time
from .validation import TimeSource, ValidationResult, validate

logger = logging.getLogger(__name__)


class LicenceValidationError(RuntimeError):
    """
    Exception raised when a licence is required to be valid but is not.

    Attributes:
        result: The ValidationResult that caused the failure, or None when the
                licence could not be decoded at all.
    """

    def __init__(self, message: str, result: Optional[ValidationResult] = None):
        super().__init__(message)
        self.result = result


_MESSAGES = {
    ValidationResult.EXPIRED: "Licence expired",
    ValidationResult.NOT_STARTED: "Licence validity period has not started",
    ValidationResult.INVALID_SIGNATURE: "Invalid licence signature",
    ValidationResult.NO_SIGNATURE: "Licence is not signed",
}


def require_valid(
    licence: Licence,
    public_key: KeyCapability,
    *,
    use_network_time: bool = True,
    now: Optional[datetime] = None,
    time_source: TimeSource = network_time,
) -> Licence:
    """
    Validate a decoded licence and raise unless the outcome is VALID.

    Returns:
        The licence, unchanged.

    Raises:
        LicenceValidationError: Carrying the non-VALID result.
    """
    result = validate(
        licence, public_key, use_network_time, now=now, time_source=time_source
    )
    if result is not ValidationResult.VALID:
        raise LicenceValidationError(_MESSAGES[result], result)
    return licence


def require_valid_licence(
    data: Union[bytes, str],
    public_key: KeyCapability,
    *,
    use_network_time: bool = True,
    now: Optional[datetime] = None,
    time_source: TimeSource = network_time,
) -> Licence:
    """
    Decode a signed licence (binary or XML) and require it to be valid.

    This is the main entry point for applications that refuse to run without a
    licence. Decoding errors are reported the same way as validation failures.

    Args:
        data: Encoded licence as handed over by the transport.
        public_key: RsaKey or DsaKey used for verification.
        use_network_time: Prefer the network time over the local clock.
        now: Explicit current time, mostly for tests.
        time_source: Callable returning the authoritative current time.

    Returns:
        The decoded, valid Licence.

    Raises:
        LicenceValidationError: If the data cannot be decoded or the licence is
                                not VALID.
    """
    try:
        licence = load_licence(data)
    except ValueError as e:
        raise LicenceValidationError(f"Cannot decode licence: {e}") from e

    return require_valid(
        licence,
        public_key,
        use_network_time=use_network_time,
        now=now,
        time_source=time_source,
    )
