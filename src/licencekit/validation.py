from __future__ import annotations

import enum
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from .crypto import KeyCapability
from .licence import Licence
from .ntp import TimeSourceUnavailable, network_time
from .signing import verify_licence

logger = logging.getLogger(__name__)

TimeSource = Callable[[], datetime]


class ValidationResult(enum.Enum):
    """Outcome of validating a licence."""

    #: No failure. The licence is valid.
    VALID = "valid"
    #: The validity period has ended.
    EXPIRED = "expired"
    #: The validity period has not started yet.
    NOT_STARTED = "not_started"
    #: The signature does not match; the licence was altered or forged.
    INVALID_SIGNATURE = "invalid_signature"
    #: The licence is not signed.
    NO_SIGNATURE = "no_signature"


def current_time(
    use_network_time: bool = True,
    time_source: TimeSource = network_time,
) -> datetime:
    """
    Resolve the current UTC time, preferring the network time source.

    A failed time query never aborts: the local clock is used instead.
    """
    if use_network_time:
        try:
            return time_source().astimezone(timezone.utc)
        except TimeSourceUnavailable as e:
            logger.info("Network time unavailable, using local clock: %s", e)
    return datetime.now(timezone.utc)


def validate(
    licence: Licence,
    public_key: KeyCapability,
    use_network_time: bool = True,
    *,
    now: Optional[datetime] = None,
    time_source: TimeSource = network_time,
) -> ValidationResult:
    """
    Validate a licence against a public key and the current time.

    Checks run in a fixed order: signature presence, expiry, start date, then
    the signature itself. An expired licence reports EXPIRED even when its
    signature is valid. The licence is not modified.

    Args:
        licence: Licence to validate.
        public_key: RsaKey or DsaKey to verify the signature with.
        use_network_time: Query ``time_source`` for the current time, falling
                          back to the local clock if it is unavailable.
        now: Explicit current time; overrides both clocks when given.
        time_source: Callable returning the authoritative current time.

    Returns:
        The ValidationResult.

    Raises:
        ValueError: If public_key is None.
        UnsupportedAlgorithmError: If the key is neither RsaKey nor DsaKey.
    """
    if public_key is None:
        raise ValueError("Public key cannot be None")

    result = _evaluate(licence, public_key, use_network_time, now, time_source)
    logger.debug("Licence %s validation result: %s", licence.serial, result.name)
    return result


def _evaluate(
    licence: Licence,
    public_key: KeyCapability,
    use_network_time: bool,
    now: Optional[datetime],
    time_source: TimeSource,
) -> ValidationResult:
    if not licence.has_signature:
        return ValidationResult.NO_SIGNATURE

    if now is None:
        now = current_time(use_network_time, time_source)
    else:
        now = now.astimezone(timezone.utc)

    if licence.not_after is not None and now > licence.not_after:
        return ValidationResult.EXPIRED

    if licence.not_before is not None and now < licence.not_before:
        return ValidationResult.NOT_STARTED

    if verify_licence(licence, public_key):
        return ValidationResult.VALID
    return ValidationResult.INVALID_SIGNATURE
