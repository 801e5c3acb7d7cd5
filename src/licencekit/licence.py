from __future__ import annotations

import uuid
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

MAX_ATTRIBUTES = 0xFFFF
MAX_SIGNATURE_LENGTH = 0xFFFF

_UNSET: Any = object()


def _normalize_serial(serial: Union[uuid.UUID, str, None]) -> uuid.UUID:
    if serial is None:
        return uuid.uuid4()
    if isinstance(serial, uuid.UUID):
        return serial
    if isinstance(serial, str):
        try:
            return uuid.UUID(serial)
        except ValueError as e:
            raise ValueError(f"serial is not a valid UUID: {serial!r}") from e
    raise TypeError(f"serial must be a UUID or str, got {type(serial).__name__}")


def _normalize_time(name: str, value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize an optional validity bound to an aware UTC datetime.

    Naive datetimes are taken as local time, which is what ``datetime.now()``
    produces.
    """
    if value is None:
        return None
    if not isinstance(value, datetime):
        raise TypeError(f"{name} must be a datetime or None")
    return value.astimezone(timezone.utc)


def _normalize_attributes(attributes: Optional[Mapping[str, str]]) -> Dict[str, str]:
    if attributes is None:
        return {}
    if not isinstance(attributes, Mapping):
        raise TypeError("attributes must be a mapping of str to str")
    if len(attributes) > MAX_ATTRIBUTES:
        raise ValueError(f"Too many attributes ({len(attributes)} > {MAX_ATTRIBUTES})")

    out: Dict[str, str] = {}
    for k, v in attributes.items():
        if not isinstance(k, str) or not isinstance(v, str):
            raise TypeError(f"attribute {k!r} must map str to str")
        try:
            k.encode("utf-8")
            v.encode("utf-8")
        except UnicodeEncodeError as e:
            raise ValueError(f"attribute {k!r} is not UTF-8 encodable") from e
        out[k] = v
    return out


def _normalize_signature(signature: Optional[bytes]) -> Optional[bytes]:
    if signature is None:
        return None
    if not isinstance(signature, (bytes, bytearray)):
        raise TypeError("signature must be bytes or None")
    if len(signature) > MAX_SIGNATURE_LENGTH:
        raise ValueError(f"signature too long ({len(signature)} bytes)")
    # An empty signature has the same wire form as no signature.
    return bytes(signature) or None


class Licence:
    """
    A software licence record.

    Content fields (serial, validity window, attributes) are read-only. To
    edit a licence use :meth:`replace`, which returns a new unsigned licence,
    so a signature can never appear to cover content it was not computed
    over. The signature itself is attached by
    :func:`licencekit.signing.sign_licence`.

    Attributes:
        serial: Unique identifier of the licence.
        not_before: Start of the validity window (aware UTC) or None.
        not_after: End of the validity window (aware UTC) or None.
        attributes: Read-only mapping of custom string attributes.
        signature: Signature bytes, or None if the licence is unsigned.
    """

    __slots__ = ("_serial", "_not_before", "_not_after", "_attributes", "_signature")

    def __init__(
        self,
        serial: Union[uuid.UUID, str, None] = None,
        not_before: Optional[datetime] = None,
        not_after: Optional[datetime] = None,
        attributes: Optional[Mapping[str, str]] = None,
        signature: Optional[bytes] = None,
    ) -> None:
        self._serial = _normalize_serial(serial)
        self._not_before = _normalize_time("not_before", not_before)
        self._not_after = _normalize_time("not_after", not_after)
        self._attributes = MappingProxyType(_normalize_attributes(attributes))
        self._signature = _normalize_signature(signature)

    @classmethod
    def create(
        cls,
        serial: Union[uuid.UUID, str, None] = None,
        not_before: Optional[datetime] = None,
        not_after: Optional[datetime] = None,
        attributes: Optional[Mapping[str, str]] = None,
    ) -> "Licence":
        """
        Create an unsigned licence.

        Args:
            serial: Serial for the licence. A fresh UUID4 is generated if None.
            not_before: Start of the validity period, or None for no start.
            not_after: End of the validity period, or None for no end.
            attributes: Custom attributes (who it is for, what it unlocks).

        Returns:
            A new unsigned Licence.
        """
        return cls(serial, not_before, not_after, attributes)

    @property
    def serial(self) -> uuid.UUID:
        return self._serial

    @property
    def not_before(self) -> Optional[datetime]:
        return self._not_before

    @property
    def not_after(self) -> Optional[datetime]:
        return self._not_after

    @property
    def attributes(self) -> Mapping[str, str]:
        return self._attributes

    @property
    def signature(self) -> Optional[bytes]:
        return self._signature

    @property
    def has_signature(self) -> bool:
        return self._signature is not None

    def replace(
        self,
        *,
        serial: Union[uuid.UUID, str, None] = _UNSET,
        not_before: Optional[datetime] = _UNSET,
        not_after: Optional[datetime] = _UNSET,
        attributes: Optional[Mapping[str, str]] = _UNSET,
    ) -> "Licence":
        """
        Return a copy with the given fields replaced and the signature cleared.

        Fields that are not passed keep their current value. Passing
        ``serial=None`` generates a fresh serial.
        """
        return Licence(
            self._serial if serial is _UNSET else serial,
            self._not_before if not_before is _UNSET else not_before,
            self._not_after if not_after is _UNSET else not_after,
            self._attributes if attributes is _UNSET else attributes,
        )

    def _attach_signature(self, signature: bytes) -> None:
        self._signature = _normalize_signature(signature)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Licence):
            return NotImplemented
        return (
            self._serial == other._serial
            and self._not_before == other._not_before
            and self._not_after == other._not_after
            and dict(self._attributes) == dict(other._attributes)
            and self._signature == other._signature
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"Licence(serial={self._serial!s}, not_before={self._not_before!r}, "
            f"not_after={self._not_after!r}, attributes={len(self._attributes)}, "
            f"signed={self.has_signature})"
        )
