from __future__ import annotations

import base64
import binascii
import re
import struct
import uuid
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple, Union

from .licence import MAX_ATTRIBUTES, MAX_SIGNATURE_LENGTH, Licence

CURRENT_VERSION = 1
SUPPORTED_VERSIONS = frozenset({1})

NOT_APPLICABLE = "N/A"

# Timestamps are 100ns ticks since 0001-01-01 UTC; bits 62-63 carry the kind.
_TICK_EPOCH = datetime(1, 1, 1, tzinfo=timezone.utc)
_TICKS_PER_SECOND = 10_000_000
_TICKS_PER_MICROSECOND = 10
_TICKS_MASK = (1 << 62) - 1
_KIND_UTC = 1
_MAX_TICKS = 3_155_378_975_999_999_999  # 9999-12-31T23:59:59.9999999

_U8 = struct.Struct("<B")
_U16 = struct.Struct("<H")
_I64 = struct.Struct("<q")

_XML_UNSAFE = re.compile(r"[\x00-\x08\x0b-\x1f\ud800-\udfff\ufffe\uffff]")

_SERIAL_LENGTH = 16
_MAX_VARINT_BYTES = 5


class LicenceFormatError(ValueError):
    """Exception raised when an encoded licence is structurally invalid."""

    pass


def datetime_to_ticks(value: datetime) -> int:
    """
    Encode an aware datetime as a signed 64-bit tick value with the UTC kind flag.

    Args:
        value: Timezone-aware datetime.

    Returns:
        Integer suitable for packing as a little-endian int64.
    """
    delta = value.astimezone(timezone.utc) - _TICK_EPOCH
    ticks = (delta.days * 86400 + delta.seconds) * _TICKS_PER_SECOND
    ticks += delta.microseconds * _TICKS_PER_MICROSECOND
    return ticks | (_KIND_UTC << 62)


def ticks_to_datetime(raw: int, field: str) -> datetime:
    """
    Decode a tick value produced by :func:`datetime_to_ticks`.

    Only UTC-kind values at whole-microsecond precision are accepted; any other
    value could not be re-encoded to the same bytes, which would break
    signature verification silently.

    Raises:
        LicenceFormatError: If the value is not a canonical UTC timestamp.
    """
    kind = (raw >> 62) & 0x3
    if kind != _KIND_UTC:
        raise LicenceFormatError(f"{field}: timestamp is not UTC (kind {kind})")
    ticks = raw & _TICKS_MASK
    if ticks > _MAX_TICKS:
        raise LicenceFormatError(f"{field}: timestamp out of range")
    if ticks % _TICKS_PER_MICROSECOND:
        raise LicenceFormatError(f"{field}: timestamp has sub-microsecond precision")
    return _TICK_EPOCH + timedelta(microseconds=ticks // _TICKS_PER_MICROSECOND)


def _sorted_attributes(licence: Licence) -> List[Tuple[str, str]]:
    return sorted(licence.attributes.items(), key=lambda kv: kv[0])


def _write_string(out: bytearray, s: str) -> None:
    data = s.encode("utf-8")
    n = len(data)
    while n >= 0x80:
        out.append((n & 0x7F) | 0x80)
        n >>= 7
    out.append(n)
    out += data


def to_binary(licence: Licence, include_signature: bool = True) -> bytes:
    """
    Encode a licence in the canonical binary form.

    With ``include_signature=False`` the result is the signable payload: a pure
    function of version, serial, validity window and attributes.

    Args:
        licence: Licence to encode.
        include_signature: Append the signature length and bytes.

    Returns:
        Encoded bytes.
    """
    serial = licence.serial.bytes_le
    attributes = _sorted_attributes(licence)
    if len(attributes) > MAX_ATTRIBUTES:
        raise ValueError("Too many attributes")

    out = bytearray()
    out += _U16.pack(CURRENT_VERSION)
    out += _U8.pack(len(serial))
    out += serial

    for value in (licence.not_before, licence.not_after):
        out += _U8.pack(value is not None)
        if value is not None:
            out += _I64.pack(datetime_to_ticks(value))

    out += _U16.pack(len(attributes))
    for key, value in attributes:
        _write_string(out, key)
        _write_string(out, value)

    if include_signature:
        signature = licence.signature or b""
        if len(signature) > MAX_SIGNATURE_LENGTH:
            raise ValueError("Signature too long")
        out += _U16.pack(len(signature))
        out += signature

    return bytes(out)


def signable_payload(licence: Licence) -> bytes:
    """
    Return the exact bytes that are signed and verified for a licence.

    The payload is always the binary form without the signature, whichever
    encoding is used to carry the licence.
    """
    return to_binary(licence, include_signature=False)


class _Reader:
    """Bounds-checked little-endian reader over an in-memory buffer."""

    def __init__(self, data: bytes) -> None:
        self._data = memoryview(data)
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def read(self, n: int, field: str) -> bytes:
        if n > self.remaining:
            raise LicenceFormatError(
                f"{field}: truncated input (need {n} bytes, have {self.remaining})"
            )
        chunk = self._data[self._pos : self._pos + n].tobytes()
        self._pos += n
        return chunk

    def unpack(self, fmt: struct.Struct, field: str) -> int:
        return fmt.unpack(self.read(fmt.size, field))[0]

    def read_bool(self, field: str) -> bool:
        b = self.unpack(_U8, field)
        if b not in (0, 1):
            raise LicenceFormatError(f"{field}: invalid boolean byte {b:#04x}")
        return b == 1

    def read_string(self, field: str) -> str:
        length = 0
        shift = 0
        for i in range(_MAX_VARINT_BYTES):
            b = self.unpack(_U8, field)
            length |= (b & 0x7F) << shift
            shift += 7
            if not b & 0x80:
                if b == 0 and i > 0:
                    raise LicenceFormatError(f"{field}: non-minimal length prefix")
                break
        else:
            raise LicenceFormatError(f"{field}: malformed length prefix")
        if length > 0x7FFFFFFF:
            raise LicenceFormatError(f"{field}: length prefix out of range")
        try:
            return self.read(length, field).decode("utf-8")
        except UnicodeDecodeError as e:
            raise LicenceFormatError(f"{field}: invalid UTF-8") from e


def _check_version(version: int) -> None:
    if version not in SUPPORTED_VERSIONS:
        raise LicenceFormatError(f"Version {version} is not supported")


def _checked_attributes(pairs: List[Tuple[str, str]]) -> Dict[str, str]:
    attributes: Dict[str, str] = {}
    previous: Optional[str] = None
    for key, value in pairs:
        if key in attributes:
            raise LicenceFormatError(f"Attributes: duplicate key {key!r}")
        if previous is not None and key < previous:
            raise LicenceFormatError(f"Attributes: key {key!r} out of canonical order")
        attributes[key] = value
        previous = key
    return attributes


def from_binary(data: bytes, expect_signature: bool = True) -> Licence:
    """
    Decode a licence from its binary form.

    Args:
        data: Encoded bytes.
        expect_signature: Whether the input carries the signature section.

    Returns:
        The decoded Licence.

    Raises:
        ValueError: If data is None or empty.
        LicenceFormatError: If the input is not a well-formed licence.
    """
    if not data:
        raise ValueError("Binary input cannot be None or empty")

    r = _Reader(bytes(data))

    _check_version(r.unpack(_U16, "Version"))

    serial_length = r.unpack(_U8, "Serial")
    if serial_length != _SERIAL_LENGTH:
        raise LicenceFormatError(f"Serial: invalid length {serial_length}")
    serial = uuid.UUID(bytes_le=r.read(serial_length, "Serial"))

    bounds: List[Optional[datetime]] = []
    for field in ("NotBefore", "NotAfter"):
        if r.read_bool(field):
            bounds.append(ticks_to_datetime(r.unpack(_I64, field), field))
        else:
            bounds.append(None)

    count = r.unpack(_U16, "Attributes")
    pairs = []
    for i in range(count):
        key = r.read_string(f"Attributes[{i}].Key")
        value = r.read_string(f"Attributes[{i}].Value")
        pairs.append((key, value))
    attributes = _checked_attributes(pairs)

    signature: Optional[bytes] = None
    if expect_signature:
        length = r.unpack(_U16, "Signature")
        signature = r.read(length, "Signature") if length else None

    if r.remaining:
        raise LicenceFormatError(f"Unexpected trailing data ({r.remaining} bytes)")

    return Licence(serial, bounds[0], bounds[1], attributes, signature)


def _time_text(value: Optional[datetime]) -> str:
    return NOT_APPLICABLE if value is None else str(datetime_to_ticks(value))


def _xml_text(s: str, field: str) -> str:
    # XML parsers drop or normalize these, so the value would not round-trip.
    if _XML_UNSAFE.search(s):
        raise ValueError(f"{field} {s!r} cannot be represented in XML")
    return s


def to_xml(licence: Licence, include_signature: bool = True) -> str:
    """
    Encode a licence in the canonical XML form.

    Args:
        licence: Licence to encode.
        include_signature: Emit the Signature element (empty when unsigned).

    Returns:
        XML document string without declaration or insignificant whitespace.
    """
    root = ET.Element("Licence", {"Version": str(CURRENT_VERSION)})
    ET.SubElement(root, "Serial").text = str(licence.serial)
    ET.SubElement(root, "NotBefore").text = _time_text(licence.not_before)
    ET.SubElement(root, "NotAfter").text = _time_text(licence.not_after)

    attrs_el = ET.SubElement(root, "Attributes")
    for key, value in _sorted_attributes(licence):
        attr_el = ET.SubElement(attrs_el, "Attribute")
        ET.SubElement(attr_el, "Key").text = _xml_text(key, "Attribute key")
        ET.SubElement(attr_el, "Value").text = _xml_text(value, f"Attribute {key!r}")

    if include_signature:
        sig = licence.signature
        ET.SubElement(root, "Signature").text = (
            base64.b64encode(sig).decode("ascii") if sig else ""
        )

    return ET.tostring(root, encoding="unicode")


def _children(el: ET.Element, expected: List[str], where: str) -> List[ET.Element]:
    children = list(el)
    names = [c.tag for c in children]
    if names != expected:
        raise LicenceFormatError(
            f"{where}: expected elements {expected}, found {names}"
        )
    return children


def _parse_time_text(el: ET.Element) -> Optional[datetime]:
    text = (el.text or "").strip()
    if text.lower() == NOT_APPLICABLE.lower():
        return None
    try:
        raw = int(text)
    except ValueError as e:
        raise LicenceFormatError(f"Invalid {el.tag} format") from e
    if not -(1 << 63) <= raw < (1 << 63):
        raise LicenceFormatError(f"Invalid {el.tag} format")
    return ticks_to_datetime(raw, el.tag)


def from_xml(text: Union[str, bytes], expect_signature: bool = True) -> Licence:
    """
    Decode a licence from its XML form.

    Args:
        text: XML document.
        expect_signature: Whether the document carries the Signature element.

    Returns:
        The decoded Licence.

    Raises:
        ValueError: If text is None, empty or whitespace-only.
        LicenceFormatError: If the document is not a well-formed licence.
    """
    if text is None or not text.strip():
        raise ValueError("Xml input cannot be None or empty")

    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise LicenceFormatError(f"Invalid XML: {e}") from e

    if root.tag != "Licence":
        raise LicenceFormatError("Licence tag not found")

    version_text = root.get("Version")
    try:
        version = int(version_text or "")
    except ValueError as e:
        raise LicenceFormatError("Invalid Version format") from e
    _check_version(version)

    expected = ["Serial", "NotBefore", "NotAfter", "Attributes"]
    if expect_signature:
        expected.append("Signature")
    children = _children(root, expected, "Licence")

    try:
        serial = uuid.UUID((children[0].text or "").strip())
    except ValueError as e:
        raise LicenceFormatError("Invalid Serial format") from e

    not_before = _parse_time_text(children[1])
    not_after = _parse_time_text(children[2])

    pairs = []
    for i, attr_el in enumerate(children[3]):
        if attr_el.tag != "Attribute":
            raise LicenceFormatError(f"Attributes: unexpected element {attr_el.tag!r}")
        key_el, value_el = _children(attr_el, ["Key", "Value"], f"Attribute[{i}]")
        pairs.append((key_el.text or "", value_el.text or ""))
    if len(pairs) > MAX_ATTRIBUTES:
        raise LicenceFormatError("Attributes: too many attributes")
    attributes = _checked_attributes(pairs)

    signature: Optional[bytes] = None
    if expect_signature:
        sig_text = (children[4].text or "").strip()
        try:
            signature = base64.b64decode(sig_text, validate=True) if sig_text else None
        except (binascii.Error, ValueError) as e:
            raise LicenceFormatError("Invalid signature") from e
        if signature is not None and len(signature) > MAX_SIGNATURE_LENGTH:
            raise LicenceFormatError("Signature: too long")

    return Licence(serial, not_before, not_after, attributes, signature)


def load_licence(data: Union[bytes, str]) -> Licence:
    """
    Decode a signed licence in either encoding.

    Strings and byte strings whose first non-blank character is ``<`` are
    decoded as XML, anything else as binary.
    """
    if data is None or len(data) == 0:
        raise ValueError("Licence input cannot be None or empty")
    if isinstance(data, str):
        return from_xml(data)
    if bytes(data).lstrip().startswith(b"<"):
        return from_xml(bytes(data))
    return from_binary(data)
