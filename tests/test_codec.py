import itertools
import struct
import uuid
from datetime import datetime, timezone

import pytest

from licencekit import (
    Licence,
    LicenceFormatError,
    from_binary,
    from_xml,
    load_licence,
    signable_payload,
    to_binary,
    to_xml,
)
from licencekit.codec import datetime_to_ticks, ticks_to_datetime


SERIAL = uuid.UUID("00112233-4455-6677-8899-aabbccddeeff")
SERIAL_LE = bytes.fromhex("33221100554477668899aabbccddeeff")

Y2K = datetime(2000, 1, 1, tzinfo=timezone.utc)
Y2K_RAW = 5242508834427387904  # 630822816000000000 ticks | UTC kind flag


def _simple() -> Licence:
    return Licence.create(SERIAL, attributes={"b": "2", "a": "1"})


def _full(signature=b"\x01\x02\x03") -> Licence:
    return Licence(
        SERIAL,
        datetime(2024, 2, 29, 8, 30, 15, 123456, tzinfo=timezone.utc),
        datetime(2031, 12, 31, 23, 59, 59, tzinfo=timezone.utc),
        {
            "LicenceType": "Trial",
            "CustomerName": "John Doe",
            "CustomerCompany": "Contoso <Ltd> & Sons",
            "Empty": "",
            "Unicode": "Zoë – 東京",
            "Long": "x" * 300,
        },
        signature,
    )


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def test_ticks_known_value():
    assert datetime_to_ticks(Y2K) == Y2K_RAW
    assert ticks_to_datetime(Y2K_RAW, "t") == Y2K


def test_ticks_epoch_and_precision():
    assert datetime_to_ticks(datetime(1, 1, 1, tzinfo=timezone.utc)) == 1 << 62
    moment = datetime(2030, 6, 1, 1, 2, 3, 999999, tzinfo=timezone.utc)
    assert ticks_to_datetime(datetime_to_ticks(moment), "t") == moment


@pytest.mark.parametrize(
    "raw",
    [
        630822816000000000,  # unspecified kind
        -8581163202427387904,  # local kind (bit 63)
        Y2K_RAW + 1,  # sub-microsecond
        (1 << 62) | ((1 << 62) - 1),  # beyond year 9999
    ],
)
def test_ticks_non_canonical_rejected(raw):
    with pytest.raises(LicenceFormatError):
        ticks_to_datetime(raw, "NotAfter")


# ---------------------------------------------------------------------------
# Binary form
# ---------------------------------------------------------------------------


def test_binary_layout():
    expected = (
        bytes.fromhex("0100")  # version
        + b"\x10"
        + SERIAL_LE
        + b"\x00"  # no NotBefore
        + b"\x00"  # no NotAfter
        + bytes.fromhex("0200")  # attribute count
        + b"\x01a\x011"
        + b"\x01b\x012"
    )
    assert to_binary(_simple(), include_signature=False) == expected
    assert to_binary(_simple()) == expected + b"\x00\x00"


def test_binary_layout_with_times_and_signature():
    lic = Licence(SERIAL, Y2K, None, {}, b"\xaa\xbb")
    expected = (
        bytes.fromhex("0100")
        + b"\x10"
        + SERIAL_LE
        + b"\x01"
        + struct.pack("<q", Y2K_RAW)
        + b"\x00"
        + b"\x00\x00"
        + b"\x02\x00\xaa\xbb"
    )
    assert to_binary(lic) == expected


def test_long_string_uses_varint_length():
    lic = Licence.create(SERIAL, attributes={"k": "v" * 300})
    data = to_binary(lic, include_signature=False)
    # 300 = 0b10_0101100 -> 0xAC 0x02
    assert b"\x01k\xac\x02" + b"v" * 300 in data


@pytest.mark.parametrize("include_signature", [True, False])
def test_binary_round_trip(include_signature):
    lic = _full()
    decoded = from_binary(to_binary(lic, include_signature), include_signature)
    if include_signature:
        assert decoded == lic
    else:
        assert decoded == lic.replace()
        assert decoded.signature is None


def test_binary_round_trip_unsigned_minimal():
    lic = Licence.create(SERIAL)
    assert from_binary(to_binary(lic)) == lic


def test_signable_payload_ignores_signature():
    assert signable_payload(_full(b"one")) == signable_payload(_full(b"two"))
    assert signable_payload(_full()) == to_binary(_full(), include_signature=False)


def test_canonical_attribute_order():
    items = [("LicenceType", "Trial"), ("CustomerName", "John Doe"), ("a", "1"), ("Z", "2")]
    payloads = set()
    documents = set()
    for perm in itertools.permutations(items):
        lic = Licence.create(SERIAL, attributes=dict(perm))
        payloads.add(to_binary(lic, include_signature=False))
        documents.add(to_xml(lic, include_signature=False))
    assert len(payloads) == 1
    assert len(documents) == 1


def test_unsupported_version_binary():
    data = bytearray(to_binary(_full()))
    data[0:2] = b"\x02\x00"
    with pytest.raises(LicenceFormatError, match="Version 2 is not supported"):
        from_binary(bytes(data))


def test_every_truncation_fails():
    data = to_binary(_full())
    for n in range(1, len(data)):
        with pytest.raises(LicenceFormatError):
            from_binary(data[:n])


def test_truncation_without_signature_section():
    data = to_binary(_full(), include_signature=False)
    with pytest.raises(LicenceFormatError):
        from_binary(data, expect_signature=True)


def test_trailing_data_rejected():
    with pytest.raises(LicenceFormatError, match="trailing"):
        from_binary(to_binary(_full()) + b"\x00")
    with pytest.raises(LicenceFormatError, match="trailing"):
        from_binary(to_binary(_full()), expect_signature=False)


def test_empty_binary_is_argument_error():
    with pytest.raises(ValueError) as exc:
        from_binary(b"")
    assert not isinstance(exc.value, LicenceFormatError)
    with pytest.raises(ValueError):
        from_binary(None)


def test_invalid_serial_length():
    data = bytearray(to_binary(_simple()))
    data[2] = 15
    with pytest.raises(LicenceFormatError, match="Serial"):
        from_binary(bytes(data))


def test_invalid_boolean_byte():
    data = bytearray(to_binary(_simple()))
    data[19] = 2  # hasNotBefore
    with pytest.raises(LicenceFormatError, match="NotBefore"):
        from_binary(bytes(data))


def _blob(pairs, raw_strings=False):
    out = bytes.fromhex("0100") + b"\x10" + SERIAL_LE + b"\x00\x00"
    out += struct.pack("<H", len(pairs))
    for key, value in pairs:
        if raw_strings:
            out += key + value
        else:
            for s in (key, value):
                b = s.encode("utf-8")
                out += bytes([len(b)]) + b
    return out + b"\x00\x00"


def test_duplicate_attribute_key_rejected():
    with pytest.raises(LicenceFormatError, match="duplicate"):
        from_binary(_blob([("a", "1"), ("a", "2")]))


def test_out_of_order_attribute_key_rejected():
    with pytest.raises(LicenceFormatError, match="order"):
        from_binary(_blob([("b", "1"), ("a", "2")]))


def test_invalid_utf8_rejected():
    with pytest.raises(LicenceFormatError, match="UTF-8"):
        from_binary(_blob([(b"\x01\xff", b"\x01a")], raw_strings=True))


@pytest.mark.parametrize(
    "prefix",
    [
        b"\x81\x00",  # non-minimal
        b"\xff\xff\xff\xff\xff\x01",  # more than five bytes
        b"\xff\xff\xff\xff\x0f",  # beyond int32
    ],
)
def test_malformed_length_prefix(prefix):
    with pytest.raises(LicenceFormatError, match="length prefix"):
        from_binary(_blob([(prefix, b"\x00")], raw_strings=True))


# ---------------------------------------------------------------------------
# XML form
# ---------------------------------------------------------------------------


def test_xml_layout():
    assert to_xml(_simple()) == (
        '<Licence Version="1">'
        "<Serial>00112233-4455-6677-8899-aabbccddeeff</Serial>"
        "<NotBefore>N/A</NotBefore>"
        "<NotAfter>N/A</NotAfter>"
        "<Attributes>"
        "<Attribute><Key>a</Key><Value>1</Value></Attribute>"
        "<Attribute><Key>b</Key><Value>2</Value></Attribute>"
        "</Attributes>"
        "<Signature />"
        "</Licence>"
    )


def test_xml_times_and_signature():
    lic = Licence(SERIAL, Y2K, None, {}, b"\xaa\xbb")
    xml = to_xml(lic)
    assert f"<NotBefore>{Y2K_RAW}</NotBefore>" in xml
    assert "<Signature>qrs=</Signature>" in xml
    assert "Signature" not in to_xml(lic, include_signature=False)


@pytest.mark.parametrize("include_signature", [True, False])
def test_xml_round_trip(include_signature):
    lic = _full()
    decoded = from_xml(to_xml(lic, include_signature), include_signature)
    assert decoded == (lic if include_signature else lic.replace())


def test_xml_and_binary_share_signable_payload():
    lic = _full()
    assert signable_payload(from_xml(to_xml(lic))) == signable_payload(lic)
    assert from_xml(to_xml(lic)) == from_binary(to_binary(lic))


def test_xml_accepts_whitespace_and_lowercase_marker():
    doc = """
    <Licence Version="1">
      <Serial> 00112233-4455-6677-8899-aabbccddeeff </Serial>
      <NotBefore>n/a</NotBefore>
      <NotAfter>N/A</NotAfter>
      <Attributes>
        <Attribute>
          <Key>a</Key>
          <Value>1</Value>
        </Attribute>
      </Attributes>
      <Signature></Signature>
    </Licence>
    """
    lic = from_xml(doc)
    assert lic == Licence.create(SERIAL, attributes={"a": "1"})


@pytest.mark.parametrize(
    "doc, match",
    [
        ("<Licence>", "Invalid XML"),
        ('<License Version="1"/>', "Licence tag"),
        ("<Licence><Serial/></Licence>", "Version"),
        ('<Licence Version="x"/>', "Version"),
        ('<Licence Version="2"/>', "Version 2 is not supported"),
        (
            '<Licence Version="1"><Serial>00112233-4455-6677-8899-aabbccddeeff</Serial>'
            "<NotAfter>N/A</NotAfter><NotBefore>N/A</NotBefore>"
            "<Attributes/><Signature/></Licence>",
            "expected elements",
        ),
        (
            '<Licence Version="1"><Serial>00112233-4455-6677-8899-aabbccddeeff</Serial>'
            "<NotBefore>N/A</NotBefore><NotAfter>N/A</NotAfter>"
            "<Attributes/></Licence>",
            "expected elements",
        ),
        (
            '<Licence Version="1"><Serial>nope</Serial>'
            "<NotBefore>N/A</NotBefore><NotAfter>N/A</NotAfter>"
            "<Attributes/><Signature/></Licence>",
            "Serial",
        ),
        (
            '<Licence Version="1"><Serial>00112233-4455-6677-8899-aabbccddeeff</Serial>'
            "<NotBefore>yesterday</NotBefore><NotAfter>N/A</NotAfter>"
            "<Attributes/><Signature/></Licence>",
            "NotBefore",
        ),
        (
            '<Licence Version="1"><Serial>00112233-4455-6677-8899-aabbccddeeff</Serial>'
            "<NotBefore>N/A</NotBefore><NotAfter>N/A</NotAfter>"
            "<Attributes><Attribute><Value>1</Value><Key>a</Key></Attribute></Attributes>"
            "<Signature/></Licence>",
            "Attribute",
        ),
        (
            '<Licence Version="1"><Serial>00112233-4455-6677-8899-aabbccddeeff</Serial>'
            "<NotBefore>N/A</NotBefore><NotAfter>N/A</NotAfter>"
            "<Attributes><Item/></Attributes><Signature/></Licence>",
            "unexpected element",
        ),
        (
            '<Licence Version="1"><Serial>00112233-4455-6677-8899-aabbccddeeff</Serial>'
            "<NotBefore>N/A</NotBefore><NotAfter>N/A</NotAfter>"
            "<Attributes/><Signature>***</Signature></Licence>",
            "Invalid signature",
        ),
    ],
)
def test_xml_structural_errors(doc, match):
    with pytest.raises(LicenceFormatError, match=match):
        from_xml(doc)


def test_xml_without_signature_rejects_signature_element():
    with pytest.raises(LicenceFormatError):
        from_xml(to_xml(_full()), expect_signature=False)


def test_xml_empty_input_is_argument_error():
    with pytest.raises(ValueError):
        from_xml("   ")


def test_xml_rejects_unrepresentable_characters():
    lic = Licence.create(SERIAL, attributes={"k": "line\rbreak"})
    with pytest.raises(ValueError):
        to_xml(lic)
    # the binary form has no such restriction
    assert from_binary(to_binary(lic)) == lic


# ---------------------------------------------------------------------------
# Format dispatch
# ---------------------------------------------------------------------------


def test_load_licence_dispatches_on_content():
    lic = _full()
    assert load_licence(to_binary(lic)) == lic
    assert load_licence(to_xml(lic)) == lic
    assert load_licence(b"\n  " + to_xml(lic).encode("utf-8")) == lic


def test_load_licence_rejects_empty():
    with pytest.raises(ValueError):
        load_licence(b"")
