import base64
import uuid

import pytest

from licencekit import from_binary, from_xml, public_key_fingerprint_sha256
from licencekit import cli_issue_licence, cli_make_keys, cli_verify_licence
from licencekit import cli_show_public_key_fingerprint
from licencekit.cli_make_keys import PRIVATE_KEY_FILE, PUBLIC_KEY_FILE


SERIAL = "5d3c2b1a-0f9e-4d8c-b7a6-958473625140"


@pytest.fixture(params=["rsa", "dsa"])
def key_dir(request, tmp_path, capsys):
    assert cli_make_keys.main(["--family", request.param, "--out-dir", str(tmp_path)]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out == [str(tmp_path / PRIVATE_KEY_FILE), str(tmp_path / PUBLIC_KEY_FILE)]
    return tmp_path


def _issue(key_dir, *extra):
    return cli_issue_licence.main(
        ["--private-key", str(key_dir / PRIVATE_KEY_FILE), "--serial", SERIAL, *extra]
    )


def _verify(key_dir, licence_path, *extra):
    return cli_verify_licence.main(
        [
            "--licence",
            str(licence_path),
            "--public-key",
            str(key_dir / PUBLIC_KEY_FILE),
            "--no-network-time",
            *extra,
        ]
    )


def test_make_keys_writes_pem_files(key_dir):
    assert b"PRIVATE KEY" in (key_dir / PRIVATE_KEY_FILE).read_bytes()
    assert b"BEGIN PUBLIC KEY" in (key_dir / PUBLIC_KEY_FILE).read_bytes()


def test_make_keys_creates_directory(tmp_path, capsys):
    out_dir = tmp_path / "nested" / "keys"
    assert cli_make_keys.main(["--out-dir", str(out_dir)]) == 0
    assert (out_dir / PUBLIC_KEY_FILE).exists()


def test_issue_binary_to_file_and_verify(key_dir, capsys):
    lic_path = key_dir / "app.lic"
    assert _issue(key_dir, "--attr", "Edition=Pro", "--out", str(lic_path)) == 0
    assert capsys.readouterr().out.strip() == SERIAL

    lic = from_binary(lic_path.read_bytes())
    assert lic.serial == uuid.UUID(SERIAL)
    assert lic.attributes == {"Edition": "Pro"}
    assert lic.has_signature

    assert _verify(key_dir, lic_path) == 0
    assert capsys.readouterr().out.strip() == "VALID"


def test_issue_base64_to_stdout_verifies(key_dir, capsys):
    assert _issue(key_dir, "--days", "0") == 0
    text = capsys.readouterr().out.strip()
    lic = from_binary(base64.b64decode(text))
    assert lic.not_after is None

    lic_path = key_dir / "app.lic.b64"
    lic_path.write_text(text + "\n")
    assert _verify(key_dir, lic_path) == 0
    assert capsys.readouterr().out.strip() == "VALID"


def test_issue_xml(key_dir, capsys):
    assert _issue(key_dir, "--format", "xml", "--attr", "Seats=5") == 0
    doc = capsys.readouterr().out
    lic = from_xml(doc)
    assert lic.attributes["Seats"] == "5"

    lic_path = key_dir / "app.xml"
    lic_path.write_text(doc)
    assert _verify(key_dir, lic_path) == 0


def test_verify_reports_not_started(key_dir, capsys):
    lic_path = key_dir / "future.lic"
    assert _issue(key_dir, "--not-before", "2999-01-01T00:00:00", "--days", "0",
                  "--out", str(lic_path)) == 0
    capsys.readouterr()
    assert _verify(key_dir, lic_path) == 1
    assert capsys.readouterr().out.strip() == "NOT_STARTED"


def test_verify_reports_tampering(key_dir, capsys):
    lic_path = key_dir / "app.lic"
    _issue(key_dir, "--attr", "CustomerName=John Doe", "--out", str(lic_path))
    lic_path.write_bytes(lic_path.read_bytes().replace(b"John Doe", b"John Doa"))
    capsys.readouterr()
    assert _verify(key_dir, lic_path) == 1
    assert capsys.readouterr().out.strip() == "INVALID_SIGNATURE"


def test_verify_with_wrong_key(key_dir, tmp_path, capsys):
    lic_path = key_dir / "app.lic"
    _issue(key_dir, "--out", str(lic_path))
    other = tmp_path / "other"
    cli_make_keys.main(["--out-dir", str(other)])
    capsys.readouterr()
    assert _verify(other, lic_path) == 1
    assert capsys.readouterr().out.strip() == "INVALID_SIGNATURE"


def test_verify_unreadable_input(key_dir, capsys):
    assert _verify(key_dir, key_dir / "absent.lic") == 2
    assert "Error" in capsys.readouterr().err

    garbage = key_dir / "garbage.lic"
    garbage.write_bytes(b"\x07\x00garbage")
    assert _verify(key_dir, garbage) == 2


def test_verify_uses_configured_ntp_server(key_dir, monkeypatch, capsys):
    lic_path = key_dir / "app.lic"
    _issue(key_dir, "--out", str(lic_path))
    seen = []

    def fake_network_time(server):
        seen.append(server)
        from licencekit.ntp import TimeSourceUnavailable

        raise TimeSourceUnavailable("offline")

    monkeypatch.setattr(cli_verify_licence, "network_time", fake_network_time)
    code = cli_verify_licence.main(
        [
            "--licence",
            str(lic_path),
            "--public-key",
            str(key_dir / PUBLIC_KEY_FILE),
            "--ntp-server",
            "time.example.org",
        ]
    )
    assert code == 0
    assert seen == ["time.example.org"]


@pytest.mark.parametrize(
    "extra",
    [
        ["--attr", "novalue"],
        ["--attr", "=x"],
        ["--attr", "A=1", "--attr", "A=2"],
        ["--not-before", "yesterday"],
        ["--serial", "not-a-uuid"],
    ],
)
def test_issue_argument_errors(key_dir, capsys, extra):
    assert _issue(key_dir, *extra) == 2
    assert "Error" in capsys.readouterr().err


def test_issue_xml_rejects_unrepresentable_attribute(key_dir, capsys):
    lic_path = key_dir / "bad.xml"
    code = _issue(
        key_dir, "--format", "xml", "--attr", "Note=bell\x07", "--out", str(lic_path)
    )
    assert code == 2
    assert "cannot be represented in XML" in capsys.readouterr().err
    assert not lic_path.exists()


def test_issue_with_public_key_fails(key_dir, capsys):
    code = cli_issue_licence.main(["--private-key", str(key_dir / PUBLIC_KEY_FILE)])
    assert code == 2
    assert "Error" in capsys.readouterr().err


def test_issue_missing_private_key(tmp_path, capsys):
    assert cli_issue_licence.main(["--private-key", str(tmp_path / "none.pem")]) == 2


def test_show_fingerprint(key_dir, capsys):
    pub = key_dir / PUBLIC_KEY_FILE
    assert cli_show_public_key_fingerprint.main(["--public-key", str(pub)]) == 0
    assert capsys.readouterr().out.strip() == public_key_fingerprint_sha256(
        pub.read_bytes()
    )


def test_show_fingerprint_missing_file(tmp_path, capsys):
    missing = tmp_path / "none.pem"
    assert cli_show_public_key_fingerprint.main(["--public-key", str(missing)]) == 1
    assert "cannot read" in capsys.readouterr().err
