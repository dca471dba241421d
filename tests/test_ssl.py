import subprocess
from pathlib import Path

import pytest

from site_manager.ca import CertificateAuthority
from site_manager.errors import CommandError
from site_manager.ssl import build_extensions, issue_certificate

from conftest import LocalRunner, needs_openssl, verify


def openssl_text(cert: Path) -> str:
    return subprocess.run(
        ["openssl", "x509", "-in", str(cert), "-noout", "-text"],
        capture_output=True, text=True, check=True,
    ).stdout


def test_extensions_cover_domain_wildcard_and_loopback():
    ext = build_extensions("a.test")

    assert "basicConstraints = CA:FALSE" in ext
    assert "keyUsage = digitalSignature, nonRepudiation, keyEncipherment, dataEncipherment" in ext
    assert "subjectAltName = @alt_names" in ext
    alt_names = ext.split("[alt_names]")[1].split()
    assert alt_names == [
        "DNS.1", "=", "a.test",
        "DNS.2", "=", "*.a.test",
        "IP.1", "=", "127.0.0.1",
    ]


def test_issue_runs_steps_in_order(settings, runner):
    key, cert = issue_certificate(settings, runner, "a.test", Path("/ca.key"), Path("/ca.pem"))

    assert key == settings.site_key("a.test")
    assert cert == settings.site_cert("a.test")
    commands = [argv[:2] for argv in runner.argvs()]
    assert commands == [
        ("mkdir", "-p"),
        ("tee", commands[1][1]),
        ("openssl", "genrsa"),
        ("chmod", "600"),
        ("openssl", "req"),
        ("openssl", "x509"),
        ("chmod", "644"),
        ("rm", "-rf"),
    ]
    sign = runner.argvs()[5]
    assert sign[sign.index("-days") + 1] == "365"
    assert "-sha256" in sign
    assert sign[sign.index("-CA") + 1] == "/ca.pem"
    assert sign[sign.index("-CAkey") + 1] == "/ca.key"
    request = runner.argvs()[4]
    assert request[request.index("-subj") + 1].endswith("/CN=a.test")


def test_transient_files_removed_on_success(settings, runner):
    issue_certificate(settings, runner, "a.test", Path("/ca.key"), Path("/ca.pem"))
    work_dir = Path(runner.argvs()[-1][-1])
    assert not work_dir.exists()


def test_transient_files_removed_when_signing_fails(settings, runner):
    runner.fail_when(lambda step: step.argv[:2] == ("openssl", "x509"))

    with pytest.raises(CommandError):
        issue_certificate(settings, runner, "a.test", Path("/ca.key"), Path("/ca.pem"))

    assert runner.argvs()[-1][:2] == ("rm", "-rf")
    assert not Path(runner.argvs()[-1][-1]).exists()
    assert not runner.ran("chmod", "644")


@needs_openssl
def test_issued_certificate_verifies_against_ca(settings):
    runner = LocalRunner()
    ca_key, ca_cert = CertificateAuthority(settings, runner).ensure()

    key, cert = issue_certificate(settings, runner, "a.test", ca_key, ca_cert)

    assert key.exists() and cert.exists()
    assert verify(ca_cert, cert)
    text = openssl_text(cert)
    assert "DNS:a.test" in text
    assert "DNS:*.a.test" in text
    assert "IP Address:127.0.0.1" in text
    assert "CA:FALSE" in text
    assert "CN = a.test" in text or "CN=a.test" in text
    assert oct(key.stat().st_mode & 0o777) == "0o600"


@needs_openssl
def test_reissue_overwrites_previous_material(settings):
    runner = LocalRunner()
    ca_key, ca_cert = CertificateAuthority(settings, runner).ensure()

    _, cert = issue_certificate(settings, runner, "a.test", ca_key, ca_cert)
    first = cert.read_text()
    issue_certificate(settings, runner, "a.test", ca_key, ca_cert)

    assert cert.read_text() != first
    assert verify(ca_cert, cert)


def test_transient_files_removed_when_interrupted(settings, runner):
    def interrupt(step):
        if step.argv[:2] == ("openssl", "x509"):
            raise KeyboardInterrupt
        return False

    runner.fail_when(interrupt)

    with pytest.raises(KeyboardInterrupt):
        issue_certificate(settings, runner, "a.test", Path("/ca.key"), Path("/ca.pem"))

    ext_path = Path(next(argv for argv in runner.argvs() if argv[0] == "tee")[1])
    assert not ext_path.parent.exists()


def test_no_temp_dir_when_extensions_fail_to_render(settings, runner, tmp_path, monkeypatch):
    temp_root = tmp_path / "tmp"
    temp_root.mkdir()
    monkeypatch.setattr("site_manager.ssl.tempfile.tempdir", str(temp_root))

    def broken(domain):
        raise RuntimeError("template missing")

    monkeypatch.setattr("site_manager.ssl.build_extensions", broken)

    with pytest.raises(RuntimeError):
        issue_certificate(settings, runner, "a.test", Path("/ca.key"), Path("/ca.pem"))

    assert list(temp_root.iterdir()) == []
    assert runner.steps == []
