"""Tests for the certgen command line."""

import textwrap
from datetime import timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID
from typer.testing import CliRunner

from certgen.cli import app
from certgen.pki import generate_key, pem_cert, pem_private_key, utcnow
from certgen.store import KeyMaterialStore

runner = CliRunner()

CONFIG = textwrap.dedent("""\
    [network]
    name = "My Network"
    email = "admin@example.net"
    root_ca_name = "personal_ca"

    [sites."srv.example.net"]
    alt_names = ["srv", "192.168.0.2"]
""")


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "certgen.toml"
    path.write_text(CONFIG)
    return path


def _artifacts(directory):
    return sorted(p.name for p in directory.iterdir() if p.suffix in (".crt", ".key"))


class TestReconcileCommand:

    def test_first_run_then_reuse(self, config_path, tmp_path):
        result = runner.invoke(app, ["reconcile", str(config_path), "--yes"])
        assert result.exit_code == 0, result.output
        assert "authority personal_ca: regenerated" in result.output
        assert "site srv.example.net: regenerated" in result.output
        assert _artifacts(tmp_path) == [
            "personal_ca.crt", "personal_ca.key", "srv.example.net.crt", "srv.example.net.key",
        ]

        result = runner.invoke(app, ["reconcile", str(config_path)])
        assert result.exit_code == 0, result.output
        assert "authority personal_ca: reused" in result.output
        assert "site srv.example.net: reused" in result.output

    def test_output_directory(self, config_path, tmp_path):
        out = tmp_path / "pki"
        result = runner.invoke(app, ["reconcile", str(config_path), "--yes", "--out", str(out)])
        assert result.exit_code == 0, result.output
        assert len(_artifacts(out)) == 4
        assert _artifacts(tmp_path) == []

    def test_confirmation_declined(self, config_path, tmp_path):
        result = runner.invoke(app, ["reconcile", str(config_path)], input="n\n")
        assert result.exit_code == 1
        assert "Generate a new one?" in result.output
        assert _artifacts(tmp_path) == []

    def test_confirmation_accepted(self, config_path, tmp_path):
        result = runner.invoke(app, ["reconcile", str(config_path)], input="y\n")
        assert result.exit_code == 0, result.output
        assert len(_artifacts(tmp_path)) == 4

    def test_dry_run(self, config_path, tmp_path):
        result = runner.invoke(app, ["reconcile", str(config_path), "--dry-run"])
        assert result.exit_code == 0, result.output
        assert "would regenerate" in result.output
        assert _artifacts(tmp_path) == []

    def test_invalid_configuration(self, tmp_path):
        path = tmp_path / "certgen.toml"
        path.write_text(CONFIG.replace('"srv", ', '"not a valid name!!", '))
        result = runner.invoke(app, ["reconcile", str(path), "--yes"])
        assert result.exit_code == 2
        assert _artifacts(tmp_path) == []

    def test_corrupt_authority(self, config_path, tmp_path):
        runner.invoke(app, ["reconcile", str(config_path), "--yes"])
        (tmp_path / "personal_ca.crt").write_text("garbage")
        result = runner.invoke(app, ["reconcile", str(config_path), "--yes"])
        assert result.exit_code == 1
        assert (tmp_path / "personal_ca.crt").read_text() == "garbage"


class TestVerifyCommand:

    def test_verify_ok(self, config_path):
        runner.invoke(app, ["reconcile", str(config_path), "--yes"])
        result = runner.invoke(app, ["verify", str(config_path)])
        assert result.exit_code == 0, result.output
        assert "[OK]" in result.output

    def test_verify_missing(self, config_path):
        result = runner.invoke(app, ["verify", str(config_path)])
        assert result.exit_code == 1

    def test_verify_authority_without_extensions(self, config_path, tmp_path):
        key = generate_key()
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "personal_ca")])
        now = utcnow()
        cert = (
            x509.CertificateBuilder()
            .subject_name(name).issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=30))
            .sign(key, hashes.SHA256())
        )
        KeyMaterialStore(tmp_path).save("personal_ca", pem_private_key(key), pem_cert(cert))

        result = runner.invoke(app, ["verify", str(config_path)])
        assert result.exit_code == 1
        assert result.exception is None or isinstance(result.exception, SystemExit)
