"""Tests for the command-line interface."""

from __future__ import annotations

import json
import sys

import pytest
from click.testing import CliRunner

from stepwitness.cli import cli
from stepwitness.dsse import Envelope


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def keypair(runner, tmp_path):
    """Generate keys through the CLI."""
    key_dir = tmp_path / "keys"
    result = runner.invoke(cli, ["keygen", "--out-dir", str(key_dir)])
    assert result.exit_code == 0, result.output
    return key_dir / "signing.key", key_dir / "signing.pub"


class TestKeygen:
    """Test the keygen command."""

    def test_writes_key_pair(self, keypair):
        private_key, public_key = keypair
        assert b"PRIVATE KEY" in private_key.read_bytes()
        assert b"PUBLIC KEY" in public_key.read_bytes()
        assert private_key.stat().st_mode & 0o777 == 0o600

    def test_refuses_to_overwrite(self, runner, keypair):
        private_key, _ = keypair
        result = runner.invoke(cli, ["keygen", "--out-dir", str(private_key.parent)])

        assert result.exit_code == 2
        assert "already exist" in result.output

    def test_force(self, runner, keypair):
        private_key, _ = keypair
        before = private_key.read_bytes()

        result = runner.invoke(cli, ["keygen", "--out-dir", str(private_key.parent), "--force"])

        assert result.exit_code == 0
        assert private_key.read_bytes() != before


class TestRun:
    """Test the run command."""

    def test_run_without_command(self, runner, keypair, work_dir, tmp_path):
        private_key, _ = keypair
        out = tmp_path / "build.att.json"

        result = runner.invoke(cli, [
            "run", "-s", "build", "-k", str(private_key), "-o", str(out), "-d", str(work_dir),
        ])

        assert result.exit_code == 0, result.output
        statement = Envelope.from_json(out.read_bytes()).decoded_payload()
        assert [a["type"] for a in statement["predicate"]["attestations"]] == ["material", "product"]

    def test_run_with_command(self, runner, keypair, work_dir, tmp_path):
        private_key, _ = keypair
        out = tmp_path / "build.att.json"

        result = runner.invoke(cli, [
            "run", "-s", "build", "-k", str(private_key), "-o", str(out), "-d", str(work_dir),
            "--attestor-option", "command-run.silent=true",
            "--", sys.executable, "-c", "open('app.bin', 'w').write('x')",
        ])

        assert result.exit_code == 0, result.output
        statement = Envelope.from_json(out.read_bytes()).decoded_payload()
        command_run = statement["predicate"]["attestations"][2]
        assert command_run["type"] == "command-run"
        assert command_run["attestation"]["cmd"][1:] == ["-c", "open('app.bin', 'w').write('x')"]
        assert statement["subject"][0]["name"] == "file:app.bin"

    def test_run_to_stdout(self, runner, keypair, work_dir):
        private_key, _ = keypair

        result = runner.invoke(cli, ["run", "-s", "build", "-k", str(private_key), "-d", str(work_dir)])

        assert result.exit_code == 0
        assert '"payloadType":"application/vnd.in-toto+json"' in result.output

    def test_missing_step(self, runner, keypair):
        private_key, _ = keypair
        result = runner.invoke(cli, ["run", "-k", str(private_key)])

        assert result.exit_code == 2
        assert "step name is required" in result.output

    def test_two_keys(self, runner, keypair, work_dir, tmp_path):
        private_key, _ = keypair
        other = tmp_path / "other"
        runner.invoke(cli, ["keygen", "--out-dir", str(other)])
        out = tmp_path / "build.att.json"

        result = runner.invoke(cli, [
            "run", "-s", "build", "-k", str(private_key), "-k", str(other / "signing.key"),
            "-o", str(out), "-d", str(work_dir),
        ])

        assert result.exit_code == 1
        assert "only one signer is supported" in result.output
        assert not out.exists()

    def test_unloadable_keys_are_listed(self, runner, work_dir, tmp_path):
        result = runner.invoke(cli, [
            "run", "-s", "build", "-k", str(tmp_path / "a.pem"), "-k", str(tmp_path / "b.pem"),
            "-d", str(work_dir),
        ])

        assert result.exit_code == 1
        assert "failed to load signers" in result.output
        assert "a.pem" in result.output
        assert "b.pem" in result.output

    def test_unknown_attestor(self, runner, keypair, work_dir):
        private_key, _ = keypair
        result = runner.invoke(cli, [
            "run", "-s", "build", "-k", str(private_key), "-d", str(work_dir), "-a", "nope",
        ])

        assert result.exit_code == 1
        assert "unknown attestor: nope" in result.output

    def test_bad_archivista_url_aborts_before_run(self, runner, keypair, work_dir, tmp_path):
        private_key, _ = keypair
        out = tmp_path / "build.att.json"

        result = runner.invoke(cli, [
            "run", "-s", "build", "-k", str(private_key), "-o", str(out), "-d", str(work_dir),
            "--enable-archivista", "--archivista-server", "file:///tmp/store",
        ])

        assert result.exit_code == 2
        assert "archivista url" in result.output
        assert not out.exists()

    def test_config_file(self, runner, keypair, work_dir, tmp_path):
        private_key, _ = keypair
        out = tmp_path / "deploy.att.json"
        config = tmp_path / "witness.yaml"
        config.write_text(
            "step: build\n"
            f"workingdir: {work_dir}\n"
            f"outfile: {tmp_path / 'ignored.json'}\n"
            "key:\n"
            f"  - {private_key}\n"
            "attestations:\n"
            "  - environment\n"
        )

        result = runner.invoke(cli, ["run", "-c", str(config), "-s", "deploy", "-o", str(out)])

        assert result.exit_code == 0, result.output
        statement = Envelope.from_json(out.read_bytes()).decoded_payload()
        assert statement["predicate"]["name"] == "deploy"
        assert statement["predicate"]["attestations"][-1]["type"] == "environment"
        assert not (tmp_path / "ignored.json").exists()


class TestVerify:
    """Test the verify command."""

    @pytest.fixture
    def envelope_file(self, runner, keypair, work_dir, tmp_path):
        private_key, _ = keypair
        out = tmp_path / "build.att.json"
        result = runner.invoke(cli, [
            "run", "-s", "build", "-k", str(private_key), "-o", str(out), "-d", str(work_dir),
        ])
        assert result.exit_code == 0, result.output
        return out

    def test_valid(self, runner, keypair, envelope_file):
        _, public_key = keypair

        result = runner.invoke(cli, ["verify", "-e", str(envelope_file), "-k", str(public_key)])

        assert result.exit_code == 0
        assert "VALID" in result.output
        assert "Step: build" in result.output
        assert "material, product" in result.output

    def test_wrong_key(self, runner, envelope_file, tmp_path):
        other = tmp_path / "other"
        runner.invoke(cli, ["keygen", "--out-dir", str(other)])

        result = runner.invoke(cli, ["verify", "-e", str(envelope_file), "-k", str(other / "signing.pub")])

        assert result.exit_code == 1
        assert "INVALID" in result.output

    def test_not_an_envelope(self, runner, keypair, tmp_path):
        _, public_key = keypair
        bogus = tmp_path / "bogus.json"
        bogus.write_text("{}")

        result = runner.invoke(cli, ["verify", "-e", str(bogus), "-k", str(public_key)])

        assert result.exit_code == 2

    def test_signature_without_sig(self, runner, keypair, tmp_path):
        _, public_key = keypair
        bogus = tmp_path / "bogus.json"
        bogus.write_text('{"payload": "e30=", "payloadType": "x", "signatures": [{"keyid": "k"}]}')

        result = runner.invoke(cli, ["verify", "-e", str(bogus), "-k", str(public_key)])

        assert result.exit_code == 2
        assert "is missing 'sig'" in result.output


class TestAttestorsCommand:
    """Test the attestors listing."""

    def test_table(self, runner):
        result = runner.invoke(cli, ["attestors"])

        assert result.exit_code == 0
        assert "command-run" in result.output
        assert "environment" in result.output

    def test_json(self, runner):
        result = runner.invoke(cli, ["attestors", "--json"])

        entries = json.loads(result.output)
        assert {e["type"] for e in entries} >= {"material", "product", "command-run", "git"}
