"""End-to-end tests for the attestation pipeline."""

from __future__ import annotations

import sys

import pytest

from stepwitness.config import RunOptions
from stepwitness.determinism import determinism_mode
from stepwitness.dsse import Envelope, verify_envelope
from stepwitness.errors import (
    AmbiguousSignerError,
    AttestorConfigError,
    NoSignerError,
    ObservationError,
    PublishError,
    SignerLoadError,
    TimestampError,
    UnknownAttestorError,
)
from stepwitness.pipeline import run_pipeline
from stepwitness.run import RunState
from stepwitness.sink import marshal_envelope


@pytest.fixture
def out_file(tmp_path):
    return tmp_path / "build.att.json"


def make_options(work_dir, out_file, keys, **extra) -> RunOptions:
    data = {
        "step": "build",
        "workingdir": str(work_dir),
        "outfile": str(out_file),
        "key": [str(k) for k in keys],
    }
    data.update(extra)
    return RunOptions.from_dict(data)


class TestSuccessfulRuns:
    """Test complete runs."""

    def test_attest_without_command(self, work_dir, out_file, key_file):
        key, signer = key_file()

        outcome = run_pipeline(make_options(work_dir, out_file, [key]))

        claims = outcome.result.claims()
        assert [c["type"] for c in claims] == ["material", "product"]
        assert set(claims[0]["attestation"]["files"]) == {"README.md", "src/main.c"}
        assert claims[1]["attestation"]["files"] == {}
        assert RunState.COMMAND_EXECUTED not in outcome.result.states
        assert outcome.out_path == out_file
        assert outcome.gitoid is None

        envelope = Envelope.from_json(out_file.read_bytes())
        assert verify_envelope(envelope, [signer.verifier()]) == [signer.key_id]
        assert envelope.decoded_payload()["predicate"]["name"] == "build"

    def test_attest_command(self, work_dir, out_file, key_file):
        key, _ = key_file()
        options = make_options(
            work_dir, out_file, [key],
            **{"attestor-options": {"command-run": {"silent": True}}},
        )

        outcome = run_pipeline(options, [sys.executable, "-c", "open('app.bin', 'wb').write(b'x')"])

        claims = {c["type"]: c["attestation"] for c in outcome.result.claims()}
        assert [c["type"] for c in outcome.result.claims()] == ["material", "product", "command-run"]
        assert list(claims["product"]["files"]) == ["app.bin"]
        assert claims["command-run"]["exitcode"] == 0

        statement = outcome.envelope.decoded_payload()
        assert [s["name"] for s in statement["subject"]] == ["file:app.bin"]

    def test_written_bytes_match_file(self, work_dir, out_file, key_file):
        key, _ = key_file()
        outcome = run_pipeline(make_options(work_dir, out_file, [key]))

        assert out_file.read_bytes() == outcome.written
        assert outcome.written == marshal_envelope(outcome.envelope)

    def test_outfile_inside_working_dir_is_not_attested(self, work_dir, key_file):
        key, _ = key_file()
        out_file = work_dir / "build.att.json"
        out_file.write_text("stale")

        outcome = run_pipeline(make_options(work_dir, out_file, [key]))

        claims = outcome.result.claims()
        assert "build.att.json" not in claims[0]["attestation"]["files"]
        assert claims[1]["attestation"]["files"] == {}

    def test_pluggable_attestors(self, work_dir, out_file, key_file):
        key, _ = key_file()
        options = make_options(work_dir, out_file, [key], attestations=["environment"])

        outcome = run_pipeline(options)

        assert [c["type"] for c in outcome.result.claims()] == ["material", "product", "environment"]

    def test_timestamps(self, work_dir, out_file, key_file, fake_timestamper):
        key, _ = key_file()
        tsa = fake_timestamper("https://tsa.example.com", token=b"tst")

        outcome = run_pipeline(make_options(work_dir, out_file, [key]), timestampers=[tsa])

        envelope = Envelope.from_json(out_file.read_bytes())
        assert envelope.signatures[0].timestamps[0].data == b"tst"
        assert RunState.TIMESTAMPED in outcome.result.states

    def test_idempotent_under_determinism(self, work_dir, tmp_path, key_file):
        key, _ = key_file()
        first_out = tmp_path / "first.json"
        second_out = tmp_path / "second.json"

        with determinism_mode():
            run_pipeline(make_options(work_dir, first_out, [key]))
            run_pipeline(make_options(work_dir, second_out, [key]))

        assert first_out.read_bytes() == second_out.read_bytes()


class TestAbortBeforeOutput:
    """Test failures that must leave no output file."""

    def test_two_keys(self, work_dir, out_file, key_file):
        key1, _ = key_file()
        key2, _ = key_file()

        with pytest.raises(AmbiguousSignerError, match="only one signer is supported"):
            run_pipeline(make_options(work_dir, out_file, [key1, key2]))
        assert not out_file.exists()

    def test_no_keys(self, work_dir, out_file):
        with pytest.raises(NoSignerError):
            run_pipeline(make_options(work_dir, out_file, []))
        assert not out_file.exists()

    def test_unloadable_key(self, work_dir, out_file, tmp_path):
        with pytest.raises(SignerLoadError):
            run_pipeline(make_options(work_dir, out_file, [tmp_path / "missing.pem"]))
        assert not out_file.exists()

    def test_unknown_attestor(self, work_dir, out_file, key_file):
        key, _ = key_file()
        with pytest.raises(UnknownAttestorError):
            run_pipeline(make_options(work_dir, out_file, [key], attestations=["nope"]))
        assert not out_file.exists()

    def test_bad_attestor_option(self, work_dir, out_file, key_file):
        key, _ = key_file()
        options = make_options(work_dir, out_file, [key], **{"attestor-options": {"material": {"nope": 1}}})

        with pytest.raises(AttestorConfigError):
            run_pipeline(options)
        assert not out_file.exists()

    def test_command_failure(self, work_dir, out_file, key_file):
        key, _ = key_file()
        options = make_options(work_dir, out_file, [key], **{"attestor-options": {"command-run": {"silent": True}}})

        with pytest.raises(ObservationError):
            run_pipeline(options, [sys.executable, "-c", "raise SystemExit(2)"])
        assert not out_file.exists()
        assert list(out_file.parent.glob(".*.partial")) == []

    def test_timestamp_failure(self, work_dir, out_file, key_file, fake_timestamper):
        key, _ = key_file()
        tsa = fake_timestamper("https://tsa", error=TimestampError("https://tsa", "down"))

        with pytest.raises(TimestampError):
            run_pipeline(make_options(work_dir, out_file, [key]), timestampers=[tsa])
        assert not out_file.exists()

    def test_failure_keeps_previous_artifact(self, work_dir, out_file, key_file):
        key1, _ = key_file()
        key2, _ = key_file()
        out_file.write_bytes(b"previous run")

        with pytest.raises(AmbiguousSignerError):
            run_pipeline(make_options(work_dir, out_file, [key1, key2]))
        assert out_file.read_bytes() == b"previous run"


class TestPublishing:
    """Test Archivista publishing after the local write."""

    def test_publish(self, work_dir, out_file, key_file, fake_archivista):
        key, _ = key_file()
        client = fake_archivista(gitoid="gitoid:blob:sha256:123")
        options = make_options(work_dir, out_file, [key], archivista={"enable": True})

        outcome = run_pipeline(options, archivista_client=client)

        assert outcome.gitoid == "gitoid:blob:sha256:123"
        assert client.stored == [outcome.envelope]

    def test_publish_failure_keeps_local_artifact(self, work_dir, out_file, key_file, fake_archivista):
        key, _ = key_file()
        client = fake_archivista(error=PublishError("archivista unavailable"))
        options = make_options(work_dir, out_file, [key], archivista={"enable": True})

        with pytest.raises(PublishError):
            run_pipeline(options, archivista_client=client)

        assert out_file.exists()
        assert out_file.read_bytes() == marshal_envelope(client.stored[0])

    def test_publish_disabled(self, work_dir, out_file, key_file, fake_archivista):
        key, _ = key_file()
        client = fake_archivista()

        outcome = run_pipeline(make_options(work_dir, out_file, [key]), archivista_client=client)

        assert outcome.gitoid is None
        assert client.stored == []
