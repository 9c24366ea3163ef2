"""Tests for the envelope output sink."""

from __future__ import annotations

import errno
import os

import pytest

from stepwitness.dsse import sign_envelope
from stepwitness.errors import SinkWriteError
from stepwitness.sink import OutputSink, marshal_envelope, write_envelope


def partial_of(path):
    return path.with_name(f".{path.name}.partial")


class TestOutputSink:
    """Test atomic file output."""

    def test_write_commits_on_success(self, tmp_path):
        out = tmp_path / "build.att.json"

        with OutputSink(out) as sink:
            sink.write(b"envelope")
            assert not out.exists()
            assert partial_of(out).exists()

        assert out.read_bytes() == b"envelope"
        assert not partial_of(out).exists()
        assert sink.written

    def test_failure_leaves_no_file(self, tmp_path):
        out = tmp_path / "build.att.json"

        with pytest.raises(RuntimeError):
            with OutputSink(out):
                raise RuntimeError("run failed")

        assert not out.exists()
        assert not partial_of(out).exists()

    def test_failure_after_write_discards_data(self, tmp_path):
        out = tmp_path / "build.att.json"

        with pytest.raises(RuntimeError):
            with OutputSink(out) as sink:
                sink.write(b"envelope")
                raise RuntimeError("late failure")

        assert not out.exists()
        assert not partial_of(out).exists()

    def test_failure_keeps_previous_file(self, tmp_path):
        out = tmp_path / "build.att.json"
        out.write_bytes(b"previous")

        with pytest.raises(RuntimeError):
            with OutputSink(out):
                raise RuntimeError("run failed")

        assert out.read_bytes() == b"previous"

    def test_nothing_written_leaves_no_file(self, tmp_path):
        out = tmp_path / "build.att.json"
        with OutputSink(out):
            pass
        assert not out.exists()

    def test_write_once(self, tmp_path):
        with OutputSink(tmp_path / "out.json") as sink:
            sink.write(b"one")
            with pytest.raises(SinkWriteError, match="already been written"):
                sink.write(b"two")

    def test_write_before_open(self, tmp_path):
        with pytest.raises(SinkWriteError, match="not open"):
            OutputSink(tmp_path / "out.json").write(b"data")

    def test_open_once(self, tmp_path):
        sink = OutputSink(tmp_path / "out.json").open()
        with pytest.raises(SinkWriteError):
            sink.open()
        sink.close(commit=False)

    def test_close_is_idempotent(self, tmp_path):
        out = tmp_path / "out.json"
        sink = OutputSink(out).open()
        sink.write(b"data")
        sink.close()
        sink.close()

        assert out.read_bytes() == b"data"

    def test_unwritable_destination(self, tmp_path):
        with pytest.raises(SinkWriteError, match="failed to open out file"):
            OutputSink(tmp_path / "missing" / "out.json").open()

    def test_disk_full_during_write(self, tmp_path, monkeypatch):
        def no_space(fd):
            raise OSError(errno.ENOSPC, "No space left on device")

        monkeypatch.setattr(os, "fsync", no_space)
        out = tmp_path / "build.att.json"

        with pytest.raises(SinkWriteError, match="failed to write envelope"):
            with OutputSink(out) as sink:
                sink.write(b"envelope")

        assert not sink.written
        assert not out.exists()
        assert not partial_of(out).exists()

    def test_local_paths(self, tmp_path):
        out = tmp_path / "out.json"
        assert OutputSink(out).local_paths() == {out.resolve(), partial_of(out).resolve()}
        assert OutputSink("-").local_paths() == set()


class TestStdoutSink:
    """Test standard output destinations."""

    @pytest.mark.parametrize("path", ["", "-", None])
    def test_is_stdout(self, path):
        sink = OutputSink(path)
        assert sink.is_stdout
        assert sink.destination is None

    def test_writes_to_stdout(self, capsysbinary):
        with OutputSink("-") as sink:
            sink.write(b'{"payload":""}')

        assert capsysbinary.readouterr().out == b'{"payload":""}'


class TestWriteEnvelope:
    """Test envelope serialization to a sink."""

    def test_written_bytes_match_marshal(self, tmp_path, signer):
        envelope = sign_envelope(b"{}", signer)
        out = tmp_path / "out.json"

        with OutputSink(out) as sink:
            written = write_envelope(sink, envelope)

        assert written == marshal_envelope(envelope)
        assert out.read_bytes() == written
