"""Shared fixtures for Step Witness tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from stepwitness.config import ENV_ARCHIVISTA_URL, ENV_KEY_PASSWORD, ENV_SIGNING_KEY
from stepwitness.signing.signer import Signer
from stepwitness.timestamp import Timestamper


class FakeTimestamper(Timestamper):
    """In-memory timestamp authority."""

    def __init__(self, url: str, token: bytes = b"token", error: Exception | None = None):
        self._url = url
        self.token = token
        self.error = error
        self.calls: list[bytes] = []

    @property
    def url(self) -> str:
        return self._url

    def timestamp(self, signature: bytes) -> bytes:
        self.calls.append(signature)
        if self.error is not None:
            raise self.error
        return self.token


class FakeArchivista:
    """Records stored envelopes instead of uploading them."""

    def __init__(self, gitoid: str = "gitoid:blob:sha256:abc", error: Exception | None = None):
        self.gitoid = gitoid
        self.error = error
        self.stored = []

    def store(self, envelope):
        self.stored.append(envelope)
        if self.error is not None:
            raise self.error
        return self.gitoid


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host configuration out of the tests."""
    for name in (ENV_SIGNING_KEY, ENV_KEY_PASSWORD, ENV_ARCHIVISTA_URL):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def key_file(tmp_path: Path):
    """Factory writing a PEM private key and returning (path, signer)."""
    counter = {"n": 0}

    def make(private_key=None, password: bytes | None = None) -> tuple[Path, Signer]:
        private_key = private_key or Ed25519PrivateKey.generate()
        if password:
            encryption = serialization.BestAvailableEncryption(password)
        else:
            encryption = serialization.NoEncryption()
        pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=encryption,
        )
        counter["n"] += 1
        keys_dir = tmp_path / "keys"
        keys_dir.mkdir(exist_ok=True)
        path = keys_dir / f"key{counter['n']}.pem"
        path.write_bytes(pem)
        return path, Signer(private_key, source=str(path))

    return make


@pytest.fixture
def signer() -> Signer:
    return Signer.generate()


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    """Working directory with a couple of source files."""
    work = tmp_path / "work"
    (work / "src").mkdir(parents=True)
    (work / "README.md").write_text("# demo\n")
    (work / "src" / "main.c").write_text("int main(void) { return 0; }\n")
    return work


@pytest.fixture
def fake_timestamper():
    return FakeTimestamper


@pytest.fixture
def fake_archivista():
    return FakeArchivista

