"""Run configuration.

A RunOptions value is built once per invocation and passed into every
pipeline stage. Sources, lowest precedence first:
- YAML file (``--config``)
- Environment variables
- CLI flags

Example YAML:

    step: build
    outfile: build.attestation.json
    workingdir: .
    key:
      - ./signing.key
    timestamp-servers:
      - https://freetsa.org/tsr
    trace: false
    attestations:
      - environment
      - git
    attestor-options:
      command-run:
        silent: true
    archivista:
      enable: true
      url: https://archivista.example.com
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

ENV_SIGNING_KEY = "STEPWITNESS_SIGNING_PRIVATE_KEY"
ENV_KEY_PASSWORD = "STEPWITNESS_KEY_PASSWORD"
ENV_ARCHIVISTA_URL = "STEPWITNESS_ARCHIVISTA_URL"

DEFAULT_ARCHIVISTA_URL = "https://archivista.testifysec.io"


def _as_tuple(value: Any) -> tuple[str, ...]:
    """A config list value; a lone scalar counts as one item."""
    if not value:
        return ()
    if isinstance(value, (str, int, float)):
        return (str(value),)
    return tuple(str(item) for item in value)


@dataclass(frozen=True)
class KeyOptions:
    """Signing key sources.

    Every configured source produces exactly one signer or one error.
    """
    key_paths: tuple[str, ...] = ()
    use_env_key: bool = False
    key_password: str | None = None

    def source_count(self) -> int:
        """Number of configured key sources."""
        return len(self.key_paths) + (1 if self.use_env_key else 0)


@dataclass(frozen=True)
class ArchivistaOptions:
    """Remote content-addressed store settings."""
    enable: bool = False
    url: str = DEFAULT_ARCHIVISTA_URL

    def __post_init__(self):
        if not self.enable:
            return
        if not self.url:
            raise ValueError("archivista url is required when archivista is enabled")
        if not self.url.startswith(("http://", "https://")):
            raise ValueError(f"archivista url must be an http(s) url, got {self.url!r}")


@dataclass(frozen=True)
class RunOptions:
    """Immutable configuration for one attestation run."""

    step_name: str = ""
    working_dir: str = ""
    out_file_path: str = ""
    keys: KeyOptions = field(default_factory=KeyOptions)
    timestamp_servers: tuple[str, ...] = ()
    tracing: bool = False
    attestations: tuple[str, ...] = ()
    # attestor type -> ((option, value), ...) in declaration order
    attestor_options: tuple[tuple[str, tuple[tuple[str, Any], ...]], ...] = ()
    archivista: ArchivistaOptions = field(default_factory=ArchivistaOptions)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.step_name:
            raise ValueError("step name is required")
        for url in self.timestamp_servers:
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"timestamp server must be an http(s) url, got {url!r}")

    @property
    def resolved_working_dir(self) -> Path:
        """Working directory, defaulting to the current directory."""
        return Path(self.working_dir or os.getcwd()).resolve()

    def options_for(self, attestor_type: str) -> list[tuple[str, Any]]:
        """Configured (option, value) pairs for one attestor type."""
        for name, pairs in self.attestor_options:
            if name == attestor_type:
                return list(pairs)
        return []

    @staticmethod
    def parse_attestor_option(spec: str) -> tuple[str, str, str]:
        """Parse a ``type.option=value`` flag.

        The attestor type may itself contain dots, so the option name is
        taken from the last dot before ``=``.
        """
        key, sep, value = spec.partition("=")
        attestor_type, dot, option = key.rpartition(".")
        if not sep or not dot or not attestor_type or not option:
            raise ValueError(f"attestor option must look like type.option=value, got {spec!r}")
        return attestor_type.strip(), option.strip(), value

    @staticmethod
    def merge_attestor_options(
        base: dict[str, dict[str, Any]],
        flags: list[str] | tuple[str, ...],
    ) -> tuple[tuple[str, tuple[tuple[str, Any], ...]], ...]:
        """Combine option mappings from a config file with CLI flags."""
        merged: dict[str, list[tuple[str, Any]]] = {}
        for attestor_type, options in base.items():
            if not isinstance(options, dict):
                raise ValueError(f"options for attestor {attestor_type!r} must be a mapping")
            merged.setdefault(attestor_type, []).extend(options.items())
        for spec in flags:
            attestor_type, option, value = RunOptions.parse_attestor_option(spec)
            merged.setdefault(attestor_type, []).append((option, value))
        return tuple((name, tuple(pairs)) for name, pairs in merged.items())

    @classmethod
    def from_dict(cls, data: dict[str, Any], overrides: dict[str, Any] | None = None) -> RunOptions:
        """Create from a dictionary in config-file shape.

        Args:
            data: Parsed config file content
            overrides: Non-empty CLI values, keyed like ``data``
        """
        merged = dict(data)
        for key, value in (overrides or {}).items():
            if value not in (None, (), [], ""):
                merged[key] = value

        key_options = KeyOptions(
            key_paths=_as_tuple(merged.get("key")),
            use_env_key=bool(merged.get("env-key", False)),
            key_password=os.getenv(ENV_KEY_PASSWORD) or merged.get("key-password"),
        )

        archivista_data = merged.get("archivista") or {}
        archivista = ArchivistaOptions(
            enable=bool(merged.get("enable-archivista", archivista_data.get("enable", False))),
            url=(
                merged.get("archivista-server")
                or archivista_data.get("url")
                or os.getenv(ENV_ARCHIVISTA_URL)
                or DEFAULT_ARCHIVISTA_URL
            ),
        )

        return cls(
            step_name=str(merged.get("step", "")),
            working_dir=str(merged.get("workingdir", "") or ""),
            out_file_path=str(merged.get("outfile", "") or ""),
            keys=key_options,
            timestamp_servers=_as_tuple(merged.get("timestamp-servers")),
            tracing=bool(merged.get("trace", False)),
            attestations=_as_tuple(merged.get("attestations")),
            attestor_options=cls.merge_attestor_options(
                merged.get("attestor-options") or {},
                _as_tuple(merged.get("attestor-option")),
            ),
            archivista=archivista,
        )

    @classmethod
    def from_yaml(cls, path: Path, overrides: dict[str, Any] | None = None) -> RunOptions:
        """Load options from a YAML file."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Invalid config format in {path}")
        return cls.from_dict(data, overrides)
