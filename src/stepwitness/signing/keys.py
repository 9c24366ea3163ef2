"""Signer resolution.

Turns key configuration into signing identities. Each configured key
source yields either a Signer or an error; the resolver then enforces
that exactly one signer is available for the run.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from stepwitness.config import ENV_SIGNING_KEY, KeyOptions
from stepwitness.errors import (
    AmbiguousSignerError,
    NoSignerError,
    SignerLoadError,
    SigningError,
)
from stepwitness.signing.signer import Signer

logger = logging.getLogger(__name__)


def load_key_file(path: Path, password: str | None = None) -> Signer:
    """Load a signer from a PEM private key file.

    Raises:
        SigningError: If the file is missing, unreadable or not a supported key
    """
    try:
        data = path.read_bytes()
    except OSError as e:
        raise SigningError(f"failed to read key file {path}: {e}") from e

    try:
        private_key = serialization.load_pem_private_key(
            data,
            password=password.encode("utf-8") if password else None,
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise SigningError(f"failed to parse key file {path}: {e}") from e

    return Signer(private_key, source=str(path))


def load_env_key() -> Signer:
    """Load a signer from a base64 raw Ed25519 seed in the environment.

    Raises:
        SigningError: If the variable is unset or malformed
    """
    value = os.environ.get(ENV_SIGNING_KEY)
    if not value:
        raise SigningError(f"{ENV_SIGNING_KEY} is not set")

    try:
        seed = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise SigningError(f"Invalid base64 in {ENV_SIGNING_KEY}") from e

    if len(seed) != 32:
        raise SigningError(f"{ENV_SIGNING_KEY} must decode to 32 bytes, got {len(seed)}")

    return Signer(Ed25519PrivateKey.from_private_bytes(seed), source=f"env:{ENV_SIGNING_KEY}")


def load_signers(options: KeyOptions) -> tuple[list[Signer], list[Exception]]:
    """Load every configured key source.

    Returns:
        Tuple of (signers, errors). Sources are attempted independently so
        that all misconfigured sources are reported together.
    """
    signers: list[Signer] = []
    errors: list[Exception] = []

    for key_path in options.key_paths:
        try:
            signers.append(load_key_file(Path(key_path), options.key_password))
        except SigningError as e:
            errors.append(e)

    if options.use_env_key:
        try:
            signers.append(load_env_key())
        except SigningError as e:
            errors.append(e)

    return signers, errors


def resolve_signer(options: KeyOptions) -> Signer:
    """Resolve exactly one signer from the key configuration.

    Raises:
        SignerLoadError: If any key source failed to load
        AmbiguousSignerError: If more than one signer loaded
        NoSignerError: If no signer loaded
    """
    logger.debug("Loading signers from %d key source(s)", options.source_count())
    signers, errors = load_signers(options)

    if errors:
        for err in errors:
            logger.error("%s", err)
        raise SignerLoadError(errors)

    if len(signers) > 1:
        logger.error("only one signer is supported")
        raise AmbiguousSignerError(len(signers))

    if not signers:
        logger.error("no signers found")
        raise NoSignerError()

    signer = signers[0]
    logger.info("Using signer %s (%s)", signer.key_id[:16], signer.algorithm)
    return signer
