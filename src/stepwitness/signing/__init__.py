"""Signing identities and the signer resolver."""

from __future__ import annotations

from stepwitness.signing.keys import load_signers, resolve_signer
from stepwitness.signing.signer import Signer, Verifier

__all__ = [
    "Signer",
    "Verifier",
    "load_signers",
    "resolve_signer",
]
