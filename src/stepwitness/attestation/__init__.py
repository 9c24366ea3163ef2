"""Attestors - evidence collectors that observe a run."""

from __future__ import annotations

from stepwitness.attestation.base import AttestationContext, Attestor, RunType
from stepwitness.attestation.registry import (
    attestors,
    get_attestor,
    list_attestors,
    register_attestor,
)

# Built-in attestors register themselves on import
from stepwitness.attestation.commandrun import CommandRun
from stepwitness.attestation.environment import Environment
from stepwitness.attestation.git import Git
from stepwitness.attestation.material import Material
from stepwitness.attestation.product import Product

__all__ = [
    "AttestationContext",
    "Attestor",
    "RunType",
    "CommandRun",
    "Environment",
    "Git",
    "Material",
    "Product",
    "attestors",
    "get_attestor",
    "list_attestors",
    "register_attestor",
]
