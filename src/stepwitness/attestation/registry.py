"""Attestor registry.

Attestor classes register themselves by type when their module is
imported; ``stepwitness.attestation`` imports every built-in module, so
the table is complete once the package is loaded.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from stepwitness.errors import UnknownAttestorError

if TYPE_CHECKING:
    from stepwitness.attestation.base import Attestor

_REGISTRY: dict[str, type[Attestor]] = {}


def register_attestor(cls: type[Attestor]) -> type[Attestor]:
    """Class decorator adding an attestor to the registry.

    Raises:
        ValueError: If another class already registered the same type
    """
    existing = _REGISTRY.get(cls.type)
    if existing is not None and existing is not cls:
        raise ValueError(f"attestor type {cls.type!r} already registered by {existing.__name__}")
    _REGISTRY[cls.type] = cls
    return cls


def get_attestor(name: str) -> Attestor:
    """Create a fresh attestor instance by type name.

    Raises:
        UnknownAttestorError: If no attestor is registered under name
    """
    attestor_class = _REGISTRY.get(name)
    if attestor_class is None:
        raise UnknownAttestorError(name)
    return attestor_class()


def attestors(names: list[str] | tuple[str, ...]) -> list[Attestor]:
    """Create attestors for every requested name, in order.

    Every name is resolved before any instance is returned, so an unknown
    name fails the whole request.
    """
    return [get_attestor(name) for name in names]


def list_attestors() -> list[dict[str, object]]:
    """Describe every registered attestor.

    Returns:
        List of dicts with type, run_type and option names
    """
    result = []
    for name in sorted(_REGISTRY):
        attestor_class = _REGISTRY[name]
        result.append({
            "type": name,
            "run_type": attestor_class.run_type.name.lower(),
            "options": attestor_class.option_names(),
        })
    return result
