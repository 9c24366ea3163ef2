"""Attestor set construction and option binding.

Option setters are plain functions ``Attestor -> Attestor`` keyed by
attestor type. For every attestor in the set, the setters registered for
its type are applied in registration order, each receiving the previous
setter's result.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from stepwitness.attestation import Attestor, CommandRun, Material, Product, attestors
from stepwitness.config import RunOptions
from stepwitness.errors import AttestorConfigError, DuplicateAttestorError

logger = logging.getLogger(__name__)

OptionSetter = Callable[[Attestor], Attestor]


def build_attestors(
    args: list[str] | tuple[str, ...],
    tracing: bool,
    names: list[str] | tuple[str, ...],
) -> list[Attestor]:
    """Compose the ordered attestor list for one run.

    Order: material, product, command-run (only when args are given),
    then pluggable attestors in the order requested.

    Raises:
        UnknownAttestorError: If a requested name is not registered
        DuplicateAttestorError: If two attestors share a type
    """
    result: list[Attestor] = [Material(), Product()]
    if args:
        result.append(CommandRun(command=tuple(args), tracing=tracing))

    result.extend(attestors(names))

    seen: set[str] = set()
    for attestor in result:
        if attestor.type in seen:
            raise DuplicateAttestorError(attestor.type)
        seen.add(attestor.type)

    logger.debug("Attestors: %s", ", ".join(a.type for a in result))
    return result


def option_setter(name: str, value: Any) -> OptionSetter:
    """Setter that changes one named option."""

    def setter(attestor: Attestor) -> Attestor:
        return attestor.with_option(name, value)

    setter.__name__ = f"set_{name}"
    return setter


def setters_from_options(options: RunOptions) -> dict[str, list[OptionSetter]]:
    """Build the setter mapping from configured attestor options."""
    setters: dict[str, list[OptionSetter]] = {}
    for attestor_type, pairs in options.attestor_options:
        for name, value in pairs:
            setters.setdefault(attestor_type, []).append(option_setter(name, value))
    return setters


def apply_option_setters(
    attestor_list: list[Attestor],
    setters: dict[str, list[OptionSetter]],
) -> list[Attestor]:
    """Apply every bound setter to its attestors.

    Returns:
        New list with configured attestors in the same positions

    Raises:
        AttestorConfigError: If any setter fails; no attestor should run
    """
    present = {a.type for a in attestor_list}
    for attestor_type in setters:
        if attestor_type not in present:
            logger.warning("Options given for attestor %s, which is not part of this run", attestor_type)

    configured: list[Attestor] = []
    for attestor in attestor_list:
        attestor_type = attestor.type
        for setter in setters.get(attestor_type, []):
            try:
                attestor = setter(attestor)
            except AttestorConfigError:
                raise
            except Exception as e:
                raise AttestorConfigError(attestor_type, e) from e

            if not isinstance(attestor, Attestor) or attestor.type != attestor_type:
                raise AttestorConfigError(attestor_type, "option setter returned a different attestor type")
        configured.append(attestor)

    return configured
