"""Attestor interface.

An attestor observes one phase of a run and returns a claim: a
JSON-serializable dictionary of evidence. Attestors are dataclasses whose
fields are their configurable options; applying an option returns a new
instance rather than mutating the existing one.
"""

from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any, ClassVar

from stepwitness.errors import AttestorConfigError

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


class RunType(IntEnum):
    """Phase in which an attestor observes the run."""
    PRE_MATERIAL = 0
    MATERIAL = 1
    EXECUTE = 2
    PRODUCT = 3
    POST_PRODUCT = 4


@dataclass
class AttestationContext:
    """Shared state for one run, passed to every attestor.

    Attributes:
        working_dir: Directory the command runs in and snapshots are taken of
        step_name: Name of the step being attested
        materials: File digests recorded before the command ran
        ignored_paths: Absolute paths left out of file snapshots
    """
    working_dir: Path
    step_name: str = ""
    materials: dict[str, dict[str, str]] = field(default_factory=dict)
    ignored_paths: frozenset[Path] = frozenset()


def _coerce(attestor_type: str, name: str, current: Any, value: Any) -> Any:
    """Convert a configured option value to the option's type."""
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        raise AttestorConfigError(attestor_type, f"option {name} expects a boolean, got {value!r}")
    if isinstance(current, int):
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise AttestorConfigError(attestor_type, f"option {name} expects an integer, got {value!r}") from e
    if isinstance(current, tuple):
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        if isinstance(value, (list, tuple)):
            return tuple(str(v) for v in value)
        raise AttestorConfigError(attestor_type, f"option {name} expects a list, got {value!r}")
    if isinstance(current, str):
        return str(value)
    return value


class Attestor(ABC):
    """Evidence collector.

    Subclasses are dataclasses and declare:
        type: Stable identifier used for option binding and in claims
        run_type: Phase of the run this attestor observes
    """

    type: ClassVar[str]
    run_type: ClassVar[RunType]

    @abstractmethod
    def observe(self, ctx: AttestationContext) -> dict[str, Any]:
        """Observe the run and return a claim.

        Raises:
            ObservationError: If evidence cannot be collected
        """
        pass

    def subjects(self, claim: dict[str, Any]) -> dict[str, dict[str, str]]:
        """Artifacts this claim is about, as ``name -> {algorithm: digest}``."""
        return {}

    @classmethod
    def option_names(cls) -> list[str]:
        """Names of the options this attestor accepts."""
        return [f.name for f in dataclasses.fields(cls) if f.init]  # type: ignore[arg-type]

    def options(self) -> dict[str, Any]:
        """Current option values."""
        return {name: getattr(self, name) for name in self.option_names()}

    def with_option(self, name: str, value: Any) -> Attestor:
        """Return a copy of this attestor with one option changed.

        Raises:
            AttestorConfigError: If the option is unknown or the value invalid
        """
        if name not in self.option_names():
            known = ", ".join(self.option_names()) or "none"
            raise AttestorConfigError(self.type, f"unknown option {name!r} (known: {known})")
        coerced = _coerce(self.type, name, getattr(self, name), value)
        return dataclasses.replace(self, **{name: coerced})  # type: ignore[type-var]
