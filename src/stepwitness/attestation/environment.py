"""Environment attestor: host facts and environment variables."""

from __future__ import annotations

import fnmatch
import getpass
import os
import platform
from dataclasses import dataclass
from typing import Any

from stepwitness.attestation.base import AttestationContext, Attestor, RunType
from stepwitness.attestation.registry import register_attestor

REDACTED = "******"

DEFAULT_SENSITIVE_PATTERNS = (
    "*TOKEN*",
    "*SECRET*",
    "*PASSWORD*",
    "*PASSWD*",
    "*KEY*",
    "*CREDENTIAL*",
)


@register_attestor
@dataclass
class Environment(Attestor):
    """Records the OS, host, user and environment variables."""

    type = "environment"
    run_type = RunType.PRE_MATERIAL

    filter_sensitive: bool = True
    sensitive_patterns: tuple[str, ...] = DEFAULT_SENSITIVE_PATTERNS

    def _is_sensitive(self, name: str) -> bool:
        upper = name.upper()
        return any(fnmatch.fnmatchcase(upper, pattern.upper()) for pattern in self.sensitive_patterns)

    def observe(self, ctx: AttestationContext) -> dict[str, Any]:
        try:
            username = getpass.getuser()
        except (KeyError, OSError):
            # No passwd entry and no USER/LOGNAME variables
            username = ""

        variables = {}
        for name, value in sorted(os.environ.items()):
            if self.filter_sensitive and self._is_sensitive(name):
                value = REDACTED
            variables[name] = value

        return {
            "os": platform.system(),
            "release": platform.release(),
            "hostname": platform.node(),
            "username": username,
            "variables": variables,
        }
