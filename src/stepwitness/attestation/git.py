"""Git attestor: commit state of the working directory."""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import Any

from stepwitness.attestation.base import AttestationContext, Attestor, RunType
from stepwitness.attestation.registry import register_attestor
from stepwitness.errors import ObservationError

GIT_TIMEOUT = 30  # seconds


@register_attestor
@dataclass
class Git(Attestor):
    """Records HEAD commit, branch and uncommitted changes."""

    type = "git"
    run_type = RunType.PRE_MATERIAL

    executable: str = "git"

    def _git(self, ctx: AttestationContext, *args: str) -> str:
        try:
            result = subprocess.run(
                [self.executable, *args],
                cwd=ctx.working_dir,
                capture_output=True,
                text=True,
                timeout=GIT_TIMEOUT,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise ObservationError(self.type, e) from e
        if result.returncode != 0:
            raise ObservationError(self.type, result.stderr.strip() or f"git {args[0]} failed")
        return result.stdout

    def observe(self, ctx: AttestationContext) -> dict[str, Any]:
        commit = self._git(ctx, "rev-parse", "HEAD").strip()
        branch = self._git(ctx, "rev-parse", "--abbrev-ref", "HEAD").strip()
        status = [line for line in self._git(ctx, "status", "--porcelain").splitlines() if line]
        return {
            "commit_hash": commit,
            "branch": branch,
            "dirty": bool(status),
            "status": status,
        }
