"""Material attestor: file-system state before the command runs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from stepwitness.attestation.base import AttestationContext, Attestor, RunType
from stepwitness.attestation.files import FileTooLargeError, snapshot
from stepwitness.attestation.registry import register_attestor
from stepwitness.errors import ObservationError


@register_attestor
@dataclass
class Material(Attestor):
    """Records the digest of every file in the working directory."""

    type = "material"
    run_type = RunType.MATERIAL

    include_glob: str = "*"
    exclude_glob: str = ""
    max_file_size: int = 0

    def observe(self, ctx: AttestationContext) -> dict[str, Any]:
        try:
            materials = snapshot(
                ctx.working_dir,
                self.include_glob,
                self.exclude_glob,
                self.max_file_size,
                ignored_paths=ctx.ignored_paths,
            )
        except (OSError, FileTooLargeError) as e:
            raise ObservationError(self.type, e) from e
        ctx.materials = materials
        return {"files": materials}
