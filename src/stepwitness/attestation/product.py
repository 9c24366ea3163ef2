"""Product attestor: files created or changed by the command."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from stepwitness.attestation.base import AttestationContext, Attestor, RunType
from stepwitness.attestation.files import FileTooLargeError, snapshot
from stepwitness.attestation.registry import register_attestor
from stepwitness.errors import ObservationError


@register_attestor
@dataclass
class Product(Attestor):
    """Records files that are new or whose digest differs from the materials.

    Product files become the subjects of the signed statement.
    """

    type = "product"
    run_type = RunType.PRODUCT

    include_glob: str = "*"
    exclude_glob: str = ""
    max_file_size: int = 0

    def observe(self, ctx: AttestationContext) -> dict[str, Any]:
        try:
            current = snapshot(
                ctx.working_dir,
                self.include_glob,
                self.exclude_glob,
                self.max_file_size,
                ignored_paths=ctx.ignored_paths,
            )
        except (OSError, FileTooLargeError) as e:
            raise ObservationError(self.type, e) from e

        products = {
            path: digest
            for path, digest in current.items()
            if ctx.materials.get(path) != digest
        }
        return {"files": products}

    def subjects(self, claim: dict[str, Any]) -> dict[str, dict[str, str]]:
        return {f"file:{path}": dict(digest) for path, digest in claim.get("files", {}).items()}
