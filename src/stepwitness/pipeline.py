"""Attestation run pipeline.

Stages, strictly in order; a failure at any stage aborts the rest:

1. Resolve exactly one signer
2. Build the attestor set
3. Bind attestor options
4. Run, sign and timestamp (with the output destination held open)
5. Write the envelope to the output
6. Publish to Archivista, when enabled

Only publishing happens after the local artifact is in place, so a
PublishError leaves a complete local envelope behind.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from stepwitness.archivista import ArchivistaClient, publish
from stepwitness.config import RunOptions
from stepwitness.dsse import Envelope
from stepwitness.options import apply_option_setters, build_attestors, setters_from_options
from stepwitness.run import RunOrchestrator, RunResult
from stepwitness.signing.keys import resolve_signer
from stepwitness.sink import OutputSink, write_envelope
from stepwitness.timestamp import HTTPTimestamper, Timestamper

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of a completed pipeline."""
    result: RunResult
    written: bytes
    out_path: Path | None
    gitoid: str | None = None

    @property
    def envelope(self) -> Envelope:
        return self.result.envelope


def run_pipeline(
    options: RunOptions,
    args: list[str] | tuple[str, ...] = (),
    timestampers: list[Timestamper] | None = None,
    archivista_client: ArchivistaClient | None = None,
) -> PipelineResult:
    """Attest one step end to end.

    Args:
        options: Run configuration
        args: Command to run; empty to only snapshot the working directory
        timestampers: Override the timestampers built from the configured URLs
        archivista_client: Override the client built from the configured URL

    Raises:
        StepWitnessError: Any pipeline failure; nothing is retried
    """
    signer = resolve_signer(options.keys)

    attestor_list = build_attestors(args, options.tracing, options.attestations)
    attestor_list = apply_option_setters(attestor_list, setters_from_options(options))
    logger.info("Running step %s with attestors: %s", options.step_name,
                ", ".join(a.type for a in attestor_list))

    if timestampers is None:
        timestampers = [HTTPTimestamper(url) for url in options.timestamp_servers]

    sink = OutputSink(options.out_file_path)
    with sink:
        orchestrator = RunOrchestrator(
            options.step_name,
            signer,
            attestor_list,
            options.resolved_working_dir,
            timestampers=timestampers,
            ignored_paths=sink.local_paths(),
        )
        result = orchestrator.execute()
        written = write_envelope(sink, result.envelope)

    gitoid = publish(options.archivista, result.envelope, archivista_client)
    return PipelineResult(
        result=result,
        written=written,
        out_path=sink.destination,
        gitoid=gitoid,
    )
