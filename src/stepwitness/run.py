"""Run orchestration.

A single pass over a fixed sequence of states:

    START -> MATERIALS_COLLECTED -> COMMAND_EXECUTED (optional)
          -> PRODUCTS_COLLECTED -> ENVELOPE_SIGNED -> TIMESTAMPED (optional)
          -> DONE

Any state may move to FAILED. Each state is entered at most once and
nothing is retried. A RunResult exists only once signing succeeded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from stepwitness.attestation import AttestationContext, Attestor, RunType
from stepwitness.canonical import canonical_bytes
from stepwitness.determinism import stable_timestamp
from stepwitness.dsse import Envelope, sign_envelope
from stepwitness.errors import EnvelopeMarshalError, ObservationError, StepWitnessError
from stepwitness.signing.signer import Signer
from stepwitness.timestamp import Timestamper, timestamp_signatures

logger = logging.getLogger(__name__)

STATEMENT_TYPE = "https://in-toto.io/Statement/v0.1"
COLLECTION_PREDICATE_TYPE = "https://stepwitness.dev/attestation-collection/v0.1"


class RunState(Enum):
    """States of one orchestrated run."""
    START = "start"
    MATERIALS_COLLECTED = "materials_collected"
    COMMAND_EXECUTED = "command_executed"
    PRODUCTS_COLLECTED = "products_collected"
    ENVELOPE_SIGNED = "envelope_signed"
    TIMESTAMPED = "timestamped"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class CollectionEntry:
    """One attestor's claim with its observation window."""
    type: str
    attestation: dict[str, Any]
    starttime: str
    endtime: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "attestation": self.attestation,
            "starttime": self.starttime,
            "endtime": self.endtime,
        }


@dataclass(frozen=True)
class RunResult:
    """Signed outcome of one successful run."""
    envelope: Envelope
    collection: dict[str, Any]
    states: tuple[RunState, ...] = field(default_factory=tuple)

    def claims(self) -> list[dict[str, Any]]:
        """Claims in attestor-list order, as ``{type, attestation}``."""
        return [
            {"type": entry["type"], "attestation": entry["attestation"]}
            for entry in self.collection["attestations"]
        ]


class RunOrchestrator:
    """Drives one signer through exactly one attested execution."""

    def __init__(
        self,
        step_name: str,
        signer: Signer,
        attestors: list[Attestor],
        working_dir: Path,
        timestampers: list[Timestamper] | None = None,
        ignored_paths: set[Path] | frozenset[Path] = frozenset(),
    ):
        self.step_name = step_name
        self.signer = signer
        self.attestors = list(attestors)
        self.working_dir = Path(working_dir)
        self.timestampers = list(timestampers or [])
        self.ignored_paths = frozenset(Path(p).resolve() for p in ignored_paths)
        self.history: list[RunState] = [RunState.START]

    @property
    def state(self) -> RunState:
        return self.history[-1]

    def _advance(self, state: RunState) -> None:
        if state in self.history:
            raise RuntimeError(f"run already passed through state {state.value}")
        logger.debug("Run %s: %s -> %s", self.step_name, self.state.value, state.value)
        self.history.append(state)

    def _observe(self, attestor: Attestor, ctx: AttestationContext) -> CollectionEntry:
        logger.debug("Running attestor %s", attestor.type)
        start = stable_timestamp()
        try:
            claim = attestor.observe(ctx)
        except ObservationError:
            raise
        except Exception as e:
            raise ObservationError(attestor.type, e) from e
        return CollectionEntry(
            type=attestor.type,
            attestation=claim,
            starttime=start,
            endtime=stable_timestamp(),
        )

    def _collect(self, ctx: AttestationContext) -> tuple[list[CollectionEntry], dict[str, dict[str, str]]]:
        """Run every attestor phase by phase, keeping list order within a phase."""
        entries: dict[int, CollectionEntry] = {}
        subjects: dict[str, dict[str, str]] = {}

        def run_phase(run_type: RunType) -> bool:
            ran = False
            for index, attestor in enumerate(self.attestors):
                if attestor.run_type is not run_type:
                    continue
                entry = self._observe(attestor, ctx)
                entries[index] = entry
                subjects.update(attestor.subjects(entry.attestation))
                ran = True
            return ran

        run_phase(RunType.PRE_MATERIAL)
        run_phase(RunType.MATERIAL)
        self._advance(RunState.MATERIALS_COLLECTED)

        if run_phase(RunType.EXECUTE):
            self._advance(RunState.COMMAND_EXECUTED)

        run_phase(RunType.PRODUCT)
        run_phase(RunType.POST_PRODUCT)
        self._advance(RunState.PRODUCTS_COLLECTED)

        return [entries[i] for i in sorted(entries)], subjects

    def _statement(self, entries: list[CollectionEntry], subjects: dict[str, dict[str, str]]) -> dict[str, Any]:
        return {
            "_type": STATEMENT_TYPE,
            "predicateType": COLLECTION_PREDICATE_TYPE,
            "subject": [{"name": name, "digest": subjects[name]} for name in sorted(subjects)],
            "predicate": {
                "name": self.step_name,
                "working_dir": str(self.working_dir),
                "attestations": [entry.to_dict() for entry in entries],
            },
        }

    def execute(self) -> RunResult:
        """Run the attestors, sign the collection and timestamp the signature.

        Raises:
            ObservationError: If any attestor fails
            EnvelopeMarshalError: If the claims cannot be encoded
            SigningError: If signing fails
            TimestampError: If any timestamp authority fails
        """
        if self.state is not RunState.START:
            raise RuntimeError("a run orchestrator can only execute once")

        try:
            ctx = AttestationContext(
                working_dir=self.working_dir,
                step_name=self.step_name,
                ignored_paths=self.ignored_paths,
            )
            entries, subjects = self._collect(ctx)

            try:
                payload = canonical_bytes(self._statement(entries, subjects))
            except (TypeError, ValueError) as e:
                raise EnvelopeMarshalError(f"failed to encode attestation collection: {e}") from e

            envelope = sign_envelope(payload, self.signer)
            self._advance(RunState.ENVELOPE_SIGNED)

            if self.timestampers:
                envelope = timestamp_signatures(envelope, self.timestampers)
                self._advance(RunState.TIMESTAMPED)
        except StepWitnessError:
            self.history.append(RunState.FAILED)
            raise

        self._advance(RunState.DONE)
        logger.info("Step %s attested with %d attestor(s)", self.step_name, len(entries))
        return RunResult(
            envelope=envelope,
            collection=envelope.decoded_payload()["predicate"],
            states=tuple(self.history),
        )


def run(
    step_name: str,
    signer: Signer,
    attestors: list[Attestor],
    working_dir: Path,
    timestampers: list[Timestamper] | None = None,
) -> RunResult:
    """Attest one step. See RunOrchestrator.execute."""
    return RunOrchestrator(step_name, signer, attestors, working_dir, timestampers).execute()
