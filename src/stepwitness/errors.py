"""Error taxonomy for the attestation run pipeline.

Every error is terminal for the current invocation. None of them are
retried automatically.
"""

from __future__ import annotations


class StepWitnessError(Exception):
    """Base class for all pipeline errors."""
    pass


class SignerLoadError(StepWitnessError):
    """One or more configured key sources could not be loaded."""

    def __init__(self, errors: list[Exception]):
        self.errors = list(errors)
        details = "; ".join(str(e) for e in self.errors)
        super().__init__(f"failed to load signers: {details}")


class AmbiguousSignerError(StepWitnessError):
    """More than one signer resolved from the key configuration."""

    def __init__(self, count: int):
        self.count = count
        super().__init__(f"only one signer is supported (found {count})")


class NoSignerError(StepWitnessError):
    """No signer resolved from the key configuration."""

    def __init__(self) -> None:
        super().__init__("no signers found")


class UnknownAttestorError(StepWitnessError):
    """A requested attestor name is not registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"unknown attestor: {name}")


class AttestorConfigError(StepWitnessError):
    """Applying configuration to an attestor failed."""

    def __init__(self, attestor_type: str, cause: str | Exception):
        self.attestor_type = attestor_type
        self.cause = cause
        super().__init__(f"failed to set attestor option for {attestor_type}: {cause}")


class DuplicateAttestorError(AttestorConfigError):
    """Two attestors of the same type were requested for one run."""

    def __init__(self, attestor_type: str):
        super().__init__(attestor_type, "attestor type requested more than once")


class ObservationError(StepWitnessError):
    """An attestor failed while observing the run."""

    def __init__(self, attestor_type: str, cause: str | Exception):
        self.attestor_type = attestor_type
        self.cause = cause
        super().__init__(f"attestor {attestor_type} failed: {cause}")


class SigningError(StepWitnessError):
    """The signer could not produce a signature."""
    pass


class VerificationError(StepWitnessError):
    """An envelope signature could not be verified."""
    pass


class TimestampError(StepWitnessError):
    """A timestamp authority failed to countersign."""

    def __init__(self, url: str, cause: str | Exception):
        self.url = url
        self.cause = cause
        super().__init__(f"timestamp authority {url} failed: {cause}")


class EnvelopeMarshalError(StepWitnessError):
    """The signed envelope could not be serialized."""
    pass


class SinkWriteError(StepWitnessError):
    """The serialized envelope could not be written to the output."""
    pass


class PublishError(StepWitnessError):
    """The envelope could not be stored in the remote store.

    The local artifact has already been written when this is raised.
    """
    pass
