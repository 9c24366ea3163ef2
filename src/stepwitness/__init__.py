"""Step Witness - signed provenance records for build and deploy steps."""

from __future__ import annotations

__version__ = "0.3.0"

from stepwitness.errors import StepWitnessError

__all__ = ["__version__", "StepWitnessError"]
