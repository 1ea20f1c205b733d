from __future__ import annotations

"""Exception taxonomy shared by services and routers.

Routers translate these into HTTP responses; services raise them and never
return sentinel values for failures.
"""


class ReportWizardError(Exception):
    """Base class for expected, user-facing failures."""

    status_code = 500


class InputError(ReportWizardError):
    """A required input is missing or invalid; rejected before any external call."""

    status_code = 400


class UnknownStepError(ReportWizardError):
    status_code = 400

    def __init__(self, step: str) -> None:
        super().__init__(f"Unknown step: {step}")
        self.step = step


class InvalidTransitionError(ReportWizardError):
    """The pipeline cannot perform the requested transition from its current phase."""

    status_code = 409


class UpstreamError(ReportWizardError):
    """An external API call failed (network error, non-2xx, malformed payload)."""

    status_code = 502


class ShapeValidationError(UpstreamError):
    """A response arrived but does not match the expected shape contract."""


class CRMAuthError(UpstreamError):
    status_code = 401
