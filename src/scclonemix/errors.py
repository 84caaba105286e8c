"""Exception and warning types raised by the assignment engine."""

from __future__ import annotations

from typing import Optional


class InvalidInputError(ValueError):
    """Raised when matrices are misshaped, misaligned or hold invalid values.

    Always fatal: callers should fix the inputs rather than retry.
    """


class DegenerateFitError(RuntimeError):
    """Raised when a fit cannot produce a defined likelihood.

    ``guard`` names the check that tripped (e.g. ``"zero_coverage"``), so
    callers can tell an empty resample apart from a numerical collapse.
    """

    def __init__(self, message: str, *, guard: str, detail: Optional[dict] = None) -> None:
        super().__init__(message)
        self.guard = guard
        self.detail = dict(detail or {})


class NonConvergenceWarning(UserWarning):
    """Issued when EM or Gibbs stops before its convergence criterion is met."""
