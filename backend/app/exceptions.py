"""Errors raised by the scheduling and amortization helpers."""


class SchedulingError(Exception):
    """Base class for scheduling errors."""

    pass


class NonConvergentAmortizationError(SchedulingError, ValueError):
    """The installment never pays the balance down."""

    pass


class InvalidFrequencyError(SchedulingError, ValueError):
    """A recurrence frequency could not be recognised."""

    pass
