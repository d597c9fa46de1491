"""Exceptions raised by synchrony_kit."""


class ConnectivityError(ValueError):
    """Base class for invalid input to the connectivity pipeline."""


class ShapeMismatch(ConnectivityError):
    """Trial, taper or spectrum arrays do not have compatible shapes."""


class InvalidTrialCount(ConnectivityError):
    """Too few trials for the requested estimator."""


class UnrecognizedWindowType(ConnectivityError):
    """Unknown taper / window selector."""
