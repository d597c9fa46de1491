__version__ = "1.0.0"

import logging

from .errors import ConnectivityError, ShapeMismatch, InvalidTrialCount, UnrecognizedWindowType
from .spectral import WindowType, generate_tapers, compute_tapered_spectra, csd_from_tapered_spectra
from .network import Network, NetworkNode, NetworkEdge
from .connectivity_analyzer import (ConnectivityAnalyzer, compute_pli,
                                    compute_unbiased_squared_pli, build_network)
from .epochs import trials_from_epochs

def set_log_level(level='INFO'):
    """
    Set logging level for synchrony_kit package.

    Parameters:
    -----------
    level : str or int
        Logging level. Can be:
        - 'CRITICAL' or logging.CRITICAL (50): Only progress/milestone messages
        - 'ERROR' or logging.ERROR (40): Error messages
        - 'WARNING' or logging.WARNING (30): Warning messages, e.g. empty input
        - 'INFO' or logging.INFO (20): General information (default)
        - 'DEBUG' or logging.DEBUG (10): Detailed debugging information

    Examples:
    ---------
    >>> import synchrony_kit
    >>> synchrony_kit.set_log_level('WARNING')  # Hide progress messages
    >>> synchrony_kit.set_log_level('INFO')     # Show info-level (and above) log statements
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    logger = logging.getLogger('synchrony_kit')
    logger.setLevel(level)

    # Add handler if none exists
    if not logger.handlers:
        handler = logging.StreamHandler()
        # Clean format - just the message (like print statements)
        formatter = logging.Formatter('%(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)

        # Prevent propagation to root logger to avoid duplicate messages
        logger.propagate = False

__all__ = ["ConnectivityAnalyzer",
           "compute_pli",
           "compute_unbiased_squared_pli",
           "build_network",
           "Network",
           "NetworkNode",
           "NetworkEdge",
           "WindowType",
           "generate_tapers",
           "compute_tapered_spectra",
           "csd_from_tapered_spectra",
           "trials_from_epochs",
           "ConnectivityError",
           "ShapeMismatch",
           "InvalidTrialCount",
           "UnrecognizedWindowType",
           "set_log_level"]
