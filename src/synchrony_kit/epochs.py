"""Conversion of MNE epochs into trial lists and node positions."""

import logging

import mne
import numpy as np


def trials_from_epochs(epochs, picks=None):
    """
    Split MNE epochs into per-trial arrays and channel positions.

    Parameters
    ----------
    epochs : mne.BaseEpochs
        Epoched recording; every epoch becomes one trial.
    picks : str, list or None
        Channel selection passed to ``Epochs.pick``. None keeps all channels.

    Returns
    -------
    trials : list of np.ndarray
        One (n_channels, n_samples) array per epoch.
    positions : np.ndarray
        (n_channels, 3) sensor positions from the channel ``loc`` fields.
        Channels without a finite location are placed at the origin.
    """
    if not isinstance(epochs, mne.BaseEpochs):
        raise TypeError(f"epochs must be an mne.BaseEpochs instance, got {type(epochs).__name__}")

    if picks is not None:
        epochs = epochs.copy().pick(picks)

    data = epochs.get_data()
    trials = [epoch for epoch in data]

    positions = np.array([ch['loc'][:3] for ch in epochs.info['chs']], dtype=np.float64)
    positions = positions.reshape(-1, 3)
    missing = ~np.all(np.isfinite(positions), axis=1)
    positions[missing] = 0.0

    logger = logging.getLogger('synchrony_kit')
    logger.info(f"→ Loaded {len(trials)} trials with {len(epochs.ch_names)} channels from epochs")
    if missing.any():
        logger.warning(f"⚠ {int(missing.sum())} channels have no location, placed at origin")

    return trials, positions
