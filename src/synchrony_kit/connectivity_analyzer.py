"""
ConnectivityAnalyzer - Phase Synchrony Connectivity for Multi-Trial MEG/EEG
===========================================================================

This module computes frequency-resolved phase-synchrony connectivity between
all channel pairs of multi-trial electrophysiological data and assembles the
result into a weighted all-to-all network.

Features:
- (Multi-)tapered spectral estimation with configurable window families
- Cross-spectral density accumulation across trials for every channel pair
- Phase Lag Index (PLI) and the Unbiased Squared PLI (Vinck et al., 2011)
- Optional trial-parallel processing with an exact sign-count reduction
- Network assembly with optional 3-D node positions
- HDF5 network export with JSON analysis metadata
"""

import datetime
import json
import logging
import os
import time
from multiprocessing import Pool
from pathlib import Path

import numpy as np
from tqdm import tqdm

from .epochs import trials_from_epochs
from .errors import InvalidTrialCount, ShapeMismatch
from .network import Network, NetworkEdge, NetworkNode
from .spectral import (WindowType, compute_tapered_spectra, csd_from_tapered_spectra,
                       generate_tapers, n_frequency_bins)

PLI_NETWORK_NAME = "Phase Lag Index"
USPLI_NETWORK_NAME = "Unbiased Squared Phase Lag Index"


def _validate_trials(trials):
    """
    Convert trials to float arrays and check they share a channel count.

    :param trials: sequence of array-likes, each (n_channels, n_samples)
    :return: list of 2-D float64 arrays
    """
    checked = []
    for t, trial in enumerate(trials):
        trial = np.asarray(trial, dtype=np.float64)
        if trial.ndim != 2:
            raise ShapeMismatch(
                f"Trial {t} must be 2D with shape (n_channels, n_samples), got shape {trial.shape}"
            )
        if trial.shape[1] < 1:
            raise ShapeMismatch(f"Trial {t} has no samples")
        if checked and trial.shape[0] != checked[0].shape[0]:
            raise ShapeMismatch(
                f"Trial {t} has {trial.shape[0]} channels, trial 0 has {checked[0].shape[0]}"
            )
        checked.append(trial)
    return checked


def _validate_positions(positions):
    if positions is None:
        return np.zeros((0, 3))
    positions = np.asarray(positions, dtype=np.float64)
    if positions.size == 0:
        return np.zeros((0, 3))
    if positions.ndim != 2 or positions.shape[1] != 3:
        raise ShapeMismatch(f"positions must have shape (n_rows, 3), got {positions.shape}")
    return positions


def _resolve_n_jobs(n_jobs, n_trials):
    if n_jobs is None:
        return min(os.cpu_count() or 1, n_trials)
    n_jobs = int(n_jobs)
    if n_jobs < 1:
        raise ValueError("n_jobs must be >= 1 or None")
    return min(n_jobs, n_trials)


def _trial_csd_signs(trial, tapers, weights, n_fft, scale=1.0):
    """
    Sign of the imaginary CSD for every channel pair of a single trial.

    :param trial: ndarray, (n_channels, n_samples)
    :param tapers: ndarray, (n_tapers, n_samples)
    :param weights: ndarray, (n_tapers,)
    :param n_fft: int, FFT length shared by all trials
    :param scale: float, CSD normalisation factor
    :return: ndarray (n_channels, n_channels, n_bins) of -1, 0 and 1
    """
    n_channels = trial.shape[0]
    spectra = compute_tapered_spectra(trial, tapers, n_fft, remove_mean=True)

    signs = np.empty((n_channels, n_channels, n_frequency_bins(n_fft)))
    for i in range(n_channels):
        csd = csd_from_tapered_spectra(spectra[i], spectra, weights, weights, n_fft, scale)
        signs[i] = np.sign(csd.imag)
    return signs


def _run_trial_task(task):
    return _trial_csd_signs(*task)


def compute_pli(trials, n_fft=None, window_type=WindowType.BOXCAR, *, half_bandwidth=4.0,
                n_tapers=None, scale=1.0, n_jobs=1, progress=False) -> np.ndarray:
    """
    Phase Lag Index between all channel pairs, per frequency bin.

    PLI(i, k, f) = | mean over trials of sign(Im(CSD_t(i, k, f))) |

    Parameters
    ----------
    trials : sequence of np.ndarray
        Trials with shape (n_channels, n_samples); channel counts must match.
    n_fft : int, optional
        FFT length. Raised once to the sample count of the longest trial
        when missing or smaller; shorter trials are zero-padded.
    window_type : WindowType or str, default='boxcar'
        Taper family passed to :func:`generate_tapers`.
    half_bandwidth : float, default=4.0
        NW for DPSS tapers.
    n_tapers : int, optional
        Number of DPSS tapers.
    scale : float, default=1.0
        CSD normalisation factor (sampling frequency). Does not change PLI.
    n_jobs : int or None, default=1
        Worker processes for trial-parallel processing; None uses one per CPU
        (never more than the number of trials).
    progress : bool, default=False
        Show a tqdm progress bar over trials.

    Returns
    -------
    np.ndarray
        Connectivity tensor with shape (n_channels, n_channels, n_fft // 2 + 1).

    Raises
    ------
    ValueError
        If trials is empty.
    ShapeMismatch
        If trials are not 2-D or channel counts differ.
    UnrecognizedWindowType
        If window_type is unknown.
    """
    logger = logging.getLogger('synchrony_kit')

    trials = _validate_trials(trials)
    if not trials:
        raise ValueError("At least one trial is required")

    window_type = WindowType.parse(window_type)
    # Floor n_fft once so every trial fits its window and all share one bin count
    signal_length = max(trial.shape[1] for trial in trials)
    if n_fft is None or n_fft < signal_length:
        n_fft = signal_length
    n_fft = int(n_fft)

    # One taper set per distinct trial length
    taper_sets = {}
    for trial in trials:
        length = trial.shape[1]
        if length not in taper_sets:
            taper_sets[length] = generate_tapers(length, window_type, half_bandwidth, n_tapers)

    n_trials = len(trials)
    n_channels = trials[0].shape[0]
    n_bins = n_frequency_bins(n_fft)
    n_jobs = _resolve_n_jobs(n_jobs, n_trials)

    logger.info(f"→ Computing PLI: {n_trials} trials, {n_channels} channels, "
                f"{n_bins} frequency bins (n_fft={n_fft}, window={window_type.value})")

    tasks = [(trial, *taper_sets[trial.shape[1]], n_fft, scale) for trial in trials]

    sign_sum = np.zeros((n_channels, n_channels, n_bins))
    if n_jobs == 1:
        for task in tqdm(tasks, desc="PLI trials", disable=not progress):
            sign_sum += _trial_csd_signs(*task)
    else:
        logger.info(f"→ Distributing trials over {n_jobs} worker processes")
        with Pool(n_jobs) as pool:
            for signs in tqdm(pool.imap_unordered(_run_trial_task, tasks), total=n_trials,
                              desc="PLI trials", disable=not progress):
                sign_sum += signs

    pli = np.abs(sign_sum) / n_trials
    logger.info("✔ PLI computation completed")
    return pli


def compute_unbiased_squared_pli(pli, n_trials: int) -> np.ndarray:
    """
    Debias the squared PLI for a finite number of trials.

    Implements (T * PLI**2 - 1) / (T - 1) from Vinck et al., NeuroImage 55,
    pp. 1548-65, 2011. The result can be negative.

    Parameters
    ----------
    pli : np.ndarray
        PLI tensor from :func:`compute_pli`, computed over ``n_trials`` trials.
    n_trials : int
        Number of trials T.

    Raises
    ------
    InvalidTrialCount
        If n_trials < 2.
    """
    n_trials = int(n_trials)
    if n_trials < 2:
        raise InvalidTrialCount(
            f"Unbiased squared PLI needs at least 2 trials, got {n_trials}"
        )
    pli = np.asarray(pli, dtype=np.float64)
    return (n_trials * pli ** 2 - 1.0) / (n_trials - 1)


def build_network(tensor, positions=None, name: str = "Network") -> Network:
    """
    Assemble a connectivity tensor into an all-to-all network.

    :param tensor: ndarray, (n_channels, n_channels, n_bins)
    :param positions: array-like (n_rows, 3), optional; nodes without a row sit at the origin
    :param name: str, network name
    :return: Network with n_channels nodes and n_channels ** 2 edges, in row-major order
    """
    tensor = np.asarray(tensor, dtype=np.float64)
    if tensor.ndim != 3 or tensor.shape[0] != tensor.shape[1]:
        raise ShapeMismatch(
            f"Connectivity tensor must have shape (n_channels, n_channels, n_bins), got {tensor.shape}"
        )
    positions = _validate_positions(positions)

    network = Network(name)
    n_channels = tensor.shape[0]
    for i in range(n_channels):
        position = positions[i] if i < positions.shape[0] else None
        network.append_node(NetworkNode(i, position))

    for i in range(n_channels):
        for j in range(n_channels):
            network.append_edge(NetworkEdge(i, j, tensor[i, j]))

    return network


class ConnectivityAnalyzer:
    """
    Phase-synchrony connectivity analysis for multi-trial MEG/EEG data.

    Analysis Methods:
        Phase Lag Index:
            - Sign of the imaginary cross-spectrum, averaged over trials
            - Insensitive to zero-lag (volume conduction) coupling
        Unbiased Squared Phase Lag Index:
            - Bias-corrected squared PLI for finite trial counts

    Every method returns a :class:`Network` whose edges carry one weight per
    frequency bin.
    """

    METRICS = {
        "pli": "phase_lag_index",
        "uspli": "unbiased_squared_phase_lag_index",
    }

    def __init__(
        self,
        *,
        n_fft: int = None,
        window_type="boxcar",
        half_bandwidth: float = 4.0,
        n_tapers: int = None,
        sampling_frequency: float = 1.0,
        n_jobs: int = 1,
        progress: bool = False,
        output_dir: str = None
    ):
        """
        Initialize the ConnectivityAnalyzer with spectral estimation parameters.

        Parameters
        ----------
        n_fft : int, optional
            FFT length. Defaults to (and is never below) the sample count of
            the longest trial.
        window_type : WindowType or str, default='boxcar'
            Taper family: 'boxcar', 'hann', 'hamming', 'blackman' or 'dpss'.
        half_bandwidth : float, default=4.0
            Time-half-bandwidth product for DPSS tapers.
        n_tapers : int, optional
            Number of DPSS tapers, defaults to 2 * half_bandwidth - 1.
        sampling_frequency : float, default=1.0
            Used as the CSD scale factor.
        n_jobs : int or None, default=1
            Worker processes for trial-parallel processing.
        progress : bool, default=False
            Show a progress bar over trials.
        output_dir : str, optional
            Directory for exported networks. Defaults to
            'connectivity_analysis_results' in the working directory.

        Raises
        ------
        ValueError
            If a numeric parameter is out of range.
        UnrecognizedWindowType
            If window_type is unknown.
        """
        if n_fft is not None and int(n_fft) < 1:
            raise ValueError("n_fft must be positive")
        if sampling_frequency <= 0:
            raise ValueError("sampling_frequency must be positive")
        if half_bandwidth <= 0:
            raise ValueError("half_bandwidth must be positive")
        if n_tapers is not None and int(n_tapers) < 1:
            raise ValueError("n_tapers must be >= 1")
        if n_jobs is not None and int(n_jobs) < 1:
            raise ValueError("n_jobs must be >= 1 or None")

        self.n_fft = n_fft
        self.window_type = WindowType.parse(window_type)
        self.half_bandwidth = half_bandwidth
        self.n_tapers = n_tapers
        self.sampling_frequency = sampling_frequency
        self.n_jobs = n_jobs
        self.progress = progress

        if output_dir is None:
            self.output_dir = Path.cwd() / "connectivity_analysis_results"
        else:
            self.output_dir = Path(output_dir)

    # ========================================================================
    # PUBLIC METHODS - Metrics
    # ========================================================================

    def compute_pli(self, trials) -> np.ndarray:
        """PLI tensor of ``trials`` with this analyzer's spectral settings."""
        return compute_pli(
            trials,
            self.n_fft,
            self.window_type,
            half_bandwidth=self.half_bandwidth,
            n_tapers=self.n_tapers,
            scale=self.sampling_frequency,
            n_jobs=self.n_jobs,
            progress=self.progress,
        )

    def phase_lag_index(self, trials, positions=None) -> Network:
        """
        Phase Lag Index network over all channel pairs.

        Parameters
        ----------
        trials : sequence of np.ndarray
            Trials with shape (n_channels, n_samples).
        positions : array-like, optional
            Node positions with shape (n_rows, 3).

        Returns
        -------
        Network
            'Phase Lag Index' network; empty when no trials are given.
        """
        trials = list(trials)
        if not trials:
            logging.getLogger('synchrony_kit').warning(
                "⚠ Input data is empty, returning an empty Phase Lag Index network")
            return Network(PLI_NETWORK_NAME)

        pli = self.compute_pli(trials)
        return build_network(pli, positions, PLI_NETWORK_NAME)

    def unbiased_squared_phase_lag_index(self, trials, positions=None) -> Network:
        """
        Unbiased Squared Phase Lag Index network over all channel pairs.

        Raises
        ------
        InvalidTrialCount
            If a single trial is given.
        """
        trials = list(trials)
        if not trials:
            logging.getLogger('synchrony_kit').warning(
                "⚠ Input data is empty, returning an empty Unbiased Squared Phase Lag Index network")
            return Network(USPLI_NETWORK_NAME)
        if len(trials) < 2:
            raise InvalidTrialCount(
                f"Unbiased squared PLI needs at least 2 trials, got {len(trials)}"
            )

        pli = self.compute_pli(trials)
        uspli = compute_unbiased_squared_pli(pli, len(trials))
        return build_network(uspli, positions, USPLI_NETWORK_NAME)

    def compute(self, metric: str, trials, positions=None) -> Network:
        """Run a metric by name ('pli' or 'uspli')."""
        try:
            method_name = self.METRICS[metric.lower()]
        except KeyError:
            raise ValueError(f"Unknown metric {metric!r}; expected one of {list(self.METRICS)}") from None
        return getattr(self, method_name)(trials, positions)

    def analyze_epochs(self, epochs, metric: str = "pli", picks=None) -> Network:
        """
        Run a metric on MNE epochs, using channel locations as node positions.

        Parameters
        ----------
        epochs : mne.BaseEpochs
            Epoched data; each epoch is one trial.
        metric : str, default='pli'
            'pli' or 'uspli'.
        picks : str, list or None
            Channels to use, as accepted by ``Epochs.pick``.
        """
        trials, positions = trials_from_epochs(epochs, picks=picks)
        return self.compute(metric, trials, positions)

    # ========================================================================
    # PUBLIC METHODS - Export
    # ========================================================================

    def save_network(self, network: Network, filename: str = None) -> Path:
        """
        Save a network to HDF5 in the output directory and log the analysis.

        Parameters
        ----------
        network : Network
            Network to save.
        filename : str, optional
            File name, defaults to the network name in snake case with '.h5'.

        Returns
        -------
        Path
            Path of the written HDF5 file.
        """
        analysis_start_time = time.time()
        if filename is None:
            filename = network.name.lower().replace(" ", "_") + ".h5"

        out_path = network.save(self.output_dir / filename)
        analysis_end_time = time.time()

        parameters = {
            "n_fft": self.n_fft,
            "window_type": self.window_type.value,
            "half_bandwidth": self.half_bandwidth,
            "n_tapers": self.n_tapers,
            "sampling_frequency": self.sampling_frequency,
        }
        results_info = {
            "output_file": str(out_path),
            "n_nodes": network.n_nodes,
            "n_edges": network.n_edges,
            "n_frequency_bins": network.n_bins,
        }
        self._save_analysis_metadata(network.name, parameters, results_info,
                                     analysis_start_time, analysis_end_time)
        return out_path

    def _save_analysis_metadata(self, analysis_type: str, parameters: dict, results_info: dict,
                                analysis_start_time: float, analysis_end_time: float):
        """Save analysis metadata to JSON file, appending to existing entries."""
        metadata_file = self.output_dir / "analysis_metadata.json"

        new_entry = {
            "timestamp": datetime.datetime.now().isoformat(),
            "analysis_type": analysis_type,
            "analysis_duration_seconds": round(analysis_end_time - analysis_start_time, 2),
            "parameters": parameters,
            "results": results_info
        }

        if metadata_file.exists():
            try:
                with open(metadata_file, 'r') as f:
                    metadata_list = json.load(f)
                if not isinstance(metadata_list, list):
                    metadata_list = [metadata_list]
            except json.JSONDecodeError:
                logging.getLogger('synchrony_kit').warning(
                    f"⚠ Could not parse {metadata_file}, starting a new metadata list")
                metadata_list = []
        else:
            metadata_list = []

        metadata_list.append(new_entry)

        self.output_dir.mkdir(parents=True, exist_ok=True)
        with open(metadata_file, 'w') as f:
            json.dump(metadata_list, f, indent=2)
