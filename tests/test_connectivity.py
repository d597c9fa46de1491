"""Tests for the PLI / unbiased squared PLI estimators and the analyzer."""

import json

import numpy as np
import pytest

from synchrony_kit import ConnectivityAnalyzer, Network
from synchrony_kit.connectivity_analyzer import (build_network, compute_pli,
                                                 compute_unbiased_squared_pli)
from synchrony_kit.errors import InvalidTrialCount, ShapeMismatch, UnrecognizedWindowType


# ── Helpers ───────────────────────────────────────────────────────────────

def _random_trials(n_trials=6, n_channels=3, n_samples=64, seed=0):
    rng = np.random.default_rng(seed)
    return [rng.standard_normal((n_channels, n_samples)) for _ in range(n_trials)]


def _lagged_sine_trials(n_trials=2, n_samples=100, cycles=5, lag=np.pi / 4, seed=7):
    """Two channels, channel 1 lags channel 0 by ``lag`` in every trial."""
    rng = np.random.default_rng(seed)
    t = np.arange(n_samples) / n_samples
    trials = []
    for _ in range(n_trials):
        phase = rng.uniform(0, 2 * np.pi)
        x = np.sin(2 * np.pi * cycles * t + phase)
        y = np.sin(2 * np.pi * cycles * t + phase - lag)
        trials.append(np.vstack([x, y]))
    return trials


# ═══════════════════════════════════════════════════════════════════════════
# PLI
# ═══════════════════════════════════════════════════════════════════════════

class TestPLI:

    def test_shape(self):
        pli = compute_pli(_random_trials(n_channels=4, n_samples=50))
        assert pli.shape == (4, 4, 26)

    def test_symmetry(self):
        pli = compute_pli(_random_trials(), window_type="hann")
        assert np.allclose(pli, pli.transpose(1, 0, 2))

    def test_range(self):
        pli = compute_pli(_random_trials(n_trials=9), window_type="dpss",
                          half_bandwidth=2.0)
        assert np.all(pli >= 0.0)
        assert np.all(pli <= 1.0)

    def test_values_are_multiples_of_one_over_trials(self):
        n_trials = 5
        pli = compute_pli(_random_trials(n_trials=n_trials))
        assert np.allclose(pli * n_trials, np.round(pli * n_trials))

    def test_self_pair_is_zero(self):
        rng = np.random.default_rng(3)
        x = rng.standard_normal(80)
        trials = [np.vstack([x, x]), np.vstack([x, x])]
        pli = compute_pli(trials, window_type="hann")
        assert np.all(pli[0, 0] == 0.0)
        assert np.all(pli[1, 1] == 0.0)
        # identical channels have zero phase lag
        assert np.all(pli[0, 1] == 0.0)

    def test_constant_lag_gives_perfect_pli(self):
        pli = compute_pli(_lagged_sine_trials(), n_fft=100)
        assert pli[0, 1, 5] == pytest.approx(1.0)
        assert pli[1, 0, 5] == pytest.approx(1.0)
        # the DC bin of a real signal has no imaginary part
        assert pli[0, 1, 0] == 0.0

    def test_constant_lag_with_multitaper(self):
        pli = compute_pli(_lagged_sine_trials(n_trials=4, n_samples=256, cycles=20),
                          window_type="dpss", half_bandwidth=2.0)
        assert pli[0, 1, 20] == pytest.approx(1.0)

    def test_nfft_floor(self):
        trials = _random_trials(n_samples=40)
        assert np.array_equal(compute_pli(trials, n_fft=8), compute_pli(trials, n_fft=40))
        assert np.array_equal(compute_pli(trials), compute_pli(trials, n_fft=40))

    def test_zero_padding_changes_bin_count(self):
        pli = compute_pli(_random_trials(n_samples=40), n_fft=64)
        assert pli.shape[-1] == 33

    def test_variable_trial_lengths(self):
        rng = np.random.default_rng(11)
        trials = [rng.standard_normal((2, 64)), rng.standard_normal((2, 50))]
        assert compute_pli(trials).shape == (2, 2, 33)

    def test_later_trial_longer_than_first(self):
        rng = np.random.default_rng(12)
        trials = [rng.standard_normal((2, 50)), rng.standard_normal((2, 64))]
        pli = compute_pli(trials)
        assert pli.shape == (2, 2, 33)
        assert np.array_equal(pli, compute_pli(trials, n_fft=64))
        network = ConnectivityAnalyzer().phase_lag_index(trials)
        assert network.n_edges == 4
        assert network.n_bins == 33

    def test_progress_bar(self):
        trials = _random_trials(n_trials=3)
        assert np.array_equal(compute_pli(trials, progress=True), compute_pli(trials))

    def test_channel_count_mismatch(self):
        rng = np.random.default_rng(13)
        trials = [rng.standard_normal((3, 32)), rng.standard_normal((2, 32))]
        with pytest.raises(ShapeMismatch):
            compute_pli(trials)

    def test_non_2d_trial(self):
        with pytest.raises(ShapeMismatch):
            compute_pli([np.zeros(32)])

    def test_unknown_window(self):
        with pytest.raises(UnrecognizedWindowType):
            compute_pli(_random_trials(), window_type="triangle-ish")

    def test_empty_raises_at_tensor_level(self):
        with pytest.raises(ValueError):
            compute_pli([])

    def test_parallel_matches_serial(self):
        trials = _random_trials(n_trials=6)
        serial = compute_pli(trials, window_type="hann")
        parallel = compute_pli(trials, window_type="hann", n_jobs=2)
        assert np.array_equal(serial, parallel)

    def test_invalid_n_jobs(self):
        with pytest.raises(ValueError):
            compute_pli(_random_trials(), n_jobs=0)


# ═══════════════════════════════════════════════════════════════════════════
# Unbiased squared PLI
# ═══════════════════════════════════════════════════════════════════════════

class TestUnbiasedSquaredPLI:

    def test_hand_computed_value(self):
        assert compute_unbiased_squared_pli(np.array([0.5]), 2)[0] == pytest.approx(-0.5)

    def test_perfect_pli_stays_one(self):
        assert compute_unbiased_squared_pli(np.ones(3), 10) == pytest.approx(np.ones(3))

    def test_formula(self):
        pli = np.array([0.0, 0.2, 0.7])
        expected = (8 * pli ** 2 - 1) / 7
        assert np.allclose(compute_unbiased_squared_pli(pli, 8), expected)

    def test_single_trial_rejected(self):
        with pytest.raises(InvalidTrialCount):
            compute_unbiased_squared_pli(np.ones(4), 1)

    def test_zero_trials_rejected(self):
        with pytest.raises(InvalidTrialCount):
            compute_unbiased_squared_pli(np.ones(4), 0)


# ═══════════════════════════════════════════════════════════════════════════
# Network assembly and analyzer
# ═══════════════════════════════════════════════════════════════════════════

class TestBuildNetwork:

    def test_cardinality_and_order(self):
        tensor = np.arange(3 * 3 * 4, dtype=float).reshape(3, 3, 4)
        network = build_network(tensor, name="test")
        assert network.name == "test"
        assert network.n_nodes == 3
        assert network.n_edges == 9
        pairs = [(edge.source, edge.target) for edge in network.edges]
        assert pairs == [(i, j) for i in range(3) for j in range(3)]
        assert np.array_equal(network.edge(5).weights, tensor[1, 2])

    def test_positions_default_to_origin(self):
        tensor = np.zeros((3, 3, 2))
        positions = np.array([[1.0, 2.0, 3.0]])
        network = build_network(tensor, positions)
        assert np.array_equal(network.node(0).position, [1.0, 2.0, 3.0])
        assert np.array_equal(network.node(1).position, np.zeros(3))
        assert np.array_equal(network.node(2).position, np.zeros(3))

    def test_bad_positions(self):
        with pytest.raises(ShapeMismatch):
            build_network(np.zeros((2, 2, 3)), np.zeros((2, 2)))

    def test_bad_tensor(self):
        with pytest.raises(ShapeMismatch):
            build_network(np.zeros((2, 3, 3)))


class TestConnectivityAnalyzer:

    def test_empty_input_pli(self):
        network = ConnectivityAnalyzer().phase_lag_index([])
        assert isinstance(network, Network)
        assert network.name == "Phase Lag Index"
        assert network.n_nodes == 0
        assert network.n_edges == 0

    def test_empty_input_uspli(self):
        network = ConnectivityAnalyzer().unbiased_squared_phase_lag_index([])
        assert network.name == "Unbiased Squared Phase Lag Index"
        assert network.is_empty()

    def test_pli_network(self):
        trials = _random_trials(n_channels=4, n_samples=32)
        positions = np.random.default_rng(1).standard_normal((4, 3))
        network = ConnectivityAnalyzer(window_type="hann").phase_lag_index(trials, positions)
        assert network.n_nodes == 4
        assert network.n_edges == 16
        assert network.n_bins == 17
        assert np.allclose(network.positions(), positions)
        assert np.allclose(network.weight_tensor(), compute_pli(trials, window_type="hann"))

    def test_uspli_network(self):
        trials = _random_trials(n_trials=4)
        network = ConnectivityAnalyzer().unbiased_squared_phase_lag_index(trials)
        expected = compute_unbiased_squared_pli(compute_pli(trials), 4)
        assert np.allclose(network.weight_tensor(), expected)

    def test_uspli_single_trial(self):
        with pytest.raises(InvalidTrialCount):
            ConnectivityAnalyzer().unbiased_squared_phase_lag_index(_random_trials(n_trials=1))

    def test_compute_by_name(self):
        trials = _random_trials(n_trials=3)
        analyzer = ConnectivityAnalyzer()
        assert analyzer.compute("PLI", trials).name == "Phase Lag Index"
        assert analyzer.compute("uspli", trials).name == "Unbiased Squared Phase Lag Index"
        with pytest.raises(ValueError):
            analyzer.compute("coherence", trials)

    @pytest.mark.parametrize("kwargs", [
        {"n_fft": 0},
        {"sampling_frequency": 0.0},
        {"half_bandwidth": -1.0},
        {"n_tapers": 0},
        {"n_jobs": 0},
    ])
    def test_invalid_configuration(self, kwargs):
        with pytest.raises(ValueError):
            ConnectivityAnalyzer(**kwargs)

    def test_invalid_window_configuration(self):
        with pytest.raises(UnrecognizedWindowType):
            ConnectivityAnalyzer(window_type="unknown")

    def test_save_network_writes_metadata(self, tmp_path):
        analyzer = ConnectivityAnalyzer(output_dir=str(tmp_path))
        network = analyzer.phase_lag_index(_random_trials(n_trials=3))
        out_path = analyzer.save_network(network)
        analyzer.save_network(network, filename="again.h5")

        assert out_path == tmp_path / "phase_lag_index.h5"
        assert out_path.exists()
        with open(tmp_path / "analysis_metadata.json") as f:
            metadata = json.load(f)
        assert len(metadata) == 2
        assert metadata[0]["analysis_type"] == "Phase Lag Index"
        assert metadata[0]["results"]["n_edges"] == 9
        assert metadata[0]["parameters"]["window_type"] == "boxcar"
