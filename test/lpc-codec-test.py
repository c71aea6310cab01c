import numpy as np
import pytest
from scipy.signal import lfilter

from lpc_codec_evaluation.classes import LPCEncoder, LPCDecoder
from lpc_codec_evaluation.codec import lpc_encode, lpc_decode, snr
from lpc_codec_evaluation.errors import InvalidOrder
from lpc_codec_evaluation.methods import analysis_filter, synthesis_filter, compute_lpc


def tone(n=1000, frequency=1500.0, sample_rate=8000, amplitude=8000.0):
    t = np.arange(n) / sample_rate
    return amplitude * np.sin(2 * np.pi * frequency * t)


def speech_like(n=4000, seed=3):
    rng = np.random.default_rng(seed)
    return lfilter([1.0], [1.0, -1.3, 0.6], rng.normal(0.0, 800.0, n))


def test_synthesis_inverts_analysis():
    x = speech_like()
    a = compute_lpc(x, 8)
    residual = analysis_filter(a, x)
    assert residual.shape == x.shape
    assert np.allclose(synthesis_filter(a, residual), x, atol=1e-6)


def test_synthesis_is_the_all_pole_filter():
    x = speech_like(500)
    a = compute_lpc(x, 4)
    assert np.allclose(synthesis_filter(a, x), lfilter([1.0], np.concatenate(([1.0], a)), x))


def test_same_all_pole_filter_both_ways_does_not_invert():
    x = speech_like()
    a = compute_lpc(x, 8)
    denominator = np.concatenate(([1.0], a))
    residual = lfilter([1.0], denominator, x)
    recon = lfilter([1.0], denominator, residual)
    # 1 / A(z)^2 instead of the identity
    assert np.sum((recon - x) ** 2) > np.sum(x ** 2)
    assert np.allclose(synthesis_filter(a, analysis_filter(a, x)), x, atol=1e-6)


def test_residual_has_less_energy_than_signal():
    x = speech_like()
    residual = analysis_filter(compute_lpc(x, 8), x)
    assert np.sum(residual ** 2) < 0.5 * np.sum(x ** 2)


def test_filters_are_deterministic_and_length_preserving():
    x = speech_like(300)
    a = compute_lpc(x, 4)
    assert np.array_equal(analysis_filter(a, x), analysis_filter(a, x))
    y = synthesis_filter(a, x)
    assert y.shape == x.shape
    assert np.array_equal(y, synthesis_filter(a, x))


def test_saturated_synthesis_stays_finite():
    # poles outside the unit circle
    y = synthesis_filter([-2.5], np.ones(2000), bounds=(-32768, 32767))
    assert np.all(np.isfinite(y))
    assert y.max() == 32767


def test_encode_shapes_and_types():
    x = speech_like(1000)
    q_coeffs, q_residual = lpc_encode(x, 10)
    assert q_coeffs.shape == (10,) and q_coeffs.dtype == np.int16
    assert q_residual.shape == (1000,) and q_residual.dtype == np.int16


def test_closed_loop_error_bounded_by_half_step():
    x = speech_like()
    q_coeffs, q_residual = lpc_encode(x, 10)
    recon = lpc_decode(q_coeffs, q_residual, 10)
    assert recon.shape == x.shape
    assert np.max(np.abs(recon - x)) <= 0.5 + 1e-9


def test_closed_loop_survives_clamped_coefficients():
    # a low tone needs a1 ~ -1.98, outside the Q15 range
    x = tone(frequency=200.0)
    encoder = LPCEncoder(2)
    q_coeffs, q_residual = encoder.encode(x)
    assert encoder.overflows["coefficients"] >= 1
    recon = LPCDecoder(2).decode(q_coeffs, q_residual)
    assert np.max(np.abs(recon - x)) <= 0.5 + 1e-9


def test_open_loop_round_trip_is_close_for_a_stable_predictor():
    rng = np.random.default_rng(5)
    x = lfilter([1.0], [1.0, -0.5], rng.normal(0.0, 1000.0, 3000))
    q_coeffs, q_residual = lpc_encode(x, 1, closed_loop=False)
    recon = lpc_decode(q_coeffs, q_residual, 1)
    assert np.max(np.abs(recon - x)) < 2.0


def test_single_tone_scenario_snr():
    x = tone()
    q_coeffs, q_residual = lpc_encode(x, 2)
    recon = lpc_decode(q_coeffs, q_residual, 2)
    assert snr(x, recon) > 40.0


def test_silent_signal_scenario():
    x = np.zeros(1000)
    q_coeffs, q_residual = lpc_encode(x, 10)
    assert not np.any(q_coeffs)
    assert not np.any(q_residual)
    recon = lpc_decode(q_coeffs, q_residual, 10)
    assert not np.any(recon)
    assert snr(x, recon) is None


def test_decoder_fits_damaged_coefficient_vector():
    residual = np.array([100, 0, 0, 0], dtype=np.int16)
    # one coefficient received out of two: the missing one is taken as zero
    short = lpc_decode(np.array([16384], dtype=np.int16), residual, 2)
    full = lpc_decode(np.array([16384, 0], dtype=np.int16), residual, 2)
    assert np.array_equal(short, full)
    assert np.allclose(full, [100.0, -50.0, 25.0, -12.5])
    longer = lpc_decode(np.array([16384, 0, 999], dtype=np.int16), residual, 2)
    assert np.array_equal(longer, full)


def test_encode_rejects_invalid_order():
    with pytest.raises(InvalidOrder):
        lpc_encode(np.ones(5), 5)


if __name__ == "__main__":
    test_synthesis_inverts_analysis()
    test_same_all_pole_filter_both_ways_does_not_invert()
    test_closed_loop_error_bounded_by_half_step()
    test_single_tone_scenario_snr()
    test_silent_signal_scenario()
    print("All tests passed")
