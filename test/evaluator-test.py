import numpy as np
import pytest
from scipy.signal import lfilter

from lpc_codec_evaluation.classes import CodecConfig
from lpc_codec_evaluation.evaluator import Evaluator


def tone(n=1000, frequency=1500.0, sample_rate=8000, amplitude=8000.0):
    t = np.arange(n) / sample_rate
    return amplitude * np.sin(2 * np.pi * frequency * t)


def speech_like(n=2000, seed=0):
    rng = np.random.default_rng(seed)
    return lfilter([1.0], [1.0, -1.3, 0.6], rng.normal(0.0, 800.0, n))


def test_lossless_channel_tone():
    results = Evaluator(CodecConfig(order=2, loss_rate=0.0)).evaluate(tone(), "tone", 8000)
    assert results["status"] == "ok"
    assert results["snr_db"] > 40.0
    assert results["loss_events"] == []
    assert results["n_decoded_samples"] == 1000
    assert results["received_residual_bits"] == results["residual_bits"]
    assert results["compression_ratio"] > 1.0
    assert results["bits_per_sample"] == pytest.approx(
        (results["coefficient_bits"] + results["residual_bits"]) / 1000)
    assert results["encode_mem_mb"] is None


def test_silent_signal():
    results = Evaluator(CodecConfig(loss_rate=0.0)).evaluate(np.zeros(1000), "silence")
    assert results["status"] == "ok"
    assert results["snr_db"] is None
    assert results["snr_note"] == "silent signal"
    assert not np.any(results["reconstructed"])


def test_total_loss_is_reported_not_raised():
    results = Evaluator(CodecConfig(loss_rate=1.0, seed=0)).evaluate(speech_like(), "lost")
    assert results["status"] == "degraded"
    assert results["received_residual_bits"] == 0
    assert results["n_decoded_samples"] == 0
    assert results["snr_db"] is None
    assert results["snr_note"] == "nothing received"
    assert results["loss_events"]


def test_mismatch_policies_on_total_loss():
    x = speech_like()
    padded = Evaluator(CodecConfig(loss_rate=1.0, mismatch_policy="pad")).evaluate(x)
    assert padded["snr_db"] == pytest.approx(0.0)
    skipped = Evaluator(CodecConfig(loss_rate=1.0, mismatch_policy="skip")).evaluate(x)
    assert skipped["snr_db"] is None
    assert skipped["snr_note"] == "skipped (length mismatch)"


def test_bit_loss_degrades_without_crashing():
    results = Evaluator(CodecConfig(loss_rate=0.1, seed=3)).evaluate(speech_like(), "noisy")
    assert results["status"] == "degraded"
    assert results["received_residual_bits"] < results["residual_bits"]
    assert results["reconstructed"] is not None
    assert np.all(np.isfinite(results["reconstructed"]))


def test_codeword_loss_keeps_stream_in_sync():
    config = CodecConfig(loss_rate=0.05, granularity="codeword", seed=3)
    results = Evaluator(config).evaluate(speech_like(), "codewords")
    assert results["status"] == "degraded"
    assert not any("incomplete codeword" in event for event in results["loss_events"])


def test_seeded_evaluation_is_reproducible():
    config = CodecConfig(loss_rate=0.05, seed=42)
    a = Evaluator(config).evaluate(speech_like())
    b = Evaluator(config).evaluate(speech_like())
    assert a["snr_db"] == b["snr_db"]
    assert np.array_equal(a["reconstructed"], b["reconstructed"])


def test_invalid_order_fails_the_signal():
    results = Evaluator(CodecConfig(order=10)).evaluate(np.ones(5), "short")
    assert results["status"] == "failed"
    assert "order" in results["error"]
    assert results["reconstructed"] is None


def test_invalid_config():
    with pytest.raises(ValueError):
        CodecConfig(loss_rate=1.5)
    with pytest.raises(ValueError):
        CodecConfig(granularity="frame")
    with pytest.raises(ValueError):
        CodecConfig(mismatch_policy="ignore")


def test_evaluate_many_matches_across_worker_counts():
    signals = [speech_like(seed=s) for s in range(3)] + [np.ones(4)]
    evaluator = Evaluator(CodecConfig(loss_rate=0.05, seed=7))
    serial = evaluator.evaluate_many(signals, jobs=1)
    parallel = evaluator.evaluate_many(signals, jobs=2)

    assert [r["identifier"] for r in serial] == ["0", "1", "2", "3"]
    assert [r["status"] for r in serial] == [r["status"] for r in parallel]
    assert serial[3]["status"] == "failed"
    for a, b in zip(serial[:3], parallel[:3]):
        assert a["snr_db"] == b["snr_db"]
        assert np.array_equal(a["reconstructed"], b["reconstructed"])


def test_profiled_run_reports_memory():
    results = Evaluator(CodecConfig(order=2, loss_rate=0.0), profile=True).evaluate(tone(400))
    assert results["encode_mem_mb"] is not None
    assert results["decode_mem_mb"] is not None
    assert results["encode_time_sec"] >= 0


def test_sweep_loss_rates():
    results = Evaluator(CodecConfig(order=2, seed=1)).sweep_loss_rates(tone(), [0.0, 1.0], "tone")
    assert [r["loss_rate"] for r in results] == [0.0, 1.0]
    assert [r["status"] for r in results] == ["ok", "degraded"]


if __name__ == "__main__":
    test_lossless_channel_tone()
    test_silent_signal()
    test_total_loss_is_reported_not_raised()
    test_bit_loss_degrades_without_crashing()
    test_invalid_order_fails_the_signal()
    test_sweep_loss_rates()
    print("All tests passed")
