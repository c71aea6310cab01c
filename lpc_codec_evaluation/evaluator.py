import dataclasses
import logging
import multiprocessing
import time
from typing import Any, List, Optional, Sequence

import numpy as np

from .classes import CodecConfig, LPCEncoder, LPCDecoder, HuffmanCoder, ErasureChannel
from .codec import int16_to_bytes, bytes_to_int16
from .constants import STATUS_OK, STATUS_DEGRADED, STATUS_FAILED
from .errors import InvalidOrder, IncompleteCodeword, LengthMismatch
from .methods import compute_snr, profile_memory
from .serialize import CodedStream, CodedSignal

logger = logging.getLogger(__name__)


class Evaluator:
    """
    Runs the encode -> channel -> decode -> score pipeline on one signal at a time.

    Every signal gets its own encoder, coders, channel and random generator, so
    signals can be evaluated in any order or in parallel with the same results.
    With profile=True, encode and decode times and peak memory are measured with
    memory_profiler; otherwise only times are measured.
    """

    def __init__(self, config: CodecConfig = None, profile: bool = False):
        self.config = config if config is not None else CodecConfig()
        self.profile = bool(profile)

    def _run(self, func, *args):
        if self.profile:
            return profile_memory(func, *args)
        t_start = time.perf_counter()
        result = func(*args)
        return result, None, time.perf_counter() - t_start

    def evaluate(self, data_series: Any, identifier: str = None, sample_rate: int = 0, rng=None) -> dict:
        """
        Evaluate one signal. `rng` feeds the channel; by default a generator seeded
        with config.seed is used.

        InvalidOrder marks the result as failed. Losses on the channel mark it as
        degraded and are listed in results["loss_events"].
        """
        config = self.config
        xs = np.asarray(data_series, dtype=float).ravel()
        results = {
            "identifier": identifier,
            "status": STATUS_OK,
            "snr_db": None,
            "snr_note": None,
            "order": config.order,
            "loss_rate": config.loss_rate,
            "granularity": config.granularity,
            "bitrate": config.bitrate,
            "n_samples": int(xs.shape[0]),
            "n_decoded_samples": 0,
            "loss_events": [],
            "error": None,
            "reconstructed": None,
            "coded": None,
        }

        # --- Encode ---
        encoder = LPCEncoder(config.order, closed_loop=config.closed_loop)
        try:
            encoded, peak_encode_mem, t_encode = self._run(self._encode, encoder, xs)
        except InvalidOrder as exc:
            logger.error("Skipping %s: %s", identifier, exc)
            results["status"] = STATUS_FAILED
            results["error"] = str(exc)
            return results
        coefficient_stream, residual_stream = encoded
        results["encode_time_sec"] = t_encode
        results["encode_mem_mb"] = peak_encode_mem
        results["coefficient_overflows"] = encoder.overflows["coefficients"]
        results["residual_overflows"] = encoder.overflows["residual"]
        results["coded"] = CodedSignal(config.order, int(sample_rate), coefficient_stream, residual_stream)

        # --- Channel ---
        channel = ErasureChannel(config.loss_rate, config.granularity,
                                 rng if rng is not None else np.random.default_rng(config.seed))
        received_coefficients = channel.transmit(coefficient_stream.bits, coefficient_stream.table)
        received_residual = channel.transmit(residual_stream.bits, residual_stream.table)

        # --- Decode ---
        (q_coeffs, q_residual, reconstructed), peak_decode_mem, t_decode = self._run(
            self._decode, coefficient_stream, received_coefficients, residual_stream, received_residual, results
        )
        results["decode_time_sec"] = t_decode
        results["decode_mem_mb"] = peak_decode_mem
        results["reconstructed"] = reconstructed
        results["n_decoded_samples"] = int(reconstructed.shape[0])

        # --- Metrics ---
        coded_bits = len(coefficient_stream.bits) + len(residual_stream.bits)
        results["coefficient_bits"] = len(coefficient_stream.bits)
        results["residual_bits"] = len(residual_stream.bits)
        results["received_coefficient_bits"] = len(received_coefficients)
        results["received_residual_bits"] = len(received_residual)
        uncompressed_bits = 16 * xs.shape[0]
        results["compression_ratio"] = uncompressed_bits / coded_bits if coded_bits > 0 else float("inf")
        results["bits_per_sample"] = coded_bits / xs.shape[0]

        if q_coeffs.shape[0] != config.order:
            results["loss_events"].append(
                f"coefficients: received {q_coeffs.shape[0]} of {config.order}"
            )
        if q_residual.shape[0] != xs.shape[0]:
            results["loss_events"].append(
                f"residual: received {q_residual.shape[0]} of {xs.shape[0]} samples"
            )

        self._score(xs, reconstructed, results)

        if results["loss_events"] or len(received_coefficients) != len(coefficient_stream.bits) \
                or len(received_residual) != len(residual_stream.bits):
            results["status"] = STATUS_DEGRADED

        if results["snr_db"] is None:
            logger.info("SNR for %s: undefined (%s)", identifier, results["snr_note"])
        else:
            logger.info("SNR for %s: %.2f dB", identifier, results["snr_db"])
        return results

    @staticmethod
    def _encode(encoder: LPCEncoder, xs: np.ndarray):
        q_coeffs, q_residual = encoder.encode(xs)
        streams = []
        for values in (q_coeffs, q_residual):
            symbols = int16_to_bytes(values)
            coder = HuffmanCoder()
            bits = coder.encode_symbols(symbols)
            streams.append(CodedStream(coder.table, bits, len(symbols)))
        return tuple(streams)

    def _decode(self, coefficient_stream: CodedStream, received_coefficients, residual_stream: CodedStream,
                received_residual, results: dict):
        q_coeffs = self._receive("coefficients", coefficient_stream, received_coefficients, results)
        q_residual = self._receive("residual", residual_stream, received_residual, results)
        reconstructed = LPCDecoder(self.config.order).decode(q_coeffs, q_residual)
        return q_coeffs, q_residual, reconstructed

    @staticmethod
    def _receive(name: str, stream: CodedStream, received, results: dict) -> np.ndarray:
        try:
            symbols = HuffmanCoder(stream.table, strict=True).decode_symbols(received)
        except IncompleteCodeword as exc:
            symbols = exc.decoded
            results["loss_events"].append(
                f"{name}: incomplete codeword, {len(exc.leftover)} trailing bit(s) dropped"
            )
            logger.info("%s stream of %s: %s", name, results["identifier"], exc)
        if len(symbols) % 2:
            results["loss_events"].append(f"{name}: dangling byte dropped")
        return bytes_to_int16(symbols)

    def _score(self, xs: np.ndarray, reconstructed: np.ndarray, results: dict) -> None:
        try:
            results["snr_db"] = compute_snr(xs, reconstructed)
            compared = xs
        except LengthMismatch as exc:
            logger.warning("%s: %s (policy: %s)", results["identifier"], exc, self.config.mismatch_policy)
            results["loss_events"].append(f"length mismatch: {exc.reconstructed_length} of {exc.original_length}")
            policy = self.config.mismatch_policy
            if policy == "skip":
                results["snr_note"] = "skipped (length mismatch)"
                return
            if policy == "truncate":
                n = min(exc.original_length, exc.reconstructed_length)
                compared, reconstructed = xs[:n], reconstructed[:n]
            else:
                # zero-fill a short reconstruction, cut a long one
                n = min(exc.original_length, exc.reconstructed_length)
                padded = np.zeros(xs.shape[0], dtype=float)
                padded[:n] = reconstructed[:n]
                compared, reconstructed = xs, padded
            if compared.shape[0] == 0:
                results["snr_note"] = "nothing received"
                return
            results["snr_db"] = compute_snr(compared, reconstructed)

        if results["snr_db"] is None:
            if not np.any(compared):
                results["snr_note"] = "silent signal"
            else:
                results["snr_note"] = "perfect reconstruction"

    def evaluate_many(self, signals: Sequence[Any], identifiers: Sequence[str] = None,
                      sample_rates: Sequence[int] = None, jobs: int = 1) -> List[dict]:
        """
        Evaluate independent signals, in a multiprocessing pool when jobs > 1.

        Results come back in input order. Channel randomness for signal i comes from
        the i-th child of SeedSequence(config.seed), whatever the number of workers.
        A signal whose pipeline raises is reported as failed; the others still run.
        """
        n = len(signals)
        identifiers = list(identifiers) if identifiers is not None else [str(i) for i in range(n)]
        sample_rates = list(sample_rates) if sample_rates is not None else [0] * n
        seeds = np.random.SeedSequence(self.config.seed).spawn(n)
        tasks = [(self.config, self.profile, signal, identifier, sample_rate, seed)
                 for signal, identifier, sample_rate, seed in zip(signals, identifiers, sample_rates, seeds)]

        if jobs > 1 and n > 1:
            # memory_profiler cannot start its monitor from inside pool workers
            tasks = [(config, False, *rest) for config, _, *rest in tasks]
            with multiprocessing.Pool(processes=min(jobs, n)) as pool:
                return pool.starmap(_evaluate_task, tasks)
        return [_evaluate_task(*task) for task in tasks]

    def sweep_loss_rates(self, data_series: Any, loss_rates: Sequence[float], identifier: str = None,
                         sample_rate: int = 0) -> List[dict]:
        """Evaluate one signal once per loss rate, everything else unchanged."""
        results = []
        for loss_rate in loss_rates:
            evaluator = Evaluator(dataclasses.replace(self.config, loss_rate=loss_rate), self.profile)
            results.append(evaluator.evaluate(data_series, identifier, sample_rate))
        return results


def _evaluate_task(config: CodecConfig, profile: bool, signal: Any, identifier: Optional[str],
                   sample_rate: int, seed: np.random.SeedSequence) -> dict:
    try:
        return Evaluator(config, profile).evaluate(signal, identifier, sample_rate, np.random.default_rng(seed))
    except Exception as exc:
        logger.exception("Evaluation of %s failed", identifier)
        return {
            "identifier": identifier,
            "status": STATUS_FAILED,
            "snr_db": None,
            "snr_note": None,
            "order": config.order,
            "loss_rate": config.loss_rate,
            "granularity": config.granularity,
            "bitrate": config.bitrate,
            "n_samples": len(signal),
            "n_decoded_samples": 0,
            "loss_events": [],
            "error": f"{type(exc).__name__}: {exc}",
            "reconstructed": None,
            "coded": None,
        }
