import logging
import time
from collections import Counter
from typing import Sequence, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
from bitarray import bitarray
from memory_profiler import memory_usage
from scipy.signal import lfilter

from .errors import InvalidOrder, LengthMismatch

logger = logging.getLogger(__name__)


def profile_memory(func, *args, **kwargs):
    """
    Run a function and return (result, peak_memory_MB, elapsed_time_sec).
    Uses memory_profiler.memory_usage with max_usage=True.
    """
    t_start = time.perf_counter()
    result, peak_mem = None, None

    def wrapper():
        nonlocal result
        result = func(*args, **kwargs)
        return result

    peak_mem = memory_usage((wrapper,), max_usage=True, retval=False, max_iterations=1)
    elapsed = time.perf_counter() - t_start
    return result, peak_mem, elapsed


def autocorrelation(signal: Sequence[float], max_lag: int) -> np.ndarray:
    """
    Biased, unnormalized autocorrelation for lags 0..max_lag.

        r[k] = sum_n signal[n] * signal[n + k]

    Lags at or beyond the signal length are zero.
    """
    xs = np.asarray(signal, dtype=float).ravel()
    n = xs.shape[0]
    r = np.zeros(max_lag + 1, dtype=float)
    for k in range(min(max_lag, n - 1) + 1):
        r[k] = np.dot(xs[:n - k], xs[k:])
    return r


def levinson_durbin(r: Sequence[float], order: int) -> Tuple[np.ndarray, float, np.ndarray]:
    """
    Solve the normal equations for an order-`order` linear predictor.

    Args:
        r (array-like): Autocorrelation for lags 0..order.
        order (int): Prediction order.

    Returns:
        coefficients (np.ndarray): Denominator taps a[0..order-1] of the all-pole model
            1 / (1 + sum_k a[k-1] z^-k), i.e. x[n] ~ -sum_k a[k-1] * x[n-k].
        error (float): Final prediction error energy.
        reflection (np.ndarray): Reflection coefficients of every stage.

    A zero r[0] (silent input) gives all-zero coefficients. If the prediction error
    reaches zero before the last stage, the remaining coefficients stay zero.
    """
    r = np.asarray(r, dtype=float).ravel()
    a = np.zeros(order, dtype=float)
    reflection = np.zeros(order, dtype=float)
    error = float(r[0])
    if error == 0.0:
        return a, 0.0, reflection

    for i in range(order):
        if error <= 0.0:
            logger.debug("Prediction error vanished at stage %d of %d", i, order)
            break
        acc = r[i + 1] + np.dot(a[:i], r[i:0:-1])
        k = -acc / error
        previous = a[:i].copy()
        a[:i] = previous + k * previous[::-1]
        a[i] = k
        reflection[i] = k
        error *= (1.0 - k * k)

    return a, error, reflection


def compute_lpc(signal: Sequence[float], order: int) -> np.ndarray:
    """Autocorrelation-method LPC coefficients (denominator taps without the leading 1) of length `order`."""
    xs = np.asarray(signal, dtype=float).ravel()
    n = xs.shape[0]
    if isinstance(order, bool) or not isinstance(order, (int, np.integer)) or not 0 < order < n:
        raise InvalidOrder(order, n)
    r = autocorrelation(xs, order)
    coefficients, _, _ = levinson_durbin(r, int(order))
    return coefficients


def predict_next(reversed_coefficients: np.ndarray, history: np.ndarray) -> float:
    """
    One-step prediction from the last len(history) samples (oldest first).
    `reversed_coefficients` are the denominator taps in reverse order.
    """
    return -float(np.dot(reversed_coefficients, history))


def analysis_filter(coefficients: Sequence[float], signal: Sequence[float]) -> np.ndarray:
    """
    Prediction-error (FIR) filter A(z) = 1 + sum_k a_k z^-k.
    Returns residual = signal - predicted, same length as the signal.
    """
    a = np.asarray(coefficients, dtype=float).ravel()
    xs = np.asarray(signal, dtype=float).ravel()
    return lfilter(np.concatenate(([1.0], a)), [1.0], xs)


def synthesis_filter(coefficients: Sequence[float], residual: Sequence[float],
                     bounds: Optional[Tuple[float, float]] = None) -> np.ndarray:
    """
    All-pole filter 1 / A(z), the inverse of `analysis_filter`.
    Returns signal = residual + predicted, same length as the residual.

    With `bounds` = (low, high) every output sample saturates to that range before
    it is fed back, which keeps an unstable filter finite.
    """
    a = np.asarray(coefficients, dtype=float).ravel()
    es = np.asarray(residual, dtype=float).ravel()
    order = a.shape[0]
    reversed_a = a[::-1]

    # the first `order` entries are the zero initial state
    ys = np.zeros(es.shape[0] + order, dtype=float)
    for n in range(es.shape[0]):
        value = es[n] + predict_next(reversed_a, ys[n:n + order])
        if bounds is not None:
            value = min(max(value, bounds[0]), bounds[1])
        ys[n + order] = value
    return ys[order:]


def compute_snr(original: Sequence[float], reconstructed: Sequence[float]) -> Optional[float]:
    """
    Signal-to-noise ratio in dB: 10 * log10(sum(original^2) / sum(noise^2)).

    Returns None when the ratio is undefined, i.e. when either the original or the
    noise has zero energy. Raises LengthMismatch for signals of different length.
    """
    xs = np.asarray(original, dtype=float).ravel()
    ys = np.asarray(reconstructed, dtype=float).ravel()
    if xs.shape[0] != ys.shape[0]:
        raise LengthMismatch(xs.shape[0], ys.shape[0])

    signal_energy = float(np.sum(xs ** 2))
    noise_energy = float(np.sum((xs - ys) ** 2))
    if signal_energy == 0.0 or noise_energy == 0.0:
        return None
    return float(10 * np.log10(signal_energy / noise_energy))


def simulate_loss(units, loss_rate: float, rng=None):
    """
    Memoryless erasure: keep every unit independently with probability 1 - loss_rate.

    Args:
        units: bitarray (bit erasure) or any sequence (e.g. a list of codewords).
        loss_rate (float): Erasure probability in [0, 1].
        rng: numpy Generator, seed, or None for fresh entropy.

    Returns:
        The surviving units in their original order, as a bitarray for bitarray input
        and as a list otherwise.
    """
    if not 0.0 <= loss_rate <= 1.0:
        raise ValueError(f"loss_rate must be in [0, 1], got {loss_rate}")
    rng = np.random.default_rng(rng)
    keep = rng.random(len(units)) >= loss_rate

    if isinstance(units, bitarray):
        bits = np.frombuffer(units.unpack(), dtype=np.uint8)
        survived = bitarray()
        survived.pack(bits[keep].tobytes())
        return survived
    return [unit for unit, kept in zip(units, keep) if kept]


def build_frequency_table(data_list):
    """
    Build a frequency table (dictionary) from a list of symbols.

    Args:
        data_list (list): List of symbols (integers or strings)

    Returns:
        dict: {symbol: frequency count}, in order of first appearance
    """
    if len(data_list) == 0:
        return {}

    freq_dict = dict(Counter(data_list))
    return freq_dict


def plot_reconstruction(
        original: Sequence[float],
        reconstructed: Sequence[float],
        sample_rate: Optional[int] = None,
        path: Optional[str] = None,
        figsize: tuple = (10, 6),
        show: bool = True,
        title: Optional[str] = None
) -> None:
    """
    Plot the original and reconstructed waveforms and the reconstruction error.

    Parameters
    ----------
    original, reconstructed : 1D array-like
        Signals to compare. Only the common prefix is drawn when lengths differ.
    sample_rate : int, optional
        If given, the x axis is in seconds instead of samples.
    path : str, optional
        Where to save the figure.
    figsize : tuple
        Figure size.
    show : bool
        If True, calls plt.show().
    title : str, optional
        Plot title.
    """
    xs = np.asarray(original, dtype=float).ravel()
    ys = np.asarray(reconstructed, dtype=float).ravel()
    n = min(xs.shape[0], ys.shape[0])
    if n == 0:
        raise ValueError("Nothing to plot: one of the signals is empty")

    t = np.arange(n) / sample_rate if sample_rate else np.arange(n)

    fig = plt.figure(figsize=figsize)
    ax_signal = fig.add_subplot(2, 1, 1)
    ax_signal.plot(t, xs[:n], label='Original', linewidth=1)
    ax_signal.plot(t, ys[:n], '--', label='Reconstructed', linewidth=1)
    ax_signal.set_ylabel('Amplitude')
    ax_signal.legend()
    ax_signal.grid(True, linestyle='--', alpha=0.4)
    ax_signal.set_title('Original vs reconstruction' if title is None else title)

    ax_error = fig.add_subplot(2, 1, 2, sharex=ax_signal)
    ax_error.plot(t, xs[:n] - ys[:n], 'r-', linewidth=1)
    ax_error.set_xlabel('Time (s)' if sample_rate else 'Sample')
    ax_error.set_ylabel('Error')
    ax_error.grid(True, linestyle='--', alpha=0.4)
    fig.tight_layout()

    if path is not None:
        fig.savefig(path)
    if show:
        plt.show()
    plt.close(fig)
