"""
Per-signal entry points of the codec.

    q_coeffs, q_residual = lpc_encode(signal, order)
    coded, table = entropy_encode(int16_to_bytes(q_residual))
    received = simulate_loss(coded, loss_rate)
    symbols = entropy_decode(received, table)
    signal_hat = lpc_decode(q_coeffs, bytes_to_int16(symbols), order)
    snr(signal, signal_hat)

Quantized arrays are entropy coded as the bytes of their little-endian int16
representation, so every symbol is in 0..255.
"""
import logging
from typing import Sequence, List, Tuple, Optional

import numpy as np
from bitarray import bitarray

from .classes import LPCEncoder, LPCDecoder, HuffmanCoder, HuffmanCodeTable
from .constants import ORDER_DEFAULT
from .methods import compute_snr, simulate_loss

logger = logging.getLogger(__name__)

INT16_LE = np.dtype("<i2")

__all__ = [
    "lpc_encode", "lpc_decode", "entropy_encode", "entropy_decode", "simulate_loss", "snr",
    "int16_to_bytes", "bytes_to_int16",
]


def lpc_encode(signal: Sequence[float], order: int = ORDER_DEFAULT, closed_loop: bool = True) \
        -> Tuple[np.ndarray, np.ndarray]:
    """Signal -> (int16 Q15 coefficients, int16 residual)."""
    return LPCEncoder(order, closed_loop=closed_loop).encode(signal)


def lpc_decode(quantized_coefficients: Sequence[int], quantized_residual: Sequence[int],
               order: int = ORDER_DEFAULT) -> np.ndarray:
    """(int16 coefficients, int16 residual) -> reconstructed signal, one sample per residual sample."""
    return LPCDecoder(order).decode(quantized_coefficients, quantized_residual)


def entropy_encode(symbols: Sequence[int]) -> Tuple[bitarray, HuffmanCodeTable]:
    """Huffman code `symbols` with a table built from their own frequencies."""
    coder = HuffmanCoder()
    coded = coder.encode_symbols(symbols)
    return coded, coder.table


def entropy_decode(coded: bitarray, table: HuffmanCodeTable, strict: bool = True) -> List[int]:
    """
    Decode a (possibly damaged) stream. With strict=True a dangling partial codeword
    raises IncompleteCodeword, whose `decoded` attribute holds the complete symbols.
    """
    return HuffmanCoder(table, strict=strict).decode_symbols(coded)


def snr(original: Sequence[float], reconstructed: Sequence[float]) -> Optional[float]:
    return compute_snr(original, reconstructed)


def int16_to_bytes(values: Sequence[int]) -> List[int]:
    return list(np.asarray(values, dtype=INT16_LE).tobytes())


def bytes_to_int16(symbols: Sequence[int]) -> np.ndarray:
    """Reassemble int16 values; a dangling odd byte is dropped."""
    n = len(symbols) - len(symbols) % 2
    if n != len(symbols):
        logger.debug("Dropping dangling byte of a partial int16 sample")
    return np.frombuffer(bytes(int(s) for s in symbols[:n]), dtype=INT16_LE).astype(np.int16)
