import heapq
import logging
from dataclasses import dataclass
from typing import Sequence, List, Optional, Tuple, Dict, Any

import numpy as np
from bitarray import bitarray, decodetree
from bitarray.util import ba2int, int2ba

from .constants import (
    ORDER_DEFAULT, LOSS_RATE_DEFAULT, BITRATE_DEFAULT, GRANULARITIES, GRANULARITY_DEFAULT,
    MISMATCH_POLICIES, MISMATCH_POLICY_DEFAULT, INT16_MIN, INT16_MAX, INT16_LEVELS,
    COEFFICIENT_SCALE, RESIDUAL_SCALE, RECONSTRUCTION_BOUNDS,
)
from .errors import QuantizationOverflow, IncompleteCodeword
from .methods import compute_lpc, analysis_filter, synthesis_filter, predict_next, build_frequency_table, \
    simulate_loss
from .types import Coder, Quantizer, Encoder, Decoder, Channel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CodecConfig:
    """
    Values consumed by the pipeline. Sourcing them (CLI, tests) is up to the caller.

    `bitrate` is carried into the results but never enforced.
    """
    order: int = ORDER_DEFAULT
    loss_rate: float = LOSS_RATE_DEFAULT
    bitrate: int = BITRATE_DEFAULT
    granularity: str = GRANULARITY_DEFAULT
    mismatch_policy: str = MISMATCH_POLICY_DEFAULT
    closed_loop: bool = True
    seed: Optional[int] = None

    def __post_init__(self):
        if not 0.0 <= self.loss_rate <= 1.0:
            raise ValueError(f"loss_rate must be in [0, 1], got {self.loss_rate}")
        if self.granularity not in GRANULARITIES:
            raise ValueError(f"Invalid loss granularity: {self.granularity} (expected one of {GRANULARITIES})")
        if self.mismatch_policy not in MISMATCH_POLICIES:
            raise ValueError(f"Invalid mismatch policy: {self.mismatch_policy} (expected one of {MISMATCH_POLICIES})")


class FixedPointQuantizer(Quantizer):
    """
    Scaled rounding onto the signed 16-bit grid.

    Maps value -> symbol via q = round(value * scale), clamped to [-32768, 32767].
    Reconstruction: value_hat = q / scale.
    Rounding is half-to-even. With clip=False, out-of-range values raise
    QuantizationOverflow instead of being clamped.
    """

    def __init__(self, scale: float = 1.0, clip: bool = True):
        assert scale > 0, "scale must be positive"
        self.scale = float(scale)
        self.min_sym = INT16_MIN
        self.max_sym = INT16_MAX
        self.clip = bool(clip)

    def value_to_symbol(self, value: float) -> int:
        q = int(np.round(float(value) * self.scale))
        if not (self.min_sym <= q <= self.max_sym):
            if not self.clip:
                raise QuantizationOverflow(1, self.min_sym, self.max_sym)
            q = max(self.min_sym, min(q, self.max_sym))
        return q

    def symbol_to_value(self, symbol: int) -> float:
        return int(symbol) / self.scale

    def symbol_range(self) -> int:
        return INT16_LEVELS

    def count_overflows(self, values: Sequence[float]) -> int:
        """Number of values that land outside the 16-bit range before clamping."""
        scaled = np.round(np.asarray(values, dtype=float) * self.scale)
        return int(np.count_nonzero((scaled < self.min_sym) | (scaled > self.max_sym)))

    def quantize(self, values: Sequence[float]) -> np.ndarray:
        scaled = np.round(np.asarray(values, dtype=float).ravel() * self.scale)
        overflows = int(np.count_nonzero((scaled < self.min_sym) | (scaled > self.max_sym)))
        if overflows:
            if not self.clip:
                raise QuantizationOverflow(overflows, self.min_sym, self.max_sym)
            logger.warning("%s clamped %d of %d value(s) to [%d, %d]",
                           type(self).__name__, overflows, scaled.shape[0], self.min_sym, self.max_sym)
        return np.clip(scaled, self.min_sym, self.max_sym).astype(np.int16)

    def dequantize(self, symbols: Sequence[int]) -> np.ndarray:
        return np.asarray(symbols, dtype=float).ravel() / self.scale


class CoefficientQuantizer(FixedPointQuantizer):
    """Q15 quantizer for predictor coefficients (step 2^-15, range [-1, 1 - 2^-15])."""

    def __init__(self, clip: bool = True):
        super().__init__(scale=COEFFICIENT_SCALE, clip=clip)


class ResidualQuantizer(FixedPointQuantizer):
    """Integer quantizer for residual samples (step 1, no scaling)."""

    def __init__(self, clip: bool = True):
        super().__init__(scale=RESIDUAL_SCALE, clip=clip)


class LPCEncoder(Encoder):
    """
    LPC encoder: estimate the predictor, quantize it, then produce the quantized residual.

    Workflow:
      1. coefficients = compute_lpc(signal, order)
      2. q_coeffs = coefficient_quantizer.quantize(coefficients)
      3. the residual is taken against the DEQUANTIZED coefficients, the ones the decoder sees
      4. closed loop: each prediction uses previously reconstructed samples, so the
         decoder error per sample stays within half a residual step; reconstructed
         samples saturate to `bounds` exactly as in LPCDecoder
         open loop: residual = analysis_filter(coeffs, signal), quantized afterwards

    After encode(), `overflows` holds the number of clamped coefficients and residual samples.
    """

    def __init__(
        self,
        order: int = ORDER_DEFAULT,
        coefficient_quantizer: Quantizer = None,
        residual_quantizer: Quantizer = None,
        closed_loop: bool = True,
        bounds: Optional[Tuple[float, float]] = RECONSTRUCTION_BOUNDS,
    ):
        self.order = order
        self.bounds = bounds
        self.coefficient_quantizer = coefficient_quantizer if coefficient_quantizer is not None \
            else CoefficientQuantizer()
        self.residual_quantizer = residual_quantizer if residual_quantizer is not None else ResidualQuantizer()
        self.closed_loop = bool(closed_loop)
        self.overflows = {"coefficients": 0, "residual": 0}

    def encode(self, data: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
        xs = np.asarray(data, dtype=float).ravel()
        coefficients = compute_lpc(xs, self.order)

        self.overflows["coefficients"] = self.coefficient_quantizer.count_overflows(coefficients)
        q_coeffs = self.coefficient_quantizer.quantize(coefficients)
        used = self.coefficient_quantizer.dequantize(q_coeffs)

        if self.closed_loop:
            q_residual = self._closed_loop_residual(used, xs)
        else:
            residual = analysis_filter(used, xs)
            self.overflows["residual"] = self.residual_quantizer.count_overflows(residual)
            q_residual = self.residual_quantizer.quantize(residual)
        return q_coeffs, q_residual

    def _closed_loop_residual(self, coefficients: np.ndarray, xs: np.ndarray) -> np.ndarray:
        order = coefficients.shape[0]
        reversed_a = coefficients[::-1]
        quantizer = self.residual_quantizer

        # reconstruction as the decoder will compute it, with `order` zeros of initial state
        recon = np.zeros(xs.shape[0] + order, dtype=float)
        q_residual = np.zeros(xs.shape[0], dtype=np.int16)
        overflows = 0
        for n in range(xs.shape[0]):
            pred = predict_next(reversed_a, recon[n:n + order])
            residual = xs[n] - pred
            sym = quantizer.value_to_symbol(residual)
            if sym != int(np.round(residual * quantizer.scale)):
                overflows += 1
            q_residual[n] = sym
            value = quantizer.symbol_to_value(sym) + pred
            if self.bounds is not None:
                value = min(max(value, self.bounds[0]), self.bounds[1])
            recon[n + order] = value

        self.overflows["residual"] = overflows
        if overflows:
            logger.warning("Residual quantizer clamped %d of %d sample(s)", overflows, xs.shape[0])
        return q_residual


class LPCDecoder(Decoder):
    """
    LPC decoder: dequantize coefficients and residual, then run the synthesis filter.

    A coefficient vector damaged by the channel is zero-padded or truncated to `order`.
    Output samples saturate to `bounds` (the 16-bit range by default).
    """

    def __init__(
        self,
        order: int = ORDER_DEFAULT,
        coefficient_quantizer: Quantizer = None,
        residual_quantizer: Quantizer = None,
        bounds: Optional[Tuple[float, float]] = RECONSTRUCTION_BOUNDS,
    ):
        self.order = int(order)
        self.bounds = bounds
        self.coefficient_quantizer = coefficient_quantizer if coefficient_quantizer is not None \
            else CoefficientQuantizer()
        self.residual_quantizer = residual_quantizer if residual_quantizer is not None else ResidualQuantizer()

    def decode(self, quantized_coefficients: Sequence[int], quantized_residual: Sequence[int]) -> np.ndarray:
        coefficients = self.coefficient_quantizer.dequantize(quantized_coefficients)
        if coefficients.shape[0] != self.order:
            logger.warning("Expected %d coefficients, received %d; fitting to order",
                           self.order, coefficients.shape[0])
            fitted = np.zeros(self.order, dtype=float)
            kept = min(self.order, coefficients.shape[0])
            fitted[:kept] = coefficients[:kept]
            coefficients = fitted

        residual = self.residual_quantizer.dequantize(quantized_residual)
        return synthesis_filter(coefficients, residual, self.bounds)


class HuffmanCodeTable:
    """
    Prefix-free mapping symbol -> codeword (bitarray).

    Built from a frequency table by repeatedly merging the two lightest nodes.
    Ties go to the node created first: leaves in order of first appearance of
    their symbol, merged nodes after all leaves in merge order. The first node
    popped becomes the left child; a left edge is 0 and a right edge is 1.
    A single distinct symbol gets the codeword 0.
    """

    def __init__(self, codewords: Dict[Any, bitarray]):
        self._codewords = {}
        self._lookup = {}
        for symbol, codeword in codewords.items():
            codeword = bitarray(codeword)
            if len(codeword) == 0:
                raise ValueError(f"Empty codeword for symbol {symbol!r}")
            self._codewords[symbol] = codeword
            self._lookup[codeword.to01()] = symbol
        if len(self._lookup) != len(self._codewords):
            raise ValueError("Codewords must be unique")

    @classmethod
    def from_frequencies(cls, freq_table: Dict[Any, int]) -> "HuffmanCodeTable":
        if len(freq_table) == 0:
            return cls({})
        if len(freq_table) == 1:
            (symbol,) = freq_table
            return cls({symbol: bitarray("0")})

        # (weight, creation index, node); a leaf is (symbol,), an internal node is (left, right)
        heap = [(count, index, (symbol,)) for index, (symbol, count) in enumerate(freq_table.items())]
        heapq.heapify(heap)
        next_index = len(heap)
        while len(heap) > 1:
            w_left, _, left = heapq.heappop(heap)
            w_right, _, right = heapq.heappop(heap)
            heapq.heappush(heap, (w_left + w_right, next_index, (left, right)))
            next_index += 1

        codewords = {}
        stack = [(heap[0][2], bitarray())]
        while stack:
            node, prefix = stack.pop()
            if len(node) == 1:
                codewords[node[0]] = prefix
            else:
                left, right = node
                stack.append((right, prefix + bitarray("1")))
                stack.append((left, prefix + bitarray("0")))

        # keep the symbol order of the frequency table
        return cls({symbol: codewords[symbol] for symbol in freq_table})

    @classmethod
    def from_symbols(cls, symbols: Sequence[Any]) -> "HuffmanCodeTable":
        return cls.from_frequencies(build_frequency_table(list(symbols)))

    def codeword(self, symbol) -> bitarray:
        try:
            return self._codewords[symbol]
        except KeyError:
            raise ValueError(f"Symbol {symbol!r} is not in the code table") from None

    def lookup(self, pattern: str):
        """Symbol whose codeword is exactly `pattern` (a '0'/'1' string), else None."""
        return self._lookup.get(pattern)

    def __contains__(self, symbol) -> bool:
        return symbol in self._codewords

    def __len__(self) -> int:
        return len(self._codewords)

    def __iter__(self):
        return iter(self._codewords)

    def __eq__(self, other) -> bool:
        if not isinstance(other, HuffmanCodeTable):
            return NotImplemented
        return self._codewords == other._codewords

    def items(self):
        return self._codewords.items()

    @property
    def max_length(self) -> int:
        return max((len(cw) for cw in self._codewords.values()), default=0)

    def is_prefix_free(self) -> bool:
        patterns = sorted(self._lookup)
        # after sorting, a prefix sorts directly before some word that extends it
        return not any(b.startswith(a) for a, b in zip(patterns, patterns[1:]))

    def decode_prefix(self, coded: bitarray) -> Tuple[List[Any], int]:
        """
        Decode the complete codewords at the start of `coded`.

        Returns the symbols and the number of bits they span. Decoding stops at the
        first bits that match no codeword or end before a codeword is complete.
        """
        symbols = []
        consumed = 0
        if not self._codewords:
            return symbols, consumed
        try:
            for symbol in coded.decode(decodetree(self._codewords)):
                symbols.append(symbol)
                consumed += len(self._codewords[symbol])
        except ValueError as exc:
            # the caller reports coded[consumed:] as leftover
            logger.debug("Prefix decode stopped after %d bit(s): %s", consumed, exc)
        return symbols, consumed

    def split(self, coded: bitarray) -> List[bitarray]:
        """Cut an intact coded stream into its codewords."""
        symbols, consumed = self.decode_prefix(coded)
        if consumed < len(coded):
            raise IncompleteCodeword(symbols, coded[consumed:])
        codewords = []
        start = 0
        for symbol in symbols:
            end = start + len(self._codewords[symbol])
            codewords.append(coded[start:end])
            start = end
        return codewords

    def to_triples(self) -> List[Tuple[int, int, int]]:
        """Serializable form: [(symbol, codeword length, codeword as unsigned int), ...]."""
        return [(symbol, len(cw), ba2int(cw)) for symbol, cw in self._codewords.items()]

    @classmethod
    def from_triples(cls, triples: Sequence[Tuple[int, int, int]]) -> "HuffmanCodeTable":
        table = cls({symbol: int2ba(int(value), length=int(length)) for symbol, length, value in triples})
        if not table.is_prefix_free():
            raise ValueError("Codewords do not form a prefix code")
        return table


class HuffmanCoder(Coder):
    """
    Huffman entropy coder.

    encode_symbols() builds a fresh code table from the symbols it is given and
    keeps it in `self.table`; decode_symbols() uses that table (or the one passed
    at construction). In strict mode a stream that ends mid-codeword raises
    IncompleteCodeword; otherwise the complete symbols are returned.
    """

    def __init__(self, table: HuffmanCodeTable = None, strict: bool = True):
        self.table = table
        self.strict = bool(strict)

    def encode_symbols(self, symbols: Sequence[int]) -> bitarray:
        symbols = [int(s) for s in symbols]
        self.table = HuffmanCodeTable.from_symbols(symbols)
        coded = bitarray()
        for symbol in symbols:
            coded.extend(self.table.codeword(symbol))
        return coded

    def decode_symbols(self, bitstream: bitarray) -> List[int]:
        assert self.table is not None, "decode_symbols needs a code table (encode first or pass one)"
        decoded, consumed = self.table.decode_prefix(bitstream)
        if consumed < len(bitstream):
            if self.strict:
                raise IncompleteCodeword(decoded, bitstream[consumed:])
            logger.info("Dropped %d trailing bit(s) after %d decoded symbol(s)",
                        len(bitstream) - consumed, len(decoded))
        return decoded


class ErasureChannel(Channel):
    """
    Independent erasure of coded units with probability `loss_rate`.

    granularity="bit" deletes single bits, which shifts every later codeword
    boundary. granularity="codeword" deletes whole codewords, so the receiver
    stays in sync and only loses symbols.
    """

    def __init__(self, loss_rate: float = LOSS_RATE_DEFAULT, granularity: str = GRANULARITY_DEFAULT, rng=None):
        if not 0.0 <= loss_rate <= 1.0:
            raise ValueError(f"loss_rate must be in [0, 1], got {loss_rate}")
        if granularity not in GRANULARITIES:
            raise ValueError(f"Invalid loss granularity: {granularity} (expected one of {GRANULARITIES})")
        self.loss_rate = float(loss_rate)
        self.granularity = granularity
        self.rng = np.random.default_rng(rng)

    def transmit(self, coded: bitarray, table: HuffmanCodeTable = None) -> bitarray:
        if self.granularity == "bit":
            return simulate_loss(coded, self.loss_rate, self.rng)

        if table is None:
            raise ValueError("Codeword erasure needs the code table to find codeword boundaries")
        received = bitarray()
        for codeword in simulate_loss(table.split(coded), self.loss_rate, self.rng):
            received.extend(codeword)
        return received
