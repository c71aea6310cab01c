from typing import Protocol, runtime_checkable, Any, Sequence, List, Tuple, Iterator, Optional
import numpy as np
from bitarray import bitarray


@runtime_checkable
class Encoder(Protocol):
    """
    Protocol representing the source encoder of the pipeline.

    Any class implementing this protocol must provide an `encode` method that
    takes a signal and returns the quantized model parameters and the quantized
    residual. This allows the Evaluator to run the pipeline without depending on
    a specific predictor.
    """

    def encode(self, data: Any) -> Tuple[np.ndarray, np.ndarray]:
        """
        Encodes a signal into quantized coefficients and a quantized residual.

        Args:
            data (Any): 1D sequence of samples.

        Returns:
            Tuple[np.ndarray, np.ndarray]: int16 coefficients and int16 residual.
        """
        ...


@runtime_checkable
class Decoder(Protocol):
    """
    Protocol representing the source decoder of the pipeline.

    Any class implementing this protocol must provide a `decode` method that
    takes the (possibly damaged) quantized streams and reconstructs a signal.
    """

    def decode(self, quantized_coefficients: Any, quantized_residual: Any) -> np.ndarray:
        """
        Reconstructs a signal from quantized coefficients and residual.

        Args:
            quantized_coefficients (Any): int16 coefficient codes.
            quantized_residual (Any): int16 residual samples.

        Returns:
            np.ndarray: Reconstructed samples, one per residual sample.
        """
        ...


@runtime_checkable
class Coder(Protocol):
    """
    Coder protocol (abstracts the entropy coder) used to encode/decode integer symbols.

    Implementations must:
      - encode_symbols(symbols: Sequence[int]) -> bitarray
      - decode_symbols(bitstream: bitarray) -> List[int]
    The decode_symbols should return symbols in the same order as they were encoded.
    """

    def encode_symbols(self, symbols: Sequence[int]) -> bitarray: ...

    def decode_symbols(self, bitstream: bitarray) -> List[int]: ...


@runtime_checkable
class Quantizer(Protocol):
    def value_to_symbol(self, value: float) -> int:
        """Quantize value (float) -> integer symbol."""
        ...

    def symbol_to_value(self, symbol: int) -> float:
        """Integer symbol -> reconstructed value (float)."""
        ...

    def symbol_range(self) -> int:
        """Return number of available discrete symbols (levels)."""
        ...

    def quantize(self, values: Sequence[float]) -> np.ndarray:
        """Quantize a whole array."""
        ...

    def dequantize(self, symbols: Sequence[int]) -> np.ndarray:
        """Dequantize a whole array."""
        ...


@runtime_checkable
class Channel(Protocol):
    """Protocol for the lossy transport between entropy encoder and decoder."""

    def transmit(self, coded: bitarray, table: Any = None) -> bitarray:
        """Return what the receiver gets when `coded` is sent over the channel."""
        ...


@runtime_checkable
class AudioSource(Protocol):
    """
    Protocol for anything that produces signals to evaluate.

    next_signal() returns the next AudioSignal, or None once exhausted.
    """

    def next_signal(self) -> Optional[Any]: ...

    def __iter__(self) -> Iterator[Any]: ...


@runtime_checkable
class AudioSink(Protocol):
    """Protocol for anything that persists a reconstructed signal."""

    def write(self, samples: np.ndarray, sample_rate: int, identifier: str) -> Any: ...
