class CodecError(Exception):
    """Base class for every error raised by the LPC codec pipeline."""


class InvalidOrder(CodecError, ValueError):
    """The prediction order is not positive or not smaller than the signal length."""

    def __init__(self, order, n_samples: int):
        self.order = order
        self.n_samples = int(n_samples)
        super().__init__(
            f"LPC order must satisfy 0 < order < {self.n_samples} (signal length), got {order}"
        )


class QuantizationOverflow(CodecError, ValueError):
    """Values fell outside the 16-bit fixed-point range and clipping was disabled."""

    def __init__(self, count: int, low: int, high: int):
        self.count = int(count)
        self.low = low
        self.high = high
        super().__init__(f"{self.count} value(s) outside the representable range [{low}, {high}]")


class IncompleteCodeword(CodecError):
    """
    The coded stream ended in the middle of a codeword.

    `decoded` holds every symbol recovered before the unmatched tail and
    `leftover` the trailing bits that matched no codeword.
    """

    def __init__(self, decoded, leftover):
        self.decoded = list(decoded)
        self.leftover = leftover
        super().__init__(
            f"Stream ended with {len(leftover)} bit(s) matching no codeword "
            f"after {len(self.decoded)} decoded symbol(s)"
        )


class LengthMismatch(CodecError, ValueError):
    """Original and reconstructed signals cannot be compared sample by sample."""

    def __init__(self, original_length: int, reconstructed_length: int):
        self.original_length = int(original_length)
        self.reconstructed_length = int(reconstructed_length)
        super().__init__(
            f"Signal lengths differ: original has {self.original_length} samples, "
            f"reconstruction has {self.reconstructed_length}"
        )
