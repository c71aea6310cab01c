"""
Byte layout of a coded signal, for when the two coded streams are persisted.

All integers are big-endian.

    magic "LPCH" | version u8 | order u16 | coefficient scale u32 | sample rate u32
    coefficient stream | residual stream

    stream := symbol count u32 | table size u16 | table entries | payload bit count u64 | payload
    entry  := symbol i32 | codeword length u8 | codeword, zero-padded to whole bytes

The payload is the coded bitstream, zero-padded to whole bytes.
"""
import struct
from dataclasses import dataclass
from io import BytesIO

import numpy as np
from bitarray import bitarray

from .classes import HuffmanCodeTable, HuffmanCoder
from .codec import bytes_to_int16, lpc_decode
from .constants import COEFFICIENT_SCALE

MAGIC = b"LPCH"
VERSION = 1

_HEADER = struct.Struct(">4sBHII")
_STREAM_HEADER = struct.Struct(">IH")
_ENTRY = struct.Struct(">iB")
_BIT_COUNT = struct.Struct(">Q")


@dataclass
class CodedStream:
    """One entropy-coded array: its code table, its bits and how many symbols they hold."""
    table: HuffmanCodeTable
    bits: bitarray
    symbol_count: int


@dataclass
class CodedSignal:
    order: int
    sample_rate: int
    coefficients: CodedStream
    residual: CodedStream
    scale: int = COEFFICIENT_SCALE


def _n_bytes(n_bits: int) -> int:
    return (n_bits + 7) // 8


def _read(buffer: BytesIO, layout: struct.Struct) -> tuple:
    chunk = buffer.read(layout.size)
    if len(chunk) != layout.size:
        raise ValueError("Truncated payload")
    return layout.unpack(chunk)


def _write_stream(buffer: BytesIO, stream: CodedStream) -> None:
    triples = stream.table.to_triples()
    buffer.write(_STREAM_HEADER.pack(stream.symbol_count, len(triples)))
    for symbol, length, value in triples:
        buffer.write(_ENTRY.pack(symbol, length))
        # left-align the codeword so it reads back as the leading bits
        padded = value << (8 * _n_bytes(length) - length)
        buffer.write(padded.to_bytes(_n_bytes(length), "big"))
    buffer.write(_BIT_COUNT.pack(len(stream.bits)))
    buffer.write(stream.bits.tobytes())


def _read_stream(buffer: BytesIO) -> CodedStream:
    symbol_count, n_entries = _read(buffer, _STREAM_HEADER)
    triples = []
    for _ in range(n_entries):
        symbol, length = _read(buffer, _ENTRY)
        raw = buffer.read(_n_bytes(length))
        if len(raw) != _n_bytes(length):
            raise ValueError("Truncated code table")
        value = int.from_bytes(raw, "big") >> (8 * _n_bytes(length) - length)
        triples.append((symbol, length, value))

    (n_bits,) = _read(buffer, _BIT_COUNT)
    raw = buffer.read(_n_bytes(n_bits))
    if len(raw) != _n_bytes(n_bits):
        raise ValueError("Truncated bit payload")
    bits = bitarray()
    bits.frombytes(raw)
    del bits[n_bits:]
    return CodedStream(HuffmanCodeTable.from_triples(triples), bits, symbol_count)


def dumps_payload(coded: CodedSignal) -> bytes:
    buffer = BytesIO()
    buffer.write(_HEADER.pack(MAGIC, VERSION, coded.order, coded.scale, coded.sample_rate))
    _write_stream(buffer, coded.coefficients)
    _write_stream(buffer, coded.residual)
    return buffer.getvalue()


def loads_payload(data: bytes) -> CodedSignal:
    buffer = BytesIO(data)
    magic, version, order, scale, sample_rate = _read(buffer, _HEADER)
    if magic != MAGIC:
        raise ValueError(f"Not a coded LPC signal (magic {magic!r})")
    if version != VERSION:
        raise ValueError(f"Unsupported payload version {version}")
    coefficients = _read_stream(buffer)
    residual = _read_stream(buffer)
    return CodedSignal(order, sample_rate, coefficients, residual, scale)


def _decode_stream(stream: CodedStream) -> list:
    symbols = HuffmanCoder(stream.table).decode_symbols(stream.bits)
    if len(symbols) != stream.symbol_count:
        raise ValueError(f"Decoded {len(symbols)} symbols, header says {stream.symbol_count}")
    return symbols


def decode_payload(coded: CodedSignal) -> np.ndarray:
    """Entropy decode both streams of an intact coded signal and synthesize it."""
    if coded.scale != COEFFICIENT_SCALE:
        raise ValueError(f"Unsupported coefficient scale {coded.scale}")
    q_coeffs = bytes_to_int16(_decode_stream(coded.coefficients))
    q_residual = bytes_to_int16(_decode_stream(coded.residual))
    return lpc_decode(q_coeffs, q_residual, coded.order)
