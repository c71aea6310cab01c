import numpy as np
import pytest
from bitarray import bitarray

from lpc_codec_evaluation.classes import HuffmanCodeTable, HuffmanCoder
from lpc_codec_evaluation.codec import entropy_encode, entropy_decode, int16_to_bytes, bytes_to_int16
from lpc_codec_evaluation.errors import IncompleteCodeword
from lpc_codec_evaluation.methods import build_frequency_table


SKEWED = [0] * 5 + [1] * 2 + [2] + [3]


def test_frequency_table_keeps_first_appearance_order():
    table = build_frequency_table([3, 1, 3, 2, 1, 3])
    assert table == {3: 3, 1: 2, 2: 1}
    assert list(table) == [3, 1, 2]
    assert build_frequency_table([]) == {}


def test_known_code_table():
    table = HuffmanCodeTable.from_symbols(SKEWED)
    codes = {symbol: cw.to01() for symbol, cw in table.items()}
    assert codes == {0: "1", 1: "00", 2: "010", 3: "011"}
    assert table.max_length == 3


def test_table_construction_is_deterministic():
    rng = np.random.default_rng(11)
    symbols = rng.integers(0, 40, 2000).tolist()
    assert HuffmanCodeTable.from_symbols(symbols) == HuffmanCodeTable.from_symbols(symbols)


def test_code_is_prefix_free():
    rng = np.random.default_rng(2)
    symbols = rng.geometric(0.2, 5000).tolist()
    table = HuffmanCodeTable.from_symbols(symbols)
    assert table.is_prefix_free()
    words = [cw.to01() for _, cw in table.items()]
    for a in words:
        for b in words:
            assert a == b or not b.startswith(a)


def test_round_trip():
    rng = np.random.default_rng(7)
    symbols = rng.integers(0, 256, 3000).tolist()
    coded, table = entropy_encode(symbols)
    assert isinstance(coded, bitarray)
    assert entropy_decode(coded, table) == symbols


def test_frequent_symbols_get_short_codes():
    coded, table = entropy_encode(SKEWED)
    assert len(coded) == 5 * 1 + 2 * 2 + 3 + 3
    assert len(table.codeword(0)) <= len(table.codeword(3))


def test_identical_symbols_scenario():
    coded, table = entropy_encode([42] * 500)
    assert len(table) == 1
    assert table.codeword(42).to01() == "0"
    assert len(coded) == 500
    assert entropy_decode(coded, table) == [42] * 500


def test_empty_input():
    coded, table = entropy_encode([])
    assert len(coded) == 0
    assert len(table) == 0
    assert entropy_decode(coded, table) == []


def test_missing_symbol():
    table = HuffmanCodeTable.from_symbols(SKEWED)
    assert 0 in table and 9 not in table
    with pytest.raises(ValueError):
        table.codeword(9)


def test_dangling_bits_strict_and_lenient():
    # equal weights: two merges of leaves, then one of the merged nodes
    coded, table = entropy_encode([0, 1, 2, 3])
    assert coded.to01() == "00011011"
    damaged = coded[:-1]

    with pytest.raises(IncompleteCodeword) as info:
        entropy_decode(damaged, table)
    assert info.value.decoded == [0, 1, 2]
    assert info.value.leftover.to01() == "1"

    assert entropy_decode(damaged, table, strict=False) == [0, 1, 2]


def test_dangling_bits_with_unequal_code_lengths():
    table = HuffmanCodeTable.from_symbols(SKEWED)
    coded = bitarray()
    for symbol in [0, 1, 2, 3]:
        coded.extend(table.codeword(symbol))
    assert coded.to01() == "100010011"

    with pytest.raises(IncompleteCodeword) as info:
        HuffmanCoder(table).decode_symbols(coded[:-1])
    assert info.value.decoded == [0, 1, 2]
    assert info.value.leftover.to01() == "01"


def test_unmatched_bits_stop_the_decode():
    # with one symbol only "0" is a codeword, so a 1 can never be matched
    _, table = entropy_encode([5, 5, 5])
    with pytest.raises(IncompleteCodeword) as info:
        entropy_decode(bitarray("0010"), table)
    assert info.value.decoded == [5, 5]
    assert info.value.leftover.to01() == "10"
    assert entropy_decode(bitarray("0010"), table, strict=False) == [5, 5]


def test_decode_prefix_reports_consumed_bits():
    table = HuffmanCodeTable.from_symbols(SKEWED)
    assert table.decode_prefix(bitarray("1000100")) == ([0, 1, 2], 6)
    assert table.decode_prefix(bitarray()) == ([], 0)
    assert HuffmanCodeTable({}).decode_prefix(bitarray("01")) == ([], 0)


def test_decoder_needs_a_table():
    with pytest.raises(AssertionError):
        HuffmanCoder().decode_symbols(bitarray("0101"))


def test_split_into_codewords():
    coded, table = entropy_encode(SKEWED)
    pieces = table.split(coded)
    assert len(pieces) == len(SKEWED)
    assert [table.lookup(p.to01()) for p in pieces] == SKEWED
    with pytest.raises(IncompleteCodeword):
        table.split(coded + bitarray("0"))


def test_triples_round_trip():
    table = HuffmanCodeTable.from_symbols(SKEWED)
    triples = table.to_triples()
    assert (2, 3, 0b010) in triples
    assert HuffmanCodeTable.from_triples(triples) == table


def test_rejects_bad_tables():
    with pytest.raises(ValueError):
        HuffmanCodeTable.from_triples([(0, 1, 0), (1, 2, 0b01)])
    with pytest.raises(ValueError):
        HuffmanCodeTable({0: bitarray("01"), 1: bitarray("01")})
    with pytest.raises(ValueError):
        HuffmanCodeTable({0: bitarray()})


def test_int16_byte_symbols():
    values = np.array([0, 1, -1, 32767, -32768, 258], dtype=np.int16)
    symbols = int16_to_bytes(values)
    assert len(symbols) == 12
    assert all(0 <= s <= 255 for s in symbols)
    assert symbols[:6] == [0, 0, 1, 0, 255, 255]
    assert np.array_equal(bytes_to_int16(symbols), values)
    # a dangling byte from a damaged stream is dropped
    assert np.array_equal(bytes_to_int16(symbols + [7]), values)
    assert bytes_to_int16([]).shape == (0,)


if __name__ == "__main__":
    test_known_code_table()
    test_round_trip()
    test_identical_symbols_scenario()
    test_empty_input()
    test_dangling_bits_strict_and_lenient()
    test_triples_round_trip()
    print("All tests passed")
