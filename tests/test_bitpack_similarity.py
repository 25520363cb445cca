import numpy as np
import pytest

from videodedup.errors import InvalidCodeLength
from videodedup.infrastructure.bitpack import (
    VideoFingerprint,
    bits_to_code,
    code_from_text,
    code_to_bits,
    code_to_text,
)
from videodedup.services.similarity import (
    classify,
    hamming_distance,
    max_distance_for_threshold,
    similarity_percent,
)

ZEROS = "0" * 64
ONES = "1" * 64
HALF = "0" * 32 + "1" * 32


class TestDistanceAndSimilarity:
    def test_distance_is_a_metric(self):
        a, b = code_from_text(ZEROS), code_from_text(HALF)
        assert hamming_distance(a, a) == 0
        assert hamming_distance(a, b) == hamming_distance(b, a)

    def test_known_distances(self):
        assert hamming_distance(code_from_text(ZEROS), code_from_text(ONES)) == 64
        assert hamming_distance(code_from_text(HALF), code_from_text(ZEROS)) == 32

    def test_similarity_values(self):
        zeros, ones = VideoFingerprint.from_bits(ZEROS), VideoFingerprint.from_bits(ONES)
        assert zeros.similarity(zeros) == 100.0
        assert zeros.similarity(ones) == 0.0
        assert similarity_percent(32) == 50.0
        assert similarity_percent(2) == pytest.approx(96.875)

    @pytest.mark.parametrize(
        "threshold, expected",
        [(100, 0), (90, 6), (85, 10), (50, 32), (0, 64), (99.3, 0), (99.2, 1)],
    )
    def test_threshold_to_max_distance_rounds(self, threshold, expected):
        assert max_distance_for_threshold(threshold) == expected

    def test_classify(self):
        assert classify(100.0, 85, 98) == "exact_duplicate"
        assert classify(98.0, 85, 98) == "exact_duplicate"
        assert classify(90.0, 85, 98) == "near_duplicate"
        assert classify(84.9, 85, 98) == "unique"


class TestTextCodec:
    def test_msb_first(self):
        assert code_from_text("1" + "0" * 63) == 1 << 63
        assert code_from_text("0" * 63 + "1") == 1
        assert code_to_text(1 << 63) == "1" + "0" * 63

    def test_vector_position_maps_to_text_position(self):
        bits = np.zeros(64, dtype=bool)
        bits[3] = True
        code = bits_to_code(bits)
        assert code_to_text(code)[3] == "1"
        assert code == 1 << 60
        assert code_to_bits(code)[3] == 1

    @pytest.mark.parametrize("text", ["", "0" * 63, "0" * 65, "0" * 63 + "2", "0" * 63 + " "])
    def test_rejects_malformed_text(self, text):
        with pytest.raises(InvalidCodeLength):
            code_from_text(text)

    def test_invalid_code_length_is_value_error(self):
        with pytest.raises(ValueError):
            VideoFingerprint.from_bits("01")


class TestVideoFingerprint:
    def test_bytes_are_big_endian(self):
        fp = VideoFingerprint(0x0102030405060708)
        assert fp.to_bytes() == bytes([1, 2, 3, 4, 5, 6, 7, 8])
        assert VideoFingerprint.from_bytes(fp.to_bytes()) == fp

    def test_out_of_range_code(self):
        with pytest.raises(InvalidCodeLength):
            VideoFingerprint(1 << 64)
        with pytest.raises(InvalidCodeLength):
            VideoFingerprint(-1)

    def test_str_is_text_form(self):
        assert str(VideoFingerprint.from_bits(HALF)) == HALF
