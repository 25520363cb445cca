import random
import threading

import pytest

from videodedup.errors import IndexInconsistency, InvalidCodeLength
from videodedup.infrastructure.bitpack import VideoFingerprint
from videodedup.infrastructure.index.hamming_index import HammingIndex
from videodedup.infrastructure.index.mih import MultiIndexHash

A = "0" * 64
B = "1" * 64
C = "0" * 32 + "1" * 32


def _flip(code: int, rng: random.Random, nbits: int) -> int:
    for bit in rng.sample(range(64), nbits):
        code ^= 1 << bit
    return code


@pytest.fixture
def abc_index():
    index = HammingIndex()
    index.insert("A", A)
    index.insert("B", B)
    index.insert("C", C)
    return index


class TestHammingIndexBasics:
    def test_round_trip(self):
        index = HammingIndex()
        fp = VideoFingerprint(0xDEADBEEF12345678)
        index.insert("v1", fp)
        assert index.nearest(fp) == ("v1", 0)
        assert index.get("v1") == fp
        assert "v1" in index and len(index) == 1

    def test_insert_replaces_existing_code(self):
        index = HammingIndex()
        index.insert("v1", A)
        index.insert("v1", B)
        assert len(index) == 1
        assert index.nearest(B) == ("v1", 0)
        assert index.within_distance(A, 10) == []

    def test_empty_index(self):
        index = HammingIndex()
        assert index.nearest(A) is None
        assert index.within_distance(A, 64) == []
        assert index.find_duplicates([("Q", A)], 90) == {}
        assert index.is_empty()

    def test_batch_insert_equivalent_to_sequential(self):
        seq, batch = HammingIndex(), HammingIndex()
        seq.insert("a", A)
        seq.insert("c", C)
        assert batch.batch_insert([("a", A), ("c", C)]) == 2
        for query in (A, B, C, "0" * 40 + "1" * 24):
            assert seq.nearest(query) == batch.nearest(query)
            assert seq.within_distance(query, 40) == batch.within_distance(query, 40)

    def test_batch_insert_rejects_bad_entry_without_mutating(self):
        index = HammingIndex()
        with pytest.raises(InvalidCodeLength):
            index.batch_insert([("a", A), ("bad", "0101")])
        assert len(index) == 0

    def test_remove(self, abc_index):
        assert abc_index.remove("A") is True
        assert abc_index.remove("A") is False
        assert abc_index.nearest(A)[0] != "A"
        assert all(vid != "A" for vid, _ in abc_index.within_distance(A, 64))

    def test_clear(self, abc_index):
        abc_index.clear()
        assert abc_index.nearest(A) is None

    def test_within_distance_sorted(self, abc_index):
        hits = abc_index.within_distance("0" * 60 + "1" * 4, 64)
        distances = [d for _, d in hits]
        assert distances == sorted(distances)
        assert hits[0] == ("A", 4)
        assert {vid for vid, _ in hits} == {"A", "B", "C"}

    def test_invalid_text_query(self, abc_index):
        with pytest.raises(InvalidCodeLength):
            abc_index.nearest("0" * 63)
        with pytest.raises(InvalidCodeLength):
            abc_index.insert("x", "2" * 64)


class TestEndToEndScenario:
    def test_nearest(self, abc_index):
        assert abc_index.nearest("0" * 60 + "1" * 4) == ("A", 4)

    def test_find_duplicates(self, abc_index):
        found = abc_index.find_duplicates([("Q", "0" * 62 + "1" * 2)], threshold_percent=90)
        assert list(found) == ["Q"]
        assert [vid for vid, _ in found["Q"]] == ["A"]
        assert found["Q"][0][1] == pytest.approx(96.875)

    def test_find_duplicates_excludes_self(self, abc_index):
        found = abc_index.find_duplicates([("A", A), ("C", C)], threshold_percent=90)
        assert found == {}


class TestFreshStale:
    def test_transitions(self):
        index = HammingIndex()
        assert not index.is_fresh
        index.nearest(A)
        assert index.is_fresh  # vacío también es Fresh

        index.insert("a", A)
        assert not index.is_fresh
        index.nearest(A)
        assert index.is_fresh

        index.remove("missing")
        assert index.is_fresh
        index.remove("a")
        assert not index.is_fresh

    def test_explicit_rebuild(self):
        index = HammingIndex()
        index.insert("a", A)
        index.rebuild()
        assert index.is_fresh
        assert index.stats() == {"size": 1, "fresh": True, "blocks": 4}

    def test_inconsistency_is_surfaced(self):
        index = HammingIndex()
        index.insert("a", A)
        index.nearest(A)
        # Se rompe el invariante a propósito: el mapa cambia sin invalidar.
        del index._codes["a"]
        with pytest.raises(IndexInconsistency) as exc:
            index.nearest(A)
        assert exc.value.video_id == "a"


class TestMultiIndexHash:
    @pytest.fixture(scope="class")
    def corpus(self):
        rng = random.Random(7)
        base = [rng.getrandbits(64) for _ in range(200)]
        codes = list(base)
        # Vecinos cercanos para que los radios chicos tengan resultados
        for code in base:
            for nbits in (1, 3, 6, 11):
                codes.append(_flip(code, rng, nbits))
        codes += [rng.getrandbits(64) for _ in range(5000 - len(codes))]
        return codes

    def test_range_search_matches_linear_scan(self, corpus):
        mih = MultiIndexHash(corpus)
        rng = random.Random(11)
        for _ in range(40):
            query = _flip(rng.choice(corpus), rng, rng.randint(0, 8))
            for radius in (0, 3, 7, 12, 20):
                got = sorted(mih.range_search(query, radius))
                expected = sorted(
                    (pos, (query ^ c).bit_count())
                    for pos, c in enumerate(corpus)
                    if (query ^ c).bit_count() <= radius
                )
                assert got == expected

    def test_nearest_distance_matches_linear_scan(self, corpus):
        mih = MultiIndexHash(corpus)
        rng = random.Random(13)
        queries = [_flip(rng.choice(corpus), rng, rng.randint(0, 12)) for _ in range(30)]
        queries += [rng.getrandbits(64) for _ in range(10)]
        for query in queries:
            pos, dist = mih.nearest(query)
            assert dist == min((query ^ c).bit_count() for c in corpus)
            assert (query ^ corpus[pos]).bit_count() == dist

    def test_blocks_must_divide_64(self):
        with pytest.raises(ValueError):
            MultiIndexHash([], blocks=5)


class TestConcurrency:
    def test_concurrent_inserts_and_queries(self):
        index = HammingIndex()
        rng = random.Random(3)
        codes = {f"v{i}": rng.getrandbits(64) for i in range(400)}
        errors = []

        def writer(ids):
            try:
                for vid in ids:
                    index.insert(vid, codes[vid])
            except Exception as e:
                errors.append(e)

        def reader():
            try:
                for _ in range(200):
                    code = rng.getrandbits(64)
                    hit = index.nearest(code)
                    if hit is not None:
                        assert hit[0] in codes
                    index.within_distance(code, 8)
            except Exception as e:
                errors.append(e)

        ids = list(codes)
        threads = [threading.Thread(target=writer, args=(ids[i::4],)) for i in range(4)]
        threads += [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(index) == len(codes)
        for vid, code in codes.items():
            assert index.within_distance(code, 0)[0][1] == 0
            assert vid in {v for v, _ in index.within_distance(code, 0)}

    def test_removals_never_leak_during_queries(self):
        index = HammingIndex()
        index.batch_insert((f"v{i}", i) for i in range(300))
        removed = set()
        errors = []

        def remover():
            for i in range(0, 300, 2):
                index.remove(f"v{i}")
                removed.add(f"v{i}")

        def reader():
            try:
                for i in range(300):
                    index.within_distance(i, 2)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=remover)] + [threading.Thread(target=reader) for _ in range(3)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        hits = {vid for vid, _ in index.within_distance(0, 64)}
        assert hits.isdisjoint(removed)
        assert len(hits) == 150
