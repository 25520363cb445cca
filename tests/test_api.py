import pytest
from fastapi.testclient import TestClient

from videodedup.application.services import dedup_service as dedup_module
from videodedup.errors import NoUsableFrames
from videodedup.infrastructure.bitpack import VideoFingerprint
from videodedup.infrastructure.settings import get_settings

A = "0" * 64
B = "1" * 64
C = "0" * 32 + "1" * 32

FINGERPRINTS = {
    "/videos/a.mp4": VideoFingerprint.from_bits(A),
    "/videos/a_copy.mp4": VideoFingerprint.from_bits("0" * 61 + "1" * 3),
    "/videos/c.mp4": VideoFingerprint.from_bits(C),
}


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("PRELOAD_ON_STARTUP", "false")
    monkeypatch.setenv("BACKFILL_TOKEN", "s3cret")
    get_settings.cache_clear()

    async def compute(source, settings=None, executor=None):
        try:
            return FINGERPRINTS[str(source)]
        except KeyError:
            raise NoUsableFrames(f"sin frames: {source}") from None

    monkeypatch.setattr(dedup_module, "compute_fingerprint", compute)

    from videodedup.main import app
    with TestClient(app) as c:
        yield c
    get_settings.cache_clear()


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestDedupEndpoint:
    def test_unique_then_duplicate(self, client):
        r = client.post("/api/dedup", json={"video_id": "a", "video_url": "/videos/a.mp4", "post_id": 7})
        assert r.status_code == 200
        body = r.json()
        assert body["kind"] == "unique"
        assert body["duplicated"] is False
        assert body["videohash"] == A
        assert body["publisher"]["post_id"] == 7

        r = client.post("/api/dedup", json={"video_id": "b", "url": "/videos/a_copy.mp4"})
        body = r.json()
        assert body["kind"] == "near_duplicate"
        assert body["matched_id"] == "a"
        assert body["distance"] == 3
        assert body["similarity"] == pytest.approx(95.3125)

    def test_unhashable_video_is_422(self, client):
        r = client.post("/api/dedup", json={"video_id": "x", "video_url": "/videos/roto.mp4"})
        assert r.status_code == 422

    def test_forget_promotes(self, client):
        client.post("/api/dedup", json={"video_id": "a", "video_url": "/videos/a.mp4"})
        client.post("/api/dedup", json={"video_id": "b", "video_url": "/videos/a_copy.mp4"})
        r = client.delete("/api/videos/a")
        assert r.status_code == 200
        assert r.json() == {"video_id": "a", "promoted_id": "b"}


class TestDevIndexEndpoints:
    @pytest.fixture(autouse=True)
    def seed(self, client):
        client.app.state.index.batch_insert([("A", A), ("B", B), ("C", C)])

    def test_nearest(self, client):
        r = client.get("/api/_dev/index/nearest", params={"hash": "0" * 60 + "1" * 4})
        assert r.json()["match"] == {"video_id": "A", "distance": 4, "similarity": 93.75}

    def test_within(self, client):
        r = client.get("/api/_dev/index/within", params={"hash": A, "max_distance": 32})
        body = r.json()
        assert body["count"] == 2
        assert [i["video_id"] for i in body["items"]] == ["A", "C"]

    def test_invalid_hash_is_400(self, client):
        r = client.get("/api/_dev/index/nearest", params={"hash": "01" * 10})
        assert r.status_code == 400

    def test_find_duplicates(self, client):
        r = client.post(
            "/api/_dev/index/duplicates",
            json={"candidates": [{"video_id": "Q", "videohash": "0" * 62 + "1" * 2}], "threshold": 90},
        )
        body = r.json()
        assert body["max_distance"] == 6
        assert body["results"] == {"Q": [{"video_id": "A", "similarity": 96.875}]}

    def test_find_duplicates_wrong_length_is_400(self, client):
        r = client.post(
            "/api/_dev/index/duplicates",
            json={"candidates": [{"video_id": "Q", "videohash": "01" * 10}]},
        )
        assert r.status_code == 400

    def test_stats(self, client):
        assert client.get("/api/_dev/index/stats").json()["size"] == 3


class TestBackfillEndpoint:
    def test_requires_token(self, client):
        assert client.post("/api/backfill/preload").status_code == 401
        r = client.post("/api/backfill/preload", headers={"Authorization": "Bearer nope"})
        assert r.status_code == 401

    def test_preload_from_store(self, client):
        client.app.state.store.record_unique("z", VideoFingerprint.from_bits(B))
        r = client.post("/api/backfill/preload", headers={"Authorization": "Bearer s3cret"})
        assert r.status_code == 200
        assert r.json()["hashes_loaded"] == 1
        assert "z" in client.app.state.index

    def test_run_backfill(self, client):
        items = [
            {"video_id": "a", "video_url": "/videos/a.mp4"},
            {"video_id": "b", "video_url": "/videos/a_copy.mp4"},
            {"video_id": "x", "video_url": "/videos/roto.mp4"},
        ]
        r = client.post("/api/backfill/run", json={"items": items}, headers={"Authorization": "Bearer s3cret"})
        assert r.status_code == 200
        body = r.json()
        assert (body["processed"], body["failed"]) == (2, 1)
        assert body["failures"][0]["video_id"] == "x"


def test_backfill_disabled_without_token(monkeypatch):
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("PRELOAD_ON_STARTUP", "false")
    monkeypatch.delenv("BACKFILL_TOKEN", raising=False)
    get_settings.cache_clear()
    from videodedup.main import app
    try:
        with TestClient(app) as c:
            r = c.post("/api/backfill/preload", headers={"Authorization": "Bearer x"})
            assert r.status_code == 503
    finally:
        get_settings.cache_clear()
