from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from videodedup.application.services.fingerprint_service import fingerprint_frames
from videodedup.errors import NoUsableFrames
from videodedup.infrastructure.bitpack import VideoFingerprint
from videodedup.infrastructure.cv.videohash import (
    color_hash,
    combine_hashes,
    frames_fingerprint_bits,
    structural_hash,
)

SIZE = 144


def _solid(value: int) -> np.ndarray:
    return np.full((SIZE, SIZE, 3), value, dtype=np.uint8)


def _left_bright(lo: int = 0, hi: int = 255) -> np.ndarray:
    frame = _solid(lo)
    frame[:, : SIZE // 2] = hi
    return frame


def _top_bright(lo: int = 0, hi: int = 255) -> np.ndarray:
    frame = _solid(lo)
    frame[: SIZE // 2, :] = hi
    return frame


def _noise(seed: int) -> np.ndarray:
    return np.random.default_rng(seed).integers(0, 256, size=(180, 320, 3), dtype=np.uint8)


class TestSignals:
    def test_empty_frames(self):
        with pytest.raises(NoUsableFrames):
            structural_hash([])
        with pytest.raises(NoUsableFrames):
            color_hash([])

    def test_shapes(self):
        frames = [_noise(i) for i in range(5)]
        assert structural_hash(frames).shape == (64,)
        assert color_hash(frames).shape == (64,)

    def test_uniform_frames(self):
        black = [_solid(0)] * 4
        white = [_solid(255)] * 4
        # Todo igual a la mediana -> todos los bits estructurales en 1
        assert structural_hash(black).all()
        assert not color_hash(black).any()
        assert color_hash(white).all()
        assert VideoFingerprint.from_vector(frames_fingerprint_bits(black)).bits == "1" * 64
        assert VideoFingerprint.from_vector(frames_fingerprint_bits(white)).bits == "0" * 64

    def test_structural_collage_layout(self):
        bits = structural_hash([_left_bright()] * 4).reshape(8, 8)
        # collage 2x2: columnas brillantes en 0-1 y 4-5
        assert bits[:, [0, 1, 4, 5]].all()
        assert not bits[:, [2, 3, 6, 7]].any()

    def test_color_strip_layout(self):
        bits = color_hash([_left_bright()] * 4).reshape(8, 8)
        # tira de 4 frames: cada frame ocupa 2 columnas de la grilla
        assert bits[:, [0, 2, 4, 6]].all()
        assert not bits[:, [1, 3, 5, 7]].any()

    def test_single_frame_path(self):
        frame = _left_bright()
        structural = structural_hash([frame]).reshape(8, 8)
        color = color_hash([frame]).reshape(8, 8)
        assert structural[:, :4].all() and not structural[:, 4:].any()
        assert (structural == color).all()
        assert not combine_hashes(structural, color).any()


class TestFingerprint:
    def test_deterministic(self):
        frames = [_noise(i) for i in range(6)]
        first = VideoFingerprint.from_vector(frames_fingerprint_bits(frames))
        second = VideoFingerprint.from_vector(frames_fingerprint_bits([f.copy() for f in frames]))
        assert first == second

    def test_unrelated_layouts_are_far_apart(self):
        a = VideoFingerprint.from_vector(frames_fingerprint_bits([_left_bright()] * 4))
        b = VideoFingerprint.from_vector(frames_fingerprint_bits([_top_bright()] * 4))
        assert a.distance(b) == 32
        assert a.similarity(b) < 85.0

    def test_mild_noise_keeps_fingerprint_close(self):
        rng = np.random.default_rng(5)
        frames = [_left_bright(60, 200) if i % 2 else _top_bright(60, 200) for i in range(6)]
        noisy = [
            np.clip(f.astype(np.int16) + rng.integers(-8, 9, size=f.shape), 0, 255).astype(np.uint8)
            for f in frames
        ]
        a = VideoFingerprint.from_vector(frames_fingerprint_bits(frames))
        b = VideoFingerprint.from_vector(frames_fingerprint_bits(noisy))
        assert a.similarity(b) >= 85.0

    @pytest.mark.asyncio
    async def test_parallel_matches_sequential(self, settings):
        frames = [_noise(i) for i in range(7)]
        with ThreadPoolExecutor(max_workers=2) as pool:
            parallel = await fingerprint_frames(frames, settings, pool)
        assert parallel == VideoFingerprint.from_vector(frames_fingerprint_bits(frames))

    @pytest.mark.asyncio
    async def test_no_frames(self, settings):
        with pytest.raises(NoUsableFrames):
            await fingerprint_frames([], settings)
