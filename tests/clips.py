import shutil
import subprocess

import pytest

"""Clips sintéticos con las fuentes lavfi de ffmpeg (color, testsrc, ...)."""

requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe no disponibles",
)


def make_clip(path, source="testsrc", size="320x240", duration=5, quality=2):
    options = f"size={size}:rate=25:duration={duration}"
    # "color=c=white" ya trae opciones propias
    graph = f"{source}:{options}" if "=" in source else f"{source}={options}"
    subprocess.run(
        [
            "ffmpeg", "-y", "-hide_banner", "-loglevel", "error",
            "-f", "lavfi", "-i", graph,
            "-c:v", "mpeg4", "-q:v", str(quality), "-pix_fmt", "yuv420p",
            str(path),
        ],
        check=True,
    )
    return str(path)


def reencode(src, dst, quality=8, scale="256:192"):
    """Misma imagen, otra resolución y calidad."""
    subprocess.run(
        [
            "ffmpeg", "-y", "-hide_banner", "-loglevel", "error",
            "-i", str(src), "-vf", f"scale={scale}",
            "-c:v", "mpeg4", "-q:v", str(quality), "-pix_fmt", "yuv420p",
            str(dst),
        ],
        check=True,
    )
    return str(dst)
