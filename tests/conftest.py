import pytest

from videodedup.infrastructure.settings import Settings


@pytest.fixture
def settings(tmp_path):
    """Settings aisladas del entorno (sin .env), scratch dentro de tmp_path."""
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    return Settings(_env_file=None, STORE_BACKEND="memory", SCRATCH_DIR=str(scratch))
