from datetime import datetime

import pytest

from faceclock.core.settings import Settings
from faceclock.detect.postprocess import FaceBox

from .fakes import DIM, FakeClock, FakeGallery, FakeStore


@pytest.fixture
def face_box():
    return FaceBox(200, 120, 160, 160, 0.9)


@pytest.fixture
def gallery():
    return FakeGallery()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wall_clock():
    return lambda: datetime(2024, 3, 4, 9, 0, 0)


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        IS_PI=False,
        CONFIG_PATH=str(tmp_path / "missing.json"),
        EMBEDDING_DIM=DIM,
        DB_PATH=str(tmp_path / "attendance.db"),
    )
