"""
Shared fixtures: throwaway photo and site directories with generated images.
"""

import os
from datetime import datetime, timezone

import pytest
from PIL import Image

FEB_1 = datetime(2024, 2, 1, tzinfo=timezone.utc)
NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def set_mtime(path, when: datetime):
    ts = when.timestamp()
    os.utime(path, (ts, ts))


@pytest.fixture
def photos_dir(tmp_path):
    d = tmp_path / "public" / "photos"
    d.mkdir(parents=True)
    return d


@pytest.fixture
def catalog_path(tmp_path):
    return tmp_path / "data" / "portfolio.json"


@pytest.fixture
def make_photo(photos_dir):
    """Factory writing a small RGB image into photos_dir."""

    def _make(name, size=(64, 48), exif=None, mtime=FEB_1, color=(180, 90, 40)):
        path = photos_dir / name
        img = Image.new("RGB", size, color)
        if exif is not None:
            img.save(path, exif=exif)
        else:
            img.save(path)
        if mtime is not None:
            set_mtime(path, mtime)
        return path

    return _make
