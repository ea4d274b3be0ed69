"""Shared fixtures for the InstaSnap client tests."""

from io import BytesIO
from unittest.mock import AsyncMock

import pytest
from PIL import Image

from instasnap.clients.instasnap_client import InstaSnapClient
from instasnap.clients.storage_client import StorageManager
from instasnap.models.internal_models import UploadFile
from instasnap.services.session_cache import SessionCache


def make_image(width: int = 640, height: int = 480, image_format: str = "JPEG", mode: str = "RGB") -> bytes:
    """Encoded bytes of a solid-colour test image."""
    buffer = BytesIO()
    color = (255, 128, 0, 128) if mode == "RGBA" else "orange"
    Image.new(mode, (width, height), color=color).save(buffer, format=image_format)
    return buffer.getvalue()


class FakeClock:
    """Controllable replacement for time.time()."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return StorageManager.in_memory()


@pytest.fixture
def cache(storage, clock):
    return SessionCache(storage, clock=clock, prefix="instasnap_")


@pytest.fixture
def mock_api():
    """API client double whose coroutine methods are AsyncMocks."""
    return AsyncMock(spec=InstaSnapClient)


@pytest.fixture
def selfie():
    return UploadFile(name="selfie.jpg", content=make_image(), content_type="image/jpeg")


@pytest.fixture
def image_bytes():
    """Factory for encoded test images of a given size and format."""
    return make_image
