import io
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from main import app


@pytest.fixture
def client():
    """FastAPI test client (does not raise server exceptions)."""
    return TestClient(app, raise_server_exceptions=False)


def make_png_bytes(size=(434, 66), color=(40, 120, 200), mode="RGB") -> bytes:
    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def make_gif_bytes(frames=3, size=(50, 50)) -> bytes:
    images = [Image.new("RGB", size, (i * 80, 255 - i * 80, 0)) for i in range(frames)]
    buf = io.BytesIO()
    images[0].save(buf, format="GIF", save_all=True, append_images=images[1:], duration=100, loop=0)
    return buf.getvalue()


@pytest.fixture
def sample_png(tmp_path) -> Path:
    """434x66 PNG on disk."""
    path = tmp_path / "5k.png"
    path.write_bytes(make_png_bytes())
    return path


@pytest.fixture
def animated_gif(tmp_path) -> Path:
    path = tmp_path / "animated.gif"
    path.write_bytes(make_gif_bytes())
    return path


@pytest.fixture
def rotated_jpeg(tmp_path) -> Path:
    """300x200 JPEG tagged with EXIF orientation 6 (rotate 90 CW)."""
    img = Image.new("RGB", (300, 200), (200, 30, 30))
    exif = Image.Exif()
    exif[0x0112] = 6
    path = tmp_path / "rotated.jpg"
    img.save(path, format="JPEG", exif=exif)
    return path
