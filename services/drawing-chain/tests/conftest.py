import base64
import io
import os
import sys

import numpy as np
import pytest
from PIL import Image

# Ensure the service root (containing the `app` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
SERVICE_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)

from app.config import ScoringSettings  # noqa: E402


@pytest.fixture()
def settings():
    return ScoringSettings()


@pytest.fixture()
def blank_canvas():
    def make(width=100, height=100):
        return np.full((height, width, 4), 255, dtype=np.uint8)
    return make


@pytest.fixture()
def block_drawing(blank_canvas):
    """White canvas with a black rectangle drawn over rows/cols [top:bottom, left:right]."""
    def make(top, bottom, left, right, width=100, height=100, color=(0, 0, 0, 255)):
        canvas = blank_canvas(width, height)
        canvas[top:bottom, left:right] = color
        return canvas
    return make


@pytest.fixture()
def steady_events():
    """Straight, constant-speed stroke: 10 px every 16 ms."""
    def make(count=10, step=10.0, dt=16):
        return [{"x": i * step, "y": 0.0, "timestampMs": 1000 + i * dt} for i in range(count)]
    return make


@pytest.fixture()
def png_data_uri():
    def encode(arr):
        buf = io.BytesIO()
        Image.fromarray(np.ascontiguousarray(arr)).save(buf, format="PNG")
        return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")
    return encode


@pytest.fixture()
def client():
    from fastapi.testclient import TestClient
    from app.main import app
    return TestClient(app)
