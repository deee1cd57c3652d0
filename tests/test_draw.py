from __future__ import annotations

import sys

from pathlib import Path

import numpy as np
import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from facebooth.face.types import Detection, Point
from facebooth.utils.draw import OpenCVCanvas, draw_detections, resize_detections


def _det() -> Detection:
    return Detection.create(box=[10, 20, 50, 60], landmarks=[[20, 30], [40, 30]], descriptor=[0.1, 0.2])


def test_resize_detections_scales_geometry_only():
    d = _det()
    (out,) = resize_detections([d], frame_size=(100, 100), display_size=(200, 50))
    assert out.box == pytest.approx((20.0, 10.0, 100.0, 30.0))
    assert out.landmarks == (Point(40.0, 15.0), Point(80.0, 15.0))
    assert out.descriptor is d.descriptor


def test_resize_detections_same_size_is_identity():
    d = _det()
    assert resize_detections([d], (64, 48), (64, 48))[0] is d


def test_draw_detections_modifies_image_in_place():
    img = np.zeros((100, 100, 3), dtype=np.uint8)
    draw_detections(img, [_det()], ["Alice (0.31)"])
    assert img.any()


def test_canvas_renders_at_display_size_and_keeps_latest():
    canvas = OpenCVCanvas(display_size=(128, 96))
    assert canvas.latest() is None
    frame = np.zeros((48, 64, 3), dtype=np.uint8)

    out = canvas.render(frame, [_det()], ["unknown (1.30)"], status="Recognizing (1 labels)")

    assert out.shape == (96, 128, 3)
    assert canvas.latest() is out
    # source frame is not drawn on
    assert not frame.any()
