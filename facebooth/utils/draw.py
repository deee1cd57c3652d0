from __future__ import annotations

import threading

from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from facebooth.config import FONT_LIST
from facebooth.face.types import Detection

BOX_COLOR = (0, 200, 255)  # BGR
KNOWN_COLOR = (0, 200, 0)
UNKNOWN_COLOR = (0, 0, 230)
LANDMARK_COLOR = (255, 255, 0)


@lru_cache(maxsize=128)
def _load_font(font_path: str, font_size: int) -> ImageFont.FreeTypeFont:
    return ImageFont.truetype(font_path, font_size)


@lru_cache(maxsize=64)
def _get_best_font(font_size: int) -> ImageFont.ImageFont:
    """Return a cached font that can render the labels (CJK-capable first)."""
    for p in FONT_LIST:
        try:
            return _load_font(p, int(font_size))
        except OSError:
            continue
    return ImageFont.load_default()


def draw_texts(
    img: np.ndarray,
    items: Sequence[Tuple[str, Tuple[int, int], int, Tuple[int, int, int]]],
) -> None:
    """Draw several unicode texts onto one frame with a single PIL conversion.

    Args:
        img: OpenCV BGR image, modified in-place.
        items: sequence of (text, (x, y), font_size_px, bgr_color)
    """
    if img is None or len(items) == 0:
        return

    # ASCII-only labels do not need PIL.
    if all(str(t).isascii() for (t, _, _, _) in items):
        for text, org, font_size, bgr in items:
            font_scale = max(0.3, int(font_size) / 24.0)
            cv2.putText(
                img,
                str(text),
                (int(org[0]), int(org[1]) + int(font_size)),
                cv2.FONT_HERSHEY_SIMPLEX,
                font_scale,
                (int(bgr[0]), int(bgr[1]), int(bgr[2])),
                1,
                cv2.LINE_AA,
            )
        return

    pil_img = Image.fromarray(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))
    draw = ImageDraw.Draw(pil_img)
    for text, org, font_size, bgr in items:
        font = _get_best_font(int(font_size))
        # PIL uses RGB
        rgb_color = (int(bgr[2]), int(bgr[1]), int(bgr[0]))
        draw.text((int(org[0]), int(org[1])), str(text), font=font, fill=rgb_color)
    img[:] = cv2.cvtColor(np.array(pil_img), cv2.COLOR_RGB2BGR)


def resize_detections(
    detections: Sequence[Detection],
    frame_size: Tuple[int, int],
    display_size: Tuple[int, int],
) -> List[Detection]:
    """Rescale detection geometry from frame (w, h) to display (w, h)."""
    fw, fh = frame_size
    dw, dh = display_size
    if fw <= 0 or fh <= 0:
        return list(detections)
    sx = float(dw) / float(fw)
    sy = float(dh) / float(fh)
    if sx == 1.0 and sy == 1.0:
        return list(detections)
    return [d.scaled(sx, sy) for d in detections]


def draw_detections(
    img: np.ndarray,
    detections: Sequence[Detection],
    labels: Optional[Sequence[Optional[str]]] = None,
    unknown_label: str = "unknown",
    draw_landmarks: bool = True,
) -> None:
    """Boxes, landmark dots and optional labels, drawn in-place."""
    texts = []
    for i, det in enumerate(detections):
        label = labels[i] if labels is not None and i < len(labels) else None
        if label is None:
            color = BOX_COLOR
        elif label.startswith(unknown_label):
            color = UNKNOWN_COLOR
        else:
            color = KNOWN_COLOR
        x1, y1, x2, y2 = [int(round(v)) for v in det.box]
        cv2.rectangle(img, (x1, y1), (x2, y2), color, 2)
        if draw_landmarks:
            for p in det.landmarks:
                cv2.circle(img, (int(round(p.x)), int(round(p.y))), 1, LANDMARK_COLOR, -1)
        if label:
            texts.append((label, (x1, max(0, y1 - 22)), 18, color))
    draw_texts(img, texts)


class OpenCVCanvas:
    """Drawing surface for the acquisition loop.

    `render` is called from tick threads; it only composes the overlay image. The
    UI thread pulls it with `latest()` and shows it, since OpenCV windows must be
    driven from the main thread.
    """

    def __init__(self, display_size: Tuple[int, int] = (640, 480), unknown_label: str = "unknown"):
        self.display_size = (int(display_size[0]), int(display_size[1]))
        self.unknown_label = unknown_label
        self._latest: Optional[np.ndarray] = None
        self._lock = threading.Lock()

    def render(
        self,
        frame: np.ndarray,
        detections: Sequence[Detection],
        labels: Optional[Sequence[Optional[str]]] = None,
        status: Optional[str] = None,
    ) -> np.ndarray:
        h, w = frame.shape[:2]
        dw, dh = self.display_size
        vis = frame if (w, h) == (dw, dh) else cv2.resize(frame, (dw, dh), interpolation=cv2.INTER_LINEAR)
        vis = vis.copy()
        resized = resize_detections(detections, (w, h), (dw, dh))
        draw_detections(vis, resized, labels, unknown_label=self.unknown_label)
        if status:
            draw_texts(vis, [(status, (10, dh - 28), 18, (255, 255, 255))])
        with self._lock:
            self._latest = vis
        return vis

    def latest(self) -> Optional[np.ndarray]:
        with self._lock:
            return self._latest
