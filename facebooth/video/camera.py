"""Frame sources for the acquisition loop."""

from __future__ import annotations

import threading

from typing import Optional, Union

import cv2
import numpy as np

from facebooth.utils.log import get_logger

logger = get_logger(__name__)


class CameraSource:
    """Latest-frame reader over `cv2.VideoCapture` (webcam index or video path).

    `read()` is called from the acquisition tick; a failed grab returns None so the
    tick simply sees no faces.
    """

    def __init__(self, source: Union[int, str] = 0, width: Optional[int] = None, height: Optional[int] = None):
        self.source = source
        self._cap = cv2.VideoCapture(source)
        if not self._cap.isOpened():
            raise RuntimeError(f"Failed to open camera: {source}")
        if width:
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, int(width))
        if height:
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, int(height))
        self._lock = threading.Lock()
        self.width = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.height = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info(f"Camera {source} opened at {self.width}x{self.height}")

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._cap is None:
                return None
            ok, frame = self._cap.read()
        if not ok or frame is None:
            return None
        return frame

    def close(self) -> None:
        with self._lock:
            if self._cap is not None:
                self._cap.release()
                self._cap = None

    def __enter__(self) -> "CameraSource":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
