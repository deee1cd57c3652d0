from __future__ import annotations

import io

from contextlib import redirect_stderr, redirect_stdout
from typing import Dict, List, Tuple

import numpy as np
import torch

from insightface.app import FaceAnalysis

from facebooth.face.types import Detection, FaceOracle
from facebooth.utils.log import get_logger, suppress_fds
from facebooth.utils.math import l2_normalize

logger = get_logger(__name__)

# 进程内模型缓存：同一进程里多次构造 oracle（例如切换采集/识别模式）不重复加载模型。
# key 包含影响输出的参数（model name / providers / ctx_id / det_size / modules）。
_FACEAPP_CACHE: Dict[Tuple, FaceAnalysis] = {}


def select_device(device: str = "auto") -> Tuple[List[str], int]:
    """Return (onnxruntime providers, InsightFace ctx_id) for 'auto'/'cpu'/'gpu'."""
    if device == "auto":
        try:
            device = "gpu" if torch.cuda.is_available() else "cpu"
        except Exception:
            device = "cpu"
    if device == "gpu":
        return ["CUDAExecutionProvider"], 0
    return ["CPUExecutionProvider"], -1


class InsightFaceOracle(FaceOracle):
    """Oracle backed by InsightFace `FaceAnalysis`.

    Descriptors are the L2-normalized recognition embeddings (512-D for
    buffalo_l). Landmarks are the 106-point set when the landmark model is
    loaded, otherwise the detector's 5 keypoints.
    """

    def __init__(
        self,
        recognition_model: str = "buffalo_l",
        det_size: int = 640,
        device: str = "auto",
        use_landmark_106: bool = True,
    ):
        self.recognition_model = recognition_model
        self.det_size: Tuple[int, int] = (int(det_size), int(det_size))
        self.device = device
        self.use_landmark_106 = bool(use_landmark_106)
        self.providers, self.ctx_id = select_device(device)
        self._app = self._load()

    def _load(self) -> FaceAnalysis:
        modules = ["detection", "recognition"]
        if self.use_landmark_106:
            modules.append("landmark_2d_106")
        key = (
            str(self.recognition_model),
            tuple(self.providers),
            int(self.ctx_id),
            tuple(self.det_size),
            tuple(modules),
        )
        cached = _FACEAPP_CACHE.get(key)
        if cached is not None:
            return cached

        try:
            with suppress_fds():
                app = FaceAnalysis(
                    name=self.recognition_model,
                    providers=self.providers,
                    allowed_modules=modules,
                )
            buf = io.StringIO()
            with redirect_stdout(buf), redirect_stderr(buf):
                app.prepare(ctx_id=self.ctx_id, det_size=self.det_size)
        except Exception as e:
            logger.error(f"Model initialization failed: {e}")
            raise

        _FACEAPP_CACHE[key] = app
        logger.info(f"Models loaded successfully: {self.recognition_model} ({self.providers[0]}, modules={modules})")
        return app

    def _to_detection(self, face) -> Detection:
        lmk = getattr(face, "landmark_2d_106", None)
        if lmk is None:
            lmk = getattr(face, "kps", None)
        emb = getattr(face, "normed_embedding", None)
        if emb is None:
            emb = l2_normalize(np.asarray(face.embedding, dtype=np.float32))
        return Detection.create(
            box=face.bbox,
            landmarks=lmk,
            descriptor=emb,
            score=float(getattr(face, "det_score", 1.0)),
        )

    def detect_all(self, frame: np.ndarray) -> List[Detection]:
        if frame is None:
            return []
        faces = self._app.get(frame) or []
        out: List[Detection] = []
        for face in faces:
            if getattr(face, "embedding", None) is None:
                continue
            try:
                out.append(self._to_detection(face))
            except ValueError as e:
                logger.warning(f"dropping malformed face from model output: {e}")
        return out
