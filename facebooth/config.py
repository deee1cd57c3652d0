from __future__ import annotations

import json

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple, Union

# 常见系统字体候选（macOS/Windows/Linux），标签含中文等非 ASCII 字符时需要
FONT_LIST = [
    # macOS
    "/System/Library/Fonts/STHeiti Medium.ttc",
    "/System/Library/Fonts/AppleGothic.ttf",
    "/Library/Fonts/Arial Unicode.ttf",
    # Windows
    "C:\\Windows\\Fonts\\msyh.ttc",
    "C:\\Windows\\Fonts\\arialuni.ttf",
    # Linux: CJK fonts first, otherwise DejaVuSans wins and CJK renders as boxes.
    "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/noto/NotoSansCJK-Regular.ttc",
    "/usr/share/fonts/truetype/wqy/wqy-zenhei.ttc",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
]

# Option names used by the browser build's saved settings.
_CAMEL_ALIASES = {
    "captureIntervalMs": "capture_interval_ms",
    "requiredSamples": "required_samples",
    "matchThreshold": "match_threshold",
    "unknownLabel": "unknown_label",
    "keyPrefix": "key_prefix",
    "storePath": "store_path",
    "displaySize": "display_size",
}


@dataclass
class BoothConfig:
    # Acquisition tick period.
    capture_interval_ms: int = 100
    # Samples collected per labeled session before the record is written.
    required_samples: int = 30
    # Max Euclidean distance for a positive match. Embeddings are L2-normalized,
    # so distances live in [0, 2]; 1.1 is roughly cosine similarity 0.4.
    match_threshold: float = 1.1
    unknown_label: str = "unknown"
    # Namespace for label keys inside a shared key-value store.
    key_prefix: str = "faceData_"
    store_path: str = "data/face_store.json"
    # (w, h) of the drawing surface; detections are rescaled to it.
    display_size: Tuple[int, int] = (640, 480)
    # Embedding model
    recognition_model: str = "buffalo_l"
    device: str = "auto"
    det_size: int = 640
    camera_index: int = 0

    def __post_init__(self) -> None:
        self.capture_interval_ms = int(self.capture_interval_ms)
        self.required_samples = int(self.required_samples)
        self.match_threshold = float(self.match_threshold)
        self.det_size = int(self.det_size)
        self.camera_index = int(self.camera_index)
        self.display_size = (int(self.display_size[0]), int(self.display_size[1]))
        self.validate()

    def validate(self) -> None:
        if self.capture_interval_ms <= 0:
            raise ValueError(f"capture_interval_ms must be > 0, got {self.capture_interval_ms}")
        if self.required_samples <= 0:
            raise ValueError(f"required_samples must be > 0, got {self.required_samples}")
        if self.match_threshold < 0:
            raise ValueError(f"match_threshold must be >= 0, got {self.match_threshold}")
        if not self.key_prefix:
            raise ValueError("key_prefix must not be empty")
        if self.device not in ("auto", "cpu", "gpu"):
            raise ValueError(f"device must be auto/cpu/gpu, got {self.device!r}")
        if min(self.display_size) <= 0:
            raise ValueError(f"display_size must be positive, got {self.display_size}")

    @property
    def capture_interval_sec(self) -> float:
        return self.capture_interval_ms / 1000.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BoothConfig":
        """Build from a mapping; camelCase option names are accepted.

        Unknown keys raise ValueError so typos in config files do not pass silently.
        """
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = _CAMEL_ALIASES.get(key, key)
            if name not in known:
                raise ValueError(f"unknown config option: {key!r}")
            kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "BoothConfig":
        fp = Path(path)
        with open(fp, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"config file {fp} must contain a JSON object")
        return cls.from_dict(data)

    def replace(self, **overrides: Any) -> "BoothConfig":
        """Copy with the non-None overrides applied (CLI flags left unset stay unset)."""
        data = asdict(self)
        data.update({k: v for k, v in overrides.items() if v is not None})
        return BoothConfig(**data)
