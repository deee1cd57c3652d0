from __future__ import annotations

import json
import sys

from pathlib import Path

import pytest

repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from facebooth.config import BoothConfig


def test_defaults():
    cfg = BoothConfig()
    assert cfg.capture_interval_ms == 100
    assert cfg.capture_interval_sec == pytest.approx(0.1)
    assert cfg.required_samples == 30
    assert cfg.key_prefix == "faceData_"
    assert cfg.unknown_label == "unknown"


def test_from_dict_accepts_camel_case_options():
    cfg = BoothConfig.from_dict({"captureIntervalMs": 500, "requiredSamples": 10, "matchThreshold": 0.6})
    assert cfg.capture_interval_ms == 500
    assert cfg.required_samples == 10
    assert cfg.match_threshold == pytest.approx(0.6)


def test_from_dict_rejects_unknown_option():
    with pytest.raises(ValueError):
        BoothConfig.from_dict({"captureInterval": 500})


@pytest.mark.parametrize(
    "kwargs",
    [
        {"capture_interval_ms": 0},
        {"required_samples": -1},
        {"match_threshold": -0.1},
        {"key_prefix": ""},
        {"device": "tpu"},
        {"display_size": (0, 480)},
    ],
)
def test_invalid_values_raise(kwargs):
    with pytest.raises(ValueError):
        BoothConfig(**kwargs)


def test_load_from_json_file(tmp_path: Path):
    fp = tmp_path / "booth.json"
    fp.write_text(json.dumps({"requiredSamples": 5, "store_path": "x.json", "displaySize": [320, 240]}), encoding="utf-8")
    cfg = BoothConfig.load(fp)
    assert cfg.required_samples == 5
    assert cfg.store_path == "x.json"
    assert cfg.display_size == (320, 240)


def test_load_rejects_non_object(tmp_path: Path):
    fp = tmp_path / "booth.json"
    fp.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        BoothConfig.load(fp)


def test_replace_ignores_unset_overrides():
    cfg = BoothConfig(required_samples=7).replace(required_samples=None, match_threshold=0.9)
    assert cfg.required_samples == 7
    assert cfg.match_threshold == pytest.approx(0.9)
