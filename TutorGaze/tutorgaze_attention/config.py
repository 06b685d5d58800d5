"""
Runtime configuration for attention sampling.

Tunables live in a JSON file next to the package (or wherever --config points)
so a classroom machine can keep its own camera and timeout settings. Missing
keys are filled from DEFAULT_CONFIG; an unreadable file falls back to defaults.
Classifier thresholds and scorer penalties are fixed and are not read from here.
"""
import json
import os
from dataclasses import dataclass, fields
from typing import Optional

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

CONFIG_PATH = os.path.join(BASE_DIR, "attention_config.json")

DEFAULT_CONFIG = {
    "conventions": "eye_aspect_ratio",
    "frame_timeout": 1.0 / 15.0,
    "detect_timeout": 1.0,
    "idle_delay": 0.01,
    "stop_timeout": 2.0,
    "camera_index": 0,
    "min_detection_confidence": 0.5,
    "model_path": None,
    "log_path": "attention_log.csv",
    "debug_frames": 5,
}


def load_config(path: Optional[str] = None) -> dict:
    path = path or CONFIG_PATH
    if not os.path.isfile(path):
        return dict(DEFAULT_CONFIG)
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = json.load(f)
    except (json.JSONDecodeError, OSError) as exc:
        print(f"[TutorGaze] Warning: could not read config {path} ({exc}); using defaults")
        return dict(DEFAULT_CONFIG)
    if not isinstance(cfg, dict):
        return dict(DEFAULT_CONFIG)
    for k, v in DEFAULT_CONFIG.items():
        if k not in cfg:
            cfg[k] = v
    return cfg


def save_config(cfg: dict, path: Optional[str] = None):
    with open(path or CONFIG_PATH, "w", encoding="utf-8") as f:
        json.dump(cfg, f, indent=2)


@dataclass
class SamplerConfig:
    conventions: str = DEFAULT_CONFIG["conventions"]
    frame_timeout: float = DEFAULT_CONFIG["frame_timeout"]  # seconds to wait for one frame
    detect_timeout: float = DEFAULT_CONFIG["detect_timeout"]
    idle_delay: float = DEFAULT_CONFIG["idle_delay"]
    stop_timeout: float = DEFAULT_CONFIG["stop_timeout"]
    camera_index: int = DEFAULT_CONFIG["camera_index"]
    min_detection_confidence: float = DEFAULT_CONFIG["min_detection_confidence"]
    model_path: Optional[str] = DEFAULT_CONFIG["model_path"]
    log_path: str = DEFAULT_CONFIG["log_path"]
    debug_frames: int = DEFAULT_CONFIG["debug_frames"]

    @classmethod
    def from_dict(cls, cfg: dict) -> "SamplerConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in cfg.items() if k in known})

    @classmethod
    def load(cls, path: Optional[str] = None) -> "SamplerConfig":
        return cls.from_dict(load_config(path))
