"""
MediaPipe Face Landmarker wrapped as a landmark source for the attention sampler.
"""
import os
import urllib.request
from typing import List, Optional, Sequence, Tuple

import cv2
import mediapipe as mp
import numpy as np
from mediapipe.tasks import python as mp_tasks
from mediapipe.tasks.python import vision

from .config import BASE_DIR, SamplerConfig
from .errors import DetectorUnavailable
from .types import Landmark


FACE_LANDMARKER_MODEL_URL = (
    "https://storage.googleapis.com/mediapipe-models/face_landmarker/"
    "face_landmarker/float16/1/face_landmarker.task"
)

# Mesh indices in EAR order: corners at 0 and 3, vertical pairs (1, 5) and (2, 4)
LEFT_EYE_EAR_INDICES = [33, 160, 158, 133, 153, 144]
RIGHT_EYE_EAR_INDICES = [362, 385, 387, 263, 373, 380]
NOSE_TIP = 1


def mesh_landmark_names() -> List[Tuple[int, str]]:
    names = [(idx, f"left_eye_{i}") for i, idx in enumerate(LEFT_EYE_EAR_INDICES)]
    names += [(idx, f"right_eye_{i}") for i, idx in enumerate(RIGHT_EYE_EAR_INDICES)]
    names.append((NOSE_TIP, "nose_tip"))
    return names


MESH_NAMES = mesh_landmark_names()


def _landmark(point, name: Optional[str] = None) -> Landmark:
    z = getattr(point, "z", None)
    return Landmark(x=float(point.x), y=float(point.y), z=float(z) if z is not None else None, name=name)


def to_landmarks(mesh_points: Sequence) -> List[Landmark]:
    """
    Convert raw mesh points (objects with x, y, z) into Landmarks.

    The named points come first, each eye in EAR order, so the scorer's
    name filter sees them in the order the ratio expects. The remaining
    mesh points follow unnamed.
    """
    named_indices = set()
    landmarks = []
    for idx, name in MESH_NAMES:
        if idx < len(mesh_points):
            landmarks.append(_landmark(mesh_points[idx], name))
            named_indices.add(idx)
    landmarks.extend(_landmark(p) for i, p in enumerate(mesh_points) if i not in named_indices)
    return landmarks


def ensure_face_landmarker_model(model_path: Optional[str] = None) -> str:
    """Return path to face_landmarker.task, downloading it if missing."""
    path = model_path or os.path.join(BASE_DIR, "face_landmarker.task")
    if not os.path.isfile(path):
        print(f"[LandmarkSource] Downloading face landmarker model to {path}")
        try:
            urllib.request.urlretrieve(FACE_LANDMARKER_MODEL_URL, path)
        except Exception as exc:
            raise DetectorUnavailable(
                f"Could not download face_landmarker.task. "
                f"Download it manually from {FACE_LANDMARKER_MODEL_URL} and place it at {path}"
            ) from exc
    return path


class MediaPipeLandmarkSource:
    """Detects at most one face per frame and returns its landmarks."""

    def __init__(self, model_path: str, min_detection_confidence: float = 0.5):
        base_options = mp_tasks.BaseOptions(model_asset_path=model_path)
        options = vision.FaceLandmarkerOptions(
            base_options=base_options,
            num_faces=1,
            min_face_detection_confidence=min_detection_confidence,
            running_mode=vision.RunningMode.IMAGE,
        )
        self.face_landmarker = vision.FaceLandmarker.create_from_options(options)

    def detect_face(self, frame_bgr: np.ndarray) -> Tuple[bool, List[Landmark]]:
        if frame_bgr is None or frame_bgr.size == 0:
            return False, []
        rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)
        result = self.face_landmarker.detect(mp_image)
        if not result.face_landmarks:
            return False, []
        return True, to_landmarks(result.face_landmarks[0])

    def close(self):
        self.face_landmarker.close()


def create_landmark_source(config: SamplerConfig | None = None) -> MediaPipeLandmarkSource:
    config = config or SamplerConfig()
    model_path = ensure_face_landmarker_model(config.model_path)
    try:
        return MediaPipeLandmarkSource(model_path, config.min_detection_confidence)
    except Exception as exc:
        raise DetectorUnavailable(f"Failed to start face landmarker: {exc}") from exc
