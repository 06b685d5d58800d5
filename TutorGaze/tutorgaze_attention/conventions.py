"""
Landmark naming conventions understood by the attention scorer.

Detectors disagree on how keypoints are named and how many eye points they
return. Each convention knows how to read one of those layouts and turn a
frame's landmarks into a raw (unclamped) attention value.
"""
from typing import Dict, Optional, Sequence

import numpy as np

from .types import Landmark


FULL_ATTENTION = 1.0
EYES_CLOSED_PENALTY = 0.3
HEAD_TURNED_PENALTY = 0.3

# Eye aspect ratio below this means the eyes are closed or squinting
EYES_CLOSED_EAR = 0.2
# Normalized nose depth beyond this means the head is turned away
FACING_DEPTH_LIMIT = 0.1
# Returned for an eye that cannot be measured, so it carries no penalty
OPEN_EYE_RATIO = 1.0
EAR_POINT_COUNT = 6

KEYWORD_EYE_Y_LIMIT = 0.3
KEYWORD_NOSE_X_LIMIT = 0.2


def _named(landmarks: Sequence[Landmark], keyword: str) -> list:
    return [p for p in landmarks if p.name and keyword in p.name.lower()]


def eye_aspect_ratio(eye_points: Sequence[Landmark]) -> float:
    """
    EAR = (|p1 - p5| + |p2 - p4|) / (2 * |p0 - p3|) over 2-D points.
    Fewer than six points, or a degenerate eye width, reads as fully open.
    """
    if not eye_points or len(eye_points) < EAR_POINT_COUNT:
        return OPEN_EYE_RATIO
    pts = np.array([[p.x, p.y] for p in eye_points[:EAR_POINT_COUNT]], dtype=np.float64)
    v1 = np.linalg.norm(pts[1] - pts[5])
    v2 = np.linalg.norm(pts[2] - pts[4])
    h = np.linalg.norm(pts[0] - pts[3])
    if h == 0:
        return OPEN_EYE_RATIO
    return float((v1 + v2) / (2.0 * h))


class LandmarkConventions:
    name = "base"

    def raw_attention(self, landmarks: Sequence[Landmark]) -> float:
        raise NotImplementedError


class EyeAspectRatioConventions(LandmarkConventions):
    """Full eye contours named `left_eye*` / `right_eye*`, plus a `nose*` point with depth."""

    name = "eye_aspect_ratio"

    def raw_attention(self, landmarks: Sequence[Landmark]) -> float:
        left_ear = eye_aspect_ratio(_named(landmarks, "left_eye"))
        right_ear = eye_aspect_ratio(_named(landmarks, "right_eye"))
        avg_ear = (left_ear + right_ear) / 2.0

        attention = FULL_ATTENTION
        if avg_ear < EYES_CLOSED_EAR:
            attention -= EYES_CLOSED_PENALTY
        if not self.facing_camera(landmarks):
            attention -= HEAD_TURNED_PENALTY
        return attention

    @staticmethod
    def facing_camera(landmarks: Sequence[Landmark]) -> bool:
        noses = _named(landmarks, "nose")
        if not noses or noses[0].z is None:
            return True
        return abs(float(noses[0].z)) < FACING_DEPTH_LIMIT


class KeywordConventions(LandmarkConventions):
    """Loose `eye` / `nose` keyword matches without full eye contours."""

    name = "keyword"

    def raw_attention(self, landmarks: Sequence[Landmark]) -> float:
        eyes_closed = any(float(p.y) < KEYWORD_EYE_Y_LIMIT for p in _named(landmarks, "eye"))
        head_tilted = any(abs(float(p.x) - 0.5) > KEYWORD_NOSE_X_LIMIT for p in _named(landmarks, "nose"))

        attention = FULL_ATTENTION
        if eyes_closed:
            attention -= EYES_CLOSED_PENALTY
        if head_tilted:
            attention -= HEAD_TURNED_PENALTY
        return attention


CONVENTIONS: Dict[str, type] = {
    EyeAspectRatioConventions.name: EyeAspectRatioConventions,
    KeywordConventions.name: KeywordConventions,
}


def conventions_for(name: Optional[str]) -> LandmarkConventions:
    if name is None:
        return EyeAspectRatioConventions()
    try:
        return CONVENTIONS[name]()
    except KeyError:
        raise ValueError(
            f"Unknown landmark conventions '{name}' (expected one of: {', '.join(sorted(CONVENTIONS))})"
        ) from None
