import math
from typing import Optional, Sequence

from .conventions import LandmarkConventions, conventions_for
from .types import Landmark


NEUTRAL_ATTENTION = 0.5


def clamp_score(value: float) -> float:
    return max(0.0, min(1.0, value))


def score_attention(
    landmarks: Optional[Sequence[Landmark]],
    conventions: LandmarkConventions | None = None,
) -> float:
    """
    Attention score in [0, 1] for one frame of landmarks.

    An empty frame scores NEUTRAL_ATTENTION whatever the convention. Never raises:
    malformed points fall back to NEUTRAL_ATTENTION so the sampling loop keeps going.
    """
    if conventions is None:
        conventions = conventions_for(None)
    try:
        points = list(landmarks or [])
        if not points:
            return NEUTRAL_ATTENTION
        raw = float(conventions.raw_attention(points))
    except Exception as exc:
        print(f"[Scorer] Error calculating attention ({conventions.name}): {exc}")
        return NEUTRAL_ATTENTION
    if math.isnan(raw):
        return NEUTRAL_ATTENTION
    return clamp_score(raw)


class AttentionScorer:
    """Binds a landmark convention chosen at configuration time."""

    def __init__(self, conventions: LandmarkConventions | str | None = None):
        if conventions is None or isinstance(conventions, str):
            conventions = conventions_for(conventions)
        self.conventions = conventions

    @property
    def name(self) -> str:
        return self.conventions.name

    def score(self, landmarks: Optional[Sequence[Landmark]]) -> float:
        return score_attention(landmarks, self.conventions)
