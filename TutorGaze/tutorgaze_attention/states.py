from types import MappingProxyType
from typing import Mapping, Tuple

from .errors import DescriptorLookupError
from .types import StateDescriptor, StateLabel


ATTENTIVE_ABOVE = 0.8
DISTRACTED_BELOW = 0.4
TIRED_BELOW = 0.6
TIRED_CONFIDENCE = 0.7
NEUTRAL_CONFIDENCE = 0.6


STATE_DESCRIPTORS: Mapping[str, StateDescriptor] = MappingProxyType(
    {
        "attentive": StateDescriptor(
            label="attentive",
            name="Attentive",
            description="You appear to be focused and engaged with the content.",
            color="green",
        ),
        "distracted": StateDescriptor(
            label="distracted",
            name="Distracted",
            description="You seem to be losing focus. Try to concentrate more.",
            color="yellow",
        ),
        "tired": StateDescriptor(
            label="tired",
            name="Tired",
            description="You're showing signs of fatigue. Consider taking a short break.",
            color="red",
        ),
        "neutral": StateDescriptor(
            label="neutral",
            name="Neutral",
            description="Your expression appears calm and balanced.",
            color="gray",
        ),
    }
)


def classify_state(score: float) -> Tuple[StateLabel, float]:
    """Map an attention score to (label, confidence). Thresholds are strict."""
    if score > ATTENTIVE_ABOVE:
        return "attentive", score
    if score < DISTRACTED_BELOW:
        return "distracted", 1.0 - score
    if score < TIRED_BELOW:
        return "tired", TIRED_CONFIDENCE
    return "neutral", NEUTRAL_CONFIDENCE


def describe_state(label: str) -> StateDescriptor:
    try:
        return STATE_DESCRIPTORS[label]
    except (KeyError, TypeError):
        raise DescriptorLookupError(f"No descriptor for state label {label!r}") from None
