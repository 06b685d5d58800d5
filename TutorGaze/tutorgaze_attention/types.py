from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from .errors import SessionClosedError


StateLabel = Literal["attentive", "distracted", "tired", "neutral"]

STATE_LABELS = ("attentive", "distracted", "tired", "neutral")


@dataclass(frozen=True)
class Landmark:
    """A facial keypoint in normalized frame coordinates. Some detectors omit names."""

    x: float
    y: float
    z: Optional[float] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class StateDescriptor:
    label: str
    name: str
    description: str
    color: str


@dataclass(frozen=True)
class Sample:
    label: str
    confidence: float
    timestamp: datetime
    attention_score: Optional[float] = None


@dataclass(frozen=True)
class AttentionReading:
    label: str
    confidence: float
    attention_score: float
    descriptor: StateDescriptor


@dataclass
class Session:
    session_id: str
    start: datetime
    end: Optional[datetime] = None
    samples: List[Sample] = field(default_factory=list)

    @property
    def active(self) -> bool:
        return self.end is None

    def record(self, sample: Sample):
        if not self.active:
            raise SessionClosedError(f"Session {self.session_id} is closed; cannot record samples")
        self.samples.append(sample)

    def close(self, end: datetime):
        # First close wins; a session ends exactly once
        if self.end is None:
            self.end = end

    def clear(self):
        self.samples.clear()


@dataclass(frozen=True)
class Report:
    start_time: datetime
    end_time: datetime
    average_attention_percentage: float
    emotion_breakdown: Dict[str, int]
    attentive_minutes: float
    distracted_minutes: float
    total_samples: int = 0
    session_id: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "average_attention_percentage": self.average_attention_percentage,
            "emotion_breakdown": dict(self.emotion_breakdown),
            "attentive_minutes": self.attentive_minutes,
            "distracted_minutes": self.distracted_minutes,
            "total_samples": self.total_samples,
        }
