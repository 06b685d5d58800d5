from collections import Counter
from dataclasses import dataclass
from typing import List

import pandas as pd

from .errors import SessionStateError
from .types import STATE_LABELS, Report, Sample, Session


def summarize_session(session: Session) -> Report:
    """
    Reduce a finished session to a Report, then clear its history.

    Attentive share = attentive samples / all samples; minutes are that share of
    the session's wall-clock length. A session without samples yields a zeroed
    report rather than a division error. Every label appears in the breakdown,
    with 0 for labels never observed.
    """
    if session.end is None:
        raise SessionStateError(f"Session {session.session_id} is still active")

    counts = Counter(sample.label for sample in session.samples)
    breakdown = {label: counts.get(label, 0) for label in STATE_LABELS}
    total = len(session.samples)

    if total == 0:
        average = 0.0
        attentive_minutes = 0.0
        distracted_minutes = 0.0
    else:
        share = counts.get("attentive", 0) / total
        total_minutes = (session.end - session.start).total_seconds() / 60.0
        average = share * 100.0
        attentive_minutes = share * total_minutes
        distracted_minutes = total_minutes - attentive_minutes

    report = Report(
        start_time=session.start,
        end_time=session.end,
        average_attention_percentage=average,
        emotion_breakdown=breakdown,
        attentive_minutes=attentive_minutes,
        distracted_minutes=distracted_minutes,
        total_samples=total,
        session_id=session.session_id,
    )
    session.clear()
    return report


@dataclass
class SessionsSummary:
    per_session: pd.DataFrame
    best_session: str
    worst_session: str


SUMMARY_COLUMNS = [
    "session_id",
    "start_time",
    "end_time",
    "total_samples",
    "average_attention_percentage",
    "attentive_minutes",
    "distracted_minutes",
] + [f"{label}_count" for label in STATE_LABELS]


class ReportGenerator:
    """
    Builds per-session reports from a sample log DataFrame (see SampleLogger).
    Logged sessions carry no explicit end, so the last sample's timestamp is used.
    """

    def __init__(self, df: pd.DataFrame):
        self.df = df

    def sessions(self) -> List[Session]:
        if self.df.empty:
            return []
        df = self.df.copy()
        df["timestamp"] = pd.to_datetime(df["timestamp"], errors="coerce")
        df["session_start"] = pd.to_datetime(df["session_start"], errors="coerce")
        df["confidence"] = pd.to_numeric(df["confidence"], errors="coerce").fillna(0.0)
        df["attention_score"] = pd.to_numeric(df["attention_score"], errors="coerce")
        df = df.dropna(subset=["timestamp", "session_start"])
        df = df[df["label"].isin(STATE_LABELS)]

        sessions: List[Session] = []
        for session_id, rows in df.groupby("session_id", sort=False):
            rows = rows.sort_values("timestamp")
            samples = [
                Sample(
                    label=row.label,
                    confidence=float(row.confidence),
                    timestamp=row.timestamp.to_pydatetime(),
                    attention_score=None if pd.isna(row.attention_score) else float(row.attention_score),
                )
                for row in rows.itertuples(index=False)
            ]
            sessions.append(
                Session(
                    session_id=str(session_id),
                    start=rows["session_start"].iloc[0].to_pydatetime(),
                    end=samples[-1].timestamp,
                    samples=samples,
                )
            )
        return sessions

    def summarize(self) -> SessionsSummary:
        records = []
        for session in self.sessions():
            report = summarize_session(session)
            record = {
                "session_id": report.session_id,
                "start_time": report.start_time,
                "end_time": report.end_time,
                "total_samples": report.total_samples,
                "average_attention_percentage": round(report.average_attention_percentage, 2),
                "attentive_minutes": round(report.attentive_minutes, 2),
                "distracted_minutes": round(report.distracted_minutes, 2),
            }
            for label, count in report.emotion_breakdown.items():
                record[f"{label}_count"] = count
            records.append(record)

        if not records:
            return SessionsSummary(
                per_session=pd.DataFrame(columns=SUMMARY_COLUMNS),
                best_session="",
                worst_session="",
            )
        per_session = pd.DataFrame(records, columns=SUMMARY_COLUMNS)
        ranked = per_session.sort_values("average_attention_percentage", ascending=False)
        return SessionsSummary(
            per_session=per_session,
            best_session=ranked.iloc[0]["session_id"],
            worst_session=ranked.iloc[-1]["session_id"],
        )

    def export_excel(self, path: str):
        summary = self.summarize()
        with pd.ExcelWriter(path) as writer:
            self.df.to_excel(writer, sheet_name="Raw Log", index=False)
            summary.per_session.to_excel(writer, sheet_name="Per-Session Summary", index=False)
            meta = pd.DataFrame(
                [
                    {"metric": "sessions", "value": len(summary.per_session)},
                    {"metric": "most_attentive_session", "value": summary.best_session},
                    {"metric": "least_attentive_session", "value": summary.worst_session},
                ]
            )
            meta.to_excel(writer, sheet_name="Summary", index=False)
