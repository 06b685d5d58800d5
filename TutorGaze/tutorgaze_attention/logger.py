import csv
import os
import tempfile
from typing import List, Optional

import pandas as pd

from .types import Sample, Session


LOG_FIELDS = [
    "timestamp",
    "session_id",
    "session_start",
    "label",
    "confidence",
    "attention_score",
    "conventions",
]


class SampleLogger:
    """
    Appends one CSV row per attention sample while tolerating locked files
    (e.g. the log is open in Excel). Rows go to a temp queue file until the
    target CSV becomes writable again.
    """

    def __init__(self, csv_path: str, conventions: Optional[str] = None):
        self.csv_path = csv_path
        self.temp_csv_path = os.path.splitext(self.csv_path)[0] + "_queue.tmp"
        self.conventions = conventions or ""
        self._perm_warned = False

        os.makedirs(os.path.dirname(os.path.abspath(csv_path)), exist_ok=True)
        self._ensure_header(self.csv_path)

    def log_sample(self, session: Session, sample: Sample):
        """Append a sample row; never raises to keep the sampling loop alive."""
        row = self._build_row(session, sample)

        try:
            self._write_row(self.csv_path, row)
        except PermissionError:
            if not self._perm_warned:
                print(
                    f"[TutorGaze] Warning: {os.path.basename(self.csv_path)} is locked (maybe open in Excel). "
                    "Logging to a temporary queue until the file becomes writable."
                )
                self._perm_warned = True
            self._write_row(self.temp_csv_path, row, allow_permission_retry=False)
        except Exception as exc:
            print(f"[TutorGaze] Logging error: {exc}")

    def to_dataframe(self) -> pd.DataFrame:
        """Read main + temp queue CSVs with resilient parsing."""
        frames: List[pd.DataFrame] = []

        for path in [self.csv_path, self.temp_csv_path]:
            if not os.path.exists(path):
                continue
            df = self._read_csv_safe(path)
            if not df.empty:
                frames.append(df)

        if not frames:
            return pd.DataFrame(columns=LOG_FIELDS)

        combined = pd.concat(frames, ignore_index=True)
        for column in LOG_FIELDS:
            if column not in combined.columns:
                combined[column] = ""
        return combined[LOG_FIELDS]

    # ----------------------------
    # Internal helpers
    # ----------------------------

    def _build_row(self, session: Session, sample: Sample) -> dict:
        return {
            "timestamp": sample.timestamp.isoformat(),
            "session_id": session.session_id,
            "session_start": session.start.isoformat(),
            "label": sample.label,
            "confidence": f"{sample.confidence:.4f}",
            "attention_score": f"{sample.attention_score:.4f}" if sample.attention_score is not None else "",
            "conventions": self.conventions,
        }

    def _write_row(self, path: str, row: dict, allow_permission_retry: bool = True):
        try:
            need_header = not os.path.exists(path) or os.path.getsize(path) == 0
        except OSError:
            need_header = True

        try:
            with open(path, "a", newline="", encoding="utf-8") as handle:
                writer = csv.DictWriter(handle, fieldnames=LOG_FIELDS)
                if need_header:
                    writer.writeheader()
                writer.writerow(row)
        except PermissionError:
            if allow_permission_retry:
                raise
        except OSError:
            fallback = os.path.join(tempfile.gettempdir(), "tutorgaze_fallback.csv")
            if path == fallback:
                return
            self._write_row(fallback, row, allow_permission_retry=False)

    def _ensure_header(self, path: str):
        """Create the CSV with a header, or set aside a file written with another schema."""
        expected = ",".join(LOG_FIELDS)
        if not os.path.exists(path) or os.path.getsize(path) == 0:
            with open(path, "w", newline="", encoding="utf-8") as handle:
                csv.DictWriter(handle, fieldnames=LOG_FIELDS).writeheader()
            return

        try:
            with open(path, "r", encoding="utf-8") as handle:
                first_line = handle.readline().strip()
        except OSError:
            first_line = ""

        if first_line == expected:
            return

        backup_path = path + ".bak"
        os.replace(path, backup_path)
        with open(path, "w", newline="", encoding="utf-8") as handle:
            csv.DictWriter(handle, fieldnames=LOG_FIELDS).writeheader()
        print(f"[TutorGaze] Existing log had an unexpected header. Backup saved at {backup_path}")

    def _read_csv_safe(self, path: str) -> pd.DataFrame:
        try:
            return pd.read_csv(path, on_bad_lines="skip", encoding="utf-8")
        except pd.errors.EmptyDataError:
            return pd.DataFrame(columns=LOG_FIELDS)
        except Exception as exc:
            print(f"[TutorGaze] CSV read warning for {os.path.basename(path)}: {exc}")
            return pd.DataFrame(columns=LOG_FIELDS)
