"""
Helper script to build attention_report.xlsx from an attention_log.csv sample log.

Usage (from the TutorGaze directory, with venv activated):

    python generate_report.py --csv attention_log.csv --out attention_report.xlsx
"""

import argparse
import os

from tutorgaze_attention.logger import SampleLogger
from tutorgaze_attention.report import ReportGenerator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate per-session attention report (Excel) from the CSV sample log.")
    parser.add_argument(
        "--csv",
        type=str,
        default="attention_log.csv",
        help="Path to attention_log.csv (default: attention_log.csv in the current directory)",
    )
    parser.add_argument(
        "--out",
        type=str,
        default="attention_report.xlsx",
        help="Output Excel report path (default: attention_report.xlsx in the current directory)",
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    csv_path = os.path.abspath(args.csv)
    out_path = os.path.abspath(args.out)

    if not os.path.exists(csv_path):
        raise SystemExit(f"CSV file not found: {csv_path}")

    df = SampleLogger(csv_path).to_dataframe()
    if df.empty:
        print("Warning: CSV is empty, report will contain no data.")

    report = ReportGenerator(df)
    summary = report.summarize()
    for row in summary.per_session.itertuples(index=False):
        print(
            f"{row.session_id}: {row.average_attention_percentage:.1f}% attentive, "
            f"{row.attentive_minutes:.1f} min attentive / {row.distracted_minutes:.1f} min distracted"
        )
    report.export_excel(out_path)
    print(f"Attention report written to: {out_path}")


if __name__ == "__main__":
    main()
