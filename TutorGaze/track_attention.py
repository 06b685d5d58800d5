"""
Run one attention session against the webcam and print the report.

Usage (from the TutorGaze directory, with venv activated):

    python track_attention.py --duration 120
    python track_attention.py --config my_config.json --conventions keyword
"""

import argparse
import asyncio
import json
import os

from tutorgaze_attention.capture import AsyncFrameSource, CameraCapturer
from tutorgaze_attention.config import SamplerConfig
from tutorgaze_attention.errors import DetectorUnavailable
from tutorgaze_attention.face_landmarks import create_landmark_source
from tutorgaze_attention.logger import SampleLogger
from tutorgaze_attention.sampler import AttentionSampler


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Track student attention from the webcam for one session.")
    parser.add_argument("--duration", type=float, default=60.0, help="Session length in seconds (default: 60)")
    parser.add_argument("--config", type=str, default=None, help="Path to a JSON config file")
    parser.add_argument(
        "--conventions",
        choices=["eye_aspect_ratio", "keyword"],
        default=None,
        help="Landmark conventions used by the scorer (default: from config)",
    )
    parser.add_argument("--log", type=str, default=None, help="CSV sample log path (default: from config)")
    return parser


async def run_session(config: SamplerConfig, duration: float) -> int:
    capturer = CameraCapturer(config.camera_index)
    frames = AsyncFrameSource(capturer)
    sample_logger = SampleLogger(os.path.abspath(config.log_path), conventions=config.conventions)
    sampler = AttentionSampler(
        lambda: create_landmark_source(config),
        frames,
        config=config,
        sample_logger=sample_logger,
    )

    last_label = {"value": None}

    def on_sample(sample, reading):
        if reading.label != last_label["value"]:
            last_label["value"] = reading.label
            print(
                f"[TutorGaze] {reading.descriptor.name} "
                f"(attention {reading.attention_score * 100:.0f}%, {reading.confidence * 100:.0f}% confidence)"
            )

    sampler.add_listener(on_sample)
    try:
        try:
            await sampler.start_session()
        except DetectorUnavailable as exc:
            print(f"[TutorGaze] Failed to start attention tracking: {exc}. Please try again.")
            return 1
        await asyncio.sleep(duration)
        await sampler.stop_session()
        report = sampler.generate_report()
        print(json.dumps(report.as_dict(), indent=2))
        return 0
    finally:
        frames.close()
        sampler.close()


def main(argv=None):
    args = build_parser().parse_args(argv)
    config = SamplerConfig.load(args.config)
    if args.conventions:
        config.conventions = args.conventions
    if args.log:
        config.log_path = args.log
    try:
        code = asyncio.run(run_session(config, args.duration))
    except KeyboardInterrupt:
        code = 130
    raise SystemExit(code)


if __name__ == "__main__":
    main()
