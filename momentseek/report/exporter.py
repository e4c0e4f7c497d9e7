from __future__ import annotations

import csv
import json
import shlex
from pathlib import Path
from typing import Any

from momentseek.models import ResultSet, Segment, Timeline

TOP_PREDICTION_COUNT = 3


def export_results(results: ResultSet, output_path: str | Path) -> Path:
    """Export a ranked result set to JSON (default) or CSV, based on file extension."""

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.suffix.lower() == ".csv":
        _write_csv(results, path)
    else:
        path.write_text(json.dumps(results_payload(results), indent=2), encoding="utf-8")

    return path


def export_query_outputs(
    results: ResultSet,
    timeline: Timeline,
    output_dir: str | Path,
    *,
    basename: str = "moments",
    video_path: str | None = None,
    include_ffmpeg_commands: bool = True,
) -> dict[str, Path]:
    """Write results JSON/CSV, the timeline curve, and a review manifest."""

    resolved_output_dir = Path(output_dir)
    resolved_output_dir.mkdir(parents=True, exist_ok=True)

    json_path = export_results(results, resolved_output_dir / f"{basename}.json")
    csv_path = export_results(results, resolved_output_dir / f"{basename}.csv")

    timeline_path = resolved_output_dir / f"{basename}_timeline.json"
    timeline_path.write_text(json.dumps(timeline_payload(timeline), indent=2), encoding="utf-8")

    review_path = resolved_output_dir / f"{basename}_review.json"
    review_manifest = generate_review_manifest(
        results,
        video_path=video_path,
        include_ffmpeg_commands=include_ffmpeg_commands,
    )
    review_path.write_text(json.dumps(review_manifest, indent=2, ensure_ascii=False), encoding="utf-8")

    return {
        "json": json_path,
        "csv": csv_path,
        "timeline": timeline_path,
        "review": review_path,
    }


def results_payload(results: ResultSet) -> list[dict[str, float]]:
    return [
        {
            "start_time": segment.start_time,
            "end_time": segment.end_time,
            "confidence": segment.confidence,
        }
        for segment in results
    ]


def timeline_payload(timeline: Timeline) -> dict[str, Any]:
    return {
        "video_duration": timeline.video_duration,
        "resolution": timeline.resolution,
        "degraded": timeline.degraded,
        "points": [{"time": point.time, "confidence": point.confidence} for point in timeline.points],
    }


def generate_review_manifest(
    results: ResultSet,
    *,
    video_path: str | None = None,
    include_ffmpeg_commands: bool = True,
    limit: int = TOP_PREDICTION_COUNT,
) -> list[dict[str, Any]]:
    """Summarize the top predictions the way the results panel lists them."""

    manifest: list[dict[str, Any]] = []
    for rank, segment in enumerate(results.top(limit), start=1):
        entry = {
            "rank": rank,
            "start_time": segment.start_time,
            "end_time": segment.end_time,
            "span": f"{format_timestamp(segment.start_time)} - {format_timestamp(segment.end_time)}",
            "confidence": segment.confidence,
            "confidence_percent": format_percent(segment.confidence),
            "confidence_label": confidence_label(segment.confidence),
        }
        if include_ffmpeg_commands and video_path:
            entry["ffmpeg_command"] = build_ffmpeg_clip_command(
                video_path=video_path,
                segment=segment,
                clip_name=f"moment_{rank:02d}",
            )
        manifest.append(entry)

    return manifest


def build_ffmpeg_clip_command(
    *,
    video_path: str,
    segment: Segment,
    clip_name: str = "moment",
    output_dir: str = "clips",
) -> str:
    """Generate a copy-paste ffmpeg command that cuts one segment out of the source video."""

    output_path = f"{output_dir.rstrip('/')}/{clip_name}.mp4"

    quoted_video = shlex.quote(video_path)
    quoted_output = shlex.quote(output_path)

    return (
        "ffmpeg "
        f"-ss {segment.start_time:.3f} "
        f"-i {quoted_video} "
        f"-t {segment.duration:.3f} "
        "-c:v libx264 -preset veryfast -crf 18 "
        "-c:a aac -b:a 160k "
        f"{quoted_output}"
    )


def format_timestamp(seconds: float) -> str:
    """Render seconds as m:ss."""

    total = max(0, int(round(seconds)))
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d}"


def format_percent(confidence: float) -> str:
    clamped = max(0.0, min(1.0, confidence))
    return f"{clamped * 100:.1f}%"


def confidence_label(confidence: float) -> str:
    if confidence > 0.8:
        return "high"
    if confidence > 0.5:
        return "medium"
    return "low"


def _write_csv(results: ResultSet, path: Path) -> None:
    fields = [
        "rank",
        "start_time",
        "end_time",
        "span",
        "confidence",
        "confidence_percent",
        "confidence_label",
    ]

    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=fields)
        writer.writeheader()
        for rank, segment in enumerate(results, start=1):
            writer.writerow(
                {
                    "rank": rank,
                    "start_time": f"{segment.start_time:.3f}",
                    "end_time": f"{segment.end_time:.3f}",
                    "span": f"{format_timestamp(segment.start_time)} - {format_timestamp(segment.end_time)}",
                    "confidence": f"{segment.confidence:.4f}",
                    "confidence_percent": format_percent(segment.confidence),
                    "confidence_label": confidence_label(segment.confidence),
                }
            )
