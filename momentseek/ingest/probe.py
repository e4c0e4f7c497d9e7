from __future__ import annotations

import json
import logging
import mimetypes
import subprocess
from pathlib import Path
from typing import Any

from momentseek.errors import QueryRejected

DEFAULT_MAX_VIDEO_MB = 300
DEFAULT_MAX_DOCUMENT_MB = 50
FFPROBE_TIMEOUT_SECONDS = 30.0

logger = logging.getLogger(__name__)


def validate_video_upload(video_path: str | Path, max_size_mb: int = DEFAULT_MAX_VIDEO_MB) -> Path:
    """Check that an upload exists, looks like a video, and fits the size cap."""

    source_path = Path(video_path).expanduser().resolve()
    if not source_path.is_file():
        raise QueryRejected(f"Video file not found: {source_path}", summary="Please upload a video before submitting a query.")

    mime_type = mimetypes.guess_type(source_path.name)[0] or ""
    if not mime_type.startswith("video/"):
        raise QueryRejected(
            f"{source_path.name} has type '{mime_type or 'unknown'}'.",
            summary="Invalid file type. Please upload a video file.",
        )

    _check_size(source_path, max_size_mb)
    return source_path


def validate_document_upload(document_path: str | Path, max_size_mb: int = DEFAULT_MAX_DOCUMENT_MB) -> Path:
    """Check that a supporting document exists, is a PDF, and fits the size cap."""

    source_path = Path(document_path).expanduser().resolve()
    if not source_path.is_file():
        raise QueryRejected(f"Document file not found: {source_path}", summary="Supporting document could not be read.")

    mime_type = mimetypes.guess_type(source_path.name)[0] or ""
    if source_path.suffix.lower() != ".pdf":
        raise QueryRejected(
            f"{source_path.name} has type '{mime_type or 'unknown'}'.",
            summary="Invalid file type. Please upload a PDF file.",
        )

    _check_size(source_path, max_size_mb)
    return source_path


def _check_size(source_path: Path, max_size_mb: int) -> None:
    size_bytes = source_path.stat().st_size
    if size_bytes > max_size_mb * 1024 * 1024:
        raise QueryRejected(
            f"{source_path.name} is {size_bytes / (1024 * 1024):.2f} MB.",
            summary=f"The file exceeds the maximum size of {max_size_mb}MB.",
        )


def probe_duration(video_path: str | Path) -> float | None:
    """Return the container duration in seconds, or None when it cannot be determined."""

    try:
        payload = _run_ffprobe(Path(video_path).expanduser().resolve())
    except RuntimeError as exc:
        logger.warning("Could not probe video duration: %s", exc)
        return None

    duration = _to_float(payload.get("format", {}).get("duration"))
    if duration is None:
        stream_durations = [
            _to_float(stream.get("duration"))
            for stream in payload.get("streams", [])
            if stream.get("codec_type") == "video"
        ]
        duration = max((value for value in stream_durations if value is not None), default=None)

    if duration is None or duration <= 0:
        return None
    return duration


def _run_ffprobe(video_path: Path, timeout_seconds: float = FFPROBE_TIMEOUT_SECONDS) -> dict[str, Any]:
    """Ask ffprobe for the container and per-stream durations only."""

    command = [
        "ffprobe",
        "-v",
        "error",
        "-show_entries",
        "format=duration:stream=codec_type,duration",
        "-of",
        "json",
        str(video_path),
    ]

    try:
        completed = subprocess.run(command, check=True, capture_output=True, text=True, timeout=timeout_seconds)
    except FileNotFoundError as exc:
        raise RuntimeError("ffprobe executable was not found. Install FFmpeg so ffprobe is available on PATH.") from exc
    except subprocess.TimeoutExpired as exc:
        raise RuntimeError(f"ffprobe did not finish within {timeout_seconds:g}s for {video_path.name}.") from exc
    except subprocess.CalledProcessError as exc:
        stderr = (exc.stderr or "").strip()
        raise RuntimeError(f"ffprobe could not read {video_path.name}: {stderr or f'exit code {exc.returncode}'}") from exc

    try:
        payload = json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"ffprobe returned invalid JSON output: {exc}") from exc
    if not isinstance(payload, dict):
        raise RuntimeError("ffprobe returned JSON that is not an object.")
    return payload


def _to_float(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None
    try:
        return float(raw_value)
    except (TypeError, ValueError):
        return None
