from __future__ import annotations

import json
import logging
from pathlib import Path
from time import perf_counter
from typing import Any, Callable, TypeVar

import typer

from momentseek.config import Settings, load_settings
from momentseek.errors import MomentSeekError
from momentseek.history.ledger import HistoryLedger, HistoryQuery, best_of
from momentseek.history.store import JsonlHistoryStore
from momentseek.logging_config import configure_logging
from momentseek.models import HistoryEntry, Segment
from momentseek.orchestrator import QueryOrchestrator
from momentseek.report.exporter import (
    build_ffmpeg_clip_command,
    export_query_outputs,
    format_timestamp,
    generate_review_manifest,
    results_payload,
    timeline_payload,
)
from momentseek.results.normalizer import normalize_prediction
from momentseek.timeline.synthesizer import synthesize_timeline

app = typer.Typer(help="Find the moments in a video that answer a natural-language question.")
config_app = typer.Typer(help="Configuration commands.")
history_app = typer.Typer(help="Query history commands.")

app.add_typer(config_app, name="config")
app.add_typer(history_app, name="history")

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONFIG_OPTION = typer.Option(
    Path("configs/default.yaml"),
    "--config",
    "-c",
    envvar="MOMENTSEEK_CONFIG",
    help="Path to YAML configuration file.",
)
OWNER_OPTION = typer.Option(
    ...,
    "--owner",
    envvar="MOMENTSEEK_OWNER",
    help="Opaque owner token that scopes query history.",
)


def _run_with_progress(step_index: int, total_steps: int, label: str, work: Callable[[], T]) -> T:
    typer.echo(f"[{step_index}/{total_steps}] {label}...", err=True)
    started_at = perf_counter()
    try:
        result = work()
    except Exception:
        elapsed = perf_counter() - started_at
        typer.echo(f"[{step_index}/{total_steps}] {label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = perf_counter() - started_at
    typer.echo(f"[{step_index}/{total_steps}] {label} done in {elapsed:.1f}s", err=True)
    return result


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _build_ledger(settings: Settings) -> HistoryLedger:
    return HistoryLedger(JsonlHistoryStore(settings.history.store_dir))


def _fail(exc: Exception) -> typer.Exit:
    logger.error("Command failed: %s", exc)
    if isinstance(exc, MomentSeekError):
        typer.echo(f"Error: {exc.summary}", err=True)
        if exc.detail:
            typer.echo(f"Details: {exc.detail}", err=True)
    else:
        typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


@config_app.command("show")
def show_config(config_path: Path = CONFIG_OPTION) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@app.command("predict")
def predict(
    video_path: Path = typer.Argument(..., help="Video to search."),
    query: str = typer.Argument(..., help="Natural-language question about the video."),
    owner: str = OWNER_OPTION,
    document_path: Path | None = typer.Option(None, "--document", help="Optional supporting PDF."),
    duration: float | None = typer.Option(None, help="Video duration in seconds; probed with ffprobe when omitted."),
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Directory for JSON/CSV/review outputs."),
    basename: str = typer.Option("moments", help="Base filename for exported artifacts."),
    export: bool = typer.Option(True, help="Write result, timeline and review artifacts."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Ask a question about a video and print the ranked moments."""

    settings = _bootstrap(config_path)
    orchestrator = QueryOrchestrator.from_settings(settings)
    orchestrator.load_video(video_path, duration)

    total_steps = 2 if export else 1
    try:
        outcome = _run_with_progress(
            1,
            total_steps,
            "Run prediction",
            lambda: orchestrator.submit(query, owner, document_path=document_path),
        )
        exported: dict[str, Path] = {}
        if export and outcome.timeline is not None:
            exported = _run_with_progress(
                2,
                total_steps,
                "Export outputs",
                lambda: export_query_outputs(
                    outcome.results,
                    outcome.timeline,
                    output_dir or settings.output.output_dir,
                    basename=basename,
                    video_path=str(video_path),
                ),
            )
    except (OSError, RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc

    if outcome.no_match:
        typer.echo("No predictions found: the model did not find any matching segments for your query.", err=True)
    if outcome.storage_error is not None:
        typer.echo(f"Warning: {outcome.storage_error.summary}", err=True)

    best = outcome.results.best_segment
    typer.echo(
        json.dumps(
            {
                "status": outcome.status,
                "video_path": str(video_path),
                "query": query,
                "result_count": len(outcome.results),
                "best_segment": _segment_json(best) if best is not None else None,
                "top_predictions": generate_review_manifest(outcome.results, include_ffmpeg_commands=False),
                "timeline": {
                    "video_duration": outcome.timeline.video_duration,
                    "resolution": outcome.timeline.resolution,
                    "degraded": outcome.timeline.degraded,
                }
                if outcome.timeline is not None
                else None,
                "history_entry_id": outcome.entry.id if outcome.entry is not None else None,
                "history_saved": outcome.persisted,
                "outputs": {key: str(path) for key, path in exported.items()},
            },
            indent=2,
        )
    )


@app.command("timeline")
def timeline(
    payload_path: Path = typer.Argument(..., help="Raw prediction payload JSON."),
    duration: float | None = typer.Option(None, help="Video duration in seconds."),
    resolution: int | None = typer.Option(None, help="Number of samples; defaults to configured resolution."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Rank a saved prediction payload and print its confidence timeline."""

    settings = _bootstrap(config_path)
    try:
        payload = json.loads(payload_path.read_text(encoding="utf-8"))
        results = normalize_prediction(payload, field=settings.prediction.response_field)
        curve = synthesize_timeline(
            results,
            duration,
            resolution=resolution or settings.timeline.resolution,
            fallback_duration=settings.timeline.fallback_duration_seconds,
            inclusive_end=settings.timeline.inclusive_end,
        )
    except (OSError, ValueError) as exc:
        raise _fail(exc) from exc

    typer.echo(json.dumps({"results": results_payload(results), **timeline_payload(curve)}, indent=2))


@history_app.command("list")
def list_history(
    owner: str = OWNER_OPTION,
    sort_field: str = typer.Option("created_at", help="created_at, query_text, video_label or confidence."),
    direction: str = typer.Option("desc", help="asc or desc."),
    page: int = typer.Option(1, help="1-based page number."),
    page_size: int | None = typer.Option(None, help="Entries per page; defaults to configured page size."),
    search: str | None = typer.Option(None, help="Case-insensitive filter on query text or video name."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """List past queries for an owner."""

    settings = _bootstrap(config_path)
    ledger = _build_ledger(settings)
    try:
        params = HistoryQuery(
            sort_field=sort_field,
            sort_direction=direction,
            page=page,
            page_size=page_size or settings.history.page_size,
            search_text=search,
        )
        result = ledger.query(owner, params)
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc

    typer.echo(
        json.dumps(
            {
                "page": result.page,
                "page_size": result.page_size,
                "total_count": result.total_count,
                "total_pages": result.total_pages,
                "entries": [_entry_summary(entry) for entry in result.entries],
            },
            indent=2,
            ensure_ascii=False,
        )
    )


@history_app.command("show")
def show_history_entry(
    entry_id: str = typer.Argument(..., help="History entry id."),
    owner: str = OWNER_OPTION,
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Print one history entry with its full result set."""

    settings = _bootstrap(config_path)
    try:
        entry = _require_entry(_build_ledger(settings), owner, entry_id)
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc

    typer.echo(
        json.dumps(
            {**_entry_summary(entry), "results": results_payload(entry.results)},
            indent=2,
            ensure_ascii=False,
        )
    )


@history_app.command("clip")
def clip_history_entry(
    entry_id: str = typer.Argument(..., help="History entry id."),
    video_path: Path = typer.Option(..., "--video", help="Source video the entry was computed on."),
    owner: str = OWNER_OPTION,
    rank: int = typer.Option(1, help="1-based rank of the segment to cut (1 = best match)."),
    output_dir: str = typer.Option("clips", help="Directory used in the generated ffmpeg output path."),
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Print an ffmpeg command that cuts a ranked segment of a past query."""

    settings = _bootstrap(config_path)
    try:
        entry = _require_entry(_build_ledger(settings), owner, entry_id)
        if rank < 1 or rank > len(entry.results):
            raise ValueError(f"Entry {entry_id} has {len(entry.results)} segment(s); rank {rank} is out of range.")
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc

    segment = entry.results[rank - 1]
    typer.echo(
        build_ffmpeg_clip_command(
            video_path=str(video_path),
            segment=segment,
            clip_name=f"{entry.id}_{rank:02d}",
            output_dir=output_dir,
        )
    )


def _require_entry(ledger: HistoryLedger, owner: str, entry_id: str) -> HistoryEntry:
    entry = ledger.get(owner, entry_id)
    if entry is None:
        raise ValueError(f"No history entry {entry_id} for this owner.")
    return entry


def _segment_json(segment: Segment) -> dict[str, Any]:
    return {
        "start_time": segment.start_time,
        "end_time": segment.end_time,
        "confidence": segment.confidence,
        "span": f"{format_timestamp(segment.start_time)} - {format_timestamp(segment.end_time)}",
    }


def _entry_summary(entry: HistoryEntry) -> dict[str, Any]:
    best = best_of(entry)
    return {
        "id": entry.id,
        "created_at": entry.created_at.isoformat(),
        "query": entry.query_text,
        "video": entry.video_label,
        "document": entry.aux_document_label,
        "result_count": len(entry.results),
        "best_segment": _segment_json(best) if best is not None else None,
    }


if __name__ == "__main__":
    app()
