from __future__ import annotations

import json
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Any, Iterator, Protocol
from urllib import request
from urllib.error import HTTPError, URLError

from momentseek.errors import PredictionServiceError

DEFAULT_ENDPOINT = "http://localhost:8000"
DEFAULT_TIMEOUT_SECONDS = 300
DEFAULT_MAX_RETRIES = 0
UPLOAD_CHUNK_BYTES = 1024 * 1024

logger = logging.getLogger(__name__)


class PredictionService(Protocol):
    """Opaque moment predictor: video + question in, raw JSON payload out."""

    def predict(
        self,
        video_path: str | Path,
        query_text: str,
        document_path: str | Path | None = None,
    ) -> dict[str, Any]: ...


class HttpPredictionClient:
    """POST multipart form data (`video`, `query`, optional `pdf`) to `{endpoint}/predict`."""

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        *,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        include_document: bool = False,
    ) -> None:
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.include_document = include_document

    def predict(
        self,
        video_path: str | Path,
        query_text: str,
        document_path: str | Path | None = None,
    ) -> dict[str, Any]:
        fields = {"query": query_text}
        files = {"video": Path(video_path)}
        if document_path is not None and self.include_document:
            files["pdf"] = Path(document_path)

        parts, content_type = _encode_multipart(fields, files)
        url = f"{self.endpoint.rstrip('/')}/predict"

        attempts = max(0, self.max_retries) + 1
        for attempt in range(1, attempts):
            try:
                return _post(url, parts=parts, content_type=content_type, timeout_seconds=self.timeout_seconds)
            except PredictionServiceError as exc:
                logger.warning("Prediction request %d to %s failed, retrying: %s", attempt, url, exc.detail)
        return _post(url, parts=parts, content_type=content_type, timeout_seconds=self.timeout_seconds)


def _post(url: str, *, parts: list[bytes | Path], content_type: str, timeout_seconds: int) -> dict[str, Any]:
    req = request.Request(
        url,
        data=_stream_parts(parts),
        method="POST",
        headers={
            "Content-Type": content_type,
            "Content-Length": str(_content_length(parts)),
            "Accept": "application/json",
        },
    )

    try:
        with request.urlopen(req, timeout=timeout_seconds) as response:
            raw = response.read().decode("utf-8")
    except HTTPError as exc:
        error_text = exc.read().decode("utf-8", errors="replace").strip()
        raise PredictionServiceError(f"Server error: {exc.code}. {error_text}".strip()) from exc
    except (URLError, TimeoutError, OSError) as exc:
        reason = getattr(exc, "reason", exc)
        raise PredictionServiceError(f"Could not reach {url}: {reason}") from exc

    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PredictionServiceError(f"Prediction service returned invalid JSON: {exc}") from exc

    logger.debug("Prediction service responded with %d byte(s).", len(raw))
    return payload


def _encode_multipart(fields: dict[str, str], files: dict[str, Path]) -> tuple[list[bytes | Path], str]:
    """Lay out a multipart body as byte chunks and file paths to stream from disk."""

    boundary = f"----momentseek{uuid.uuid4().hex}"
    parts: list[bytes | Path] = []

    for name, value in fields.items():
        parts.append(
            (
                f"--{boundary}\r\n"
                f'Content-Disposition: form-data; name="{name}"\r\n\r\n'
                f"{value}\r\n"
            ).encode("utf-8")
        )

    for name, path in files.items():
        mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        parts.append(
            (
                f"--{boundary}\r\n"
                f'Content-Disposition: form-data; name="{name}"; filename="{_quote_filename(path.name)}"\r\n'
                f"Content-Type: {mime_type}\r\n\r\n"
            ).encode("utf-8")
        )
        parts.append(path)
        parts.append(b"\r\n")

    parts.append(f"--{boundary}--\r\n".encode("utf-8"))
    return parts, f"multipart/form-data; boundary={boundary}"


def _stream_parts(parts: list[bytes | Path]) -> Iterator[bytes]:
    for part in parts:
        if isinstance(part, bytes):
            yield part
            continue
        with part.open("rb") as handle:
            for chunk in iter(lambda: handle.read(UPLOAD_CHUNK_BYTES), b""):
                yield chunk


def _content_length(parts: list[bytes | Path]) -> int:
    return sum(len(part) if isinstance(part, bytes) else part.stat().st_size for part in parts)


def _quote_filename(name: str) -> str:
    # percent-escape the characters that would end the quoted header value
    return name.replace('"', "%22").replace("\r", "%0D").replace("\n", "%0A")
