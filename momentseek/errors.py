from __future__ import annotations


class MomentSeekError(Exception):
    """Base error carrying a user-safe summary plus the original diagnostic detail."""

    summary = "Failed to process your query. Please try again."

    def __init__(self, detail: str | None = None, *, summary: str | None = None) -> None:
        if summary is not None:
            self.summary = summary
        self.detail = detail
        super().__init__(self.summary if not detail else f"{self.summary} Details: {detail}")


class MalformedResponse(MomentSeekError, ValueError):
    summary = "Invalid response format. Expected predicted moments array."


class PredictionServiceError(MomentSeekError, RuntimeError):
    summary = "Failed to reach the prediction service. Please try again."


class QueryRejected(MomentSeekError, ValueError):
    summary = "Query could not be submitted."


class StorageUnavailable(MomentSeekError, RuntimeError):
    summary = "Query history is currently unavailable."


class InvalidClipBounds(MomentSeekError, ValueError):
    summary = "Clip end must be after clip start."


class RequestSuperseded(MomentSeekError, RuntimeError):
    summary = "A newer request replaced this one."
