from __future__ import annotations


class ServiceError(Exception):
    kind = "service_error"
    remediation = "Try again in a few moments."

    def __init__(self, message: str, remediation: str | None = None) -> None:
        super().__init__(message)
        if remediation is not None:
            self.remediation = remediation

    def to_dict(self) -> dict[str, str]:
        return {
            "kind": self.kind,
            "message": str(self),
            "remediation": self.remediation,
        }


class PlatformUnsupportedError(ServiceError):
    kind = "platform_unsupported"
    remediation = "Paste a full http(s) link to the video post."


class FetchError(ServiceError):
    kind = "fetch_failed"
    remediation = "Check that the post is public and the link opens in a browser."

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class NotFoundError(ServiceError):
    kind = "caption_not_found"
    remediation = "The post has no usable caption; run the full analysis."


class DownloadError(ServiceError):
    kind = "download_failed"
    remediation = "Make sure the video is public and still available."


class ProbeFallback(ServiceError):
    kind = "probe_fallback"

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Could not probe duration of {path}: {reason}")
        self.path = path
        self.reason = reason


class FrameExtractionTimeout(ServiceError):
    kind = "frame_timeout"

    def __init__(self, timestamp: float, timeout_seconds: float) -> None:
        super().__init__(f"Frame capture at {timestamp}s timed out after {timeout_seconds}s")
        self.timestamp = timestamp
        self.timeout_seconds = timeout_seconds


class FrameCaptureError(ServiceError):
    kind = "frame_capture_failed"

    def __init__(self, timestamp: float, reason: str) -> None:
        super().__init__(f"Frame capture at {timestamp}s failed: {reason}")
        self.timestamp = timestamp
        self.reason = reason


class RateLimitExceeded(ServiceError):
    kind = "rate_limited"
    remediation = "The AI provider is rate limiting requests; wait a minute and retry."


class NoFramesExtractedError(ServiceError):
    kind = "no_frames"
    remediation = "The video could not be sampled; try a different link to the same recipe."


class NoObservationsError(ServiceError):
    kind = "no_observations"
    remediation = "No frame could be analyzed; retry later."


class NoUsableTextError(ServiceError):
    kind = "no_usable_text"


class TranscriptionError(ServiceError):
    kind = "transcription_failed"


class ProviderError(ServiceError):
    kind = "provider_failed"


class ProviderConfigurationError(ProviderError):
    kind = "provider_not_configured"
    remediation = "Configure GEMINI_API_KEY or OPENAI_API_KEY."


class StageTimeoutError(ServiceError):
    kind = "stage_timeout"

    def __init__(self, stage: str, timeout_seconds: float) -> None:
        super().__init__(f"Stage '{stage}' timed out after {timeout_seconds}s")
        self.stage = stage
        self.timeout_seconds = timeout_seconds


class OverallTimeoutError(ServiceError):
    kind = "timeout"
    remediation = (
        "The video took too long to analyze. Try a shorter clip or a post "
        "whose caption lists the ingredients."
    )

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Recipe extraction exceeded {timeout_seconds}s")
        self.timeout_seconds = timeout_seconds


class NeedsFullAnalysisError(ServiceError):
    kind = "needs_full_analysis"
    remediation = "No recipe found in captions. Enable full analysis for audio/video processing."


class NoRecipeFoundError(ServiceError):
    kind = "no_recipe_found"
    remediation = (
        "No recipe found in captions, audio transcription, or video analysis. "
        "Copy the recipe text from the post manually or try another link."
    )
