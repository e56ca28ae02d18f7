"""
DramaCut exception hierarchy

Collaborator failures are converted into these types at the boundary that
issued the call, so the orchestrator never has to inspect raw SDK exceptions.
"""

from typing import Optional


class DramaCutError(Exception):
    """Root of all DramaCut errors."""


class RemoteCallError(DramaCutError):
    """
    Failure reported by a remote service.

    `code` / `status` mirror the attributes google-genai puts on its APIError,
    so the retry classifier can treat both the same way.
    """

    def __init__(self, message: str, code: Optional[int] = None, status: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status


class ScriptProcessingError(DramaCutError):
    """A script-level step (analysis, split, prompt batch) failed."""


class ScriptAnalysisError(ScriptProcessingError):
    pass


class PromptGenerationError(ScriptProcessingError):
    pass


class ImageGenerationError(DramaCutError):
    pass


class VideoGenerationError(DramaCutError):
    pass


class VideoGenerationTimeout(VideoGenerationError):
    pass


class FrameExtractionError(DramaCutError):
    """Base for last-frame extraction failures (best-effort, never user-facing)."""


class ExtractionTimeout(FrameExtractionError):
    pass


class ExtractionFailed(FrameExtractionError):
    pass
