"""
DramaCut Data Models (Pydantic Schemas)
"""

from .models import (
    ShotStatus,
    PipelineMode,
    AssetSource,
    ErrorClass,
    ImageAsset,
    VideoAsset,
    GenerationContext,
    Shot,
    CharacterArc,
    SuggestedBreak,
    ScriptAnalysis,
    GeneratedShotPrompt,
    PipelineRun,
    CallSuccess,
    CallFailure,
    CallOutcome,
    can_transition,
)

__all__ = [
    "ShotStatus",
    "PipelineMode",
    "AssetSource",
    "ErrorClass",
    "ImageAsset",
    "VideoAsset",
    "GenerationContext",
    "Shot",
    "CharacterArc",
    "SuggestedBreak",
    "ScriptAnalysis",
    "GeneratedShotPrompt",
    "PipelineRun",
    "CallSuccess",
    "CallFailure",
    "CallOutcome",
    "can_transition",
]
