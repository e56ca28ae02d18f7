"""
DRAMACUT Agents Package

에이전트 기반 아키텍처:
- PromptAgent: 대본 분석 / 분할 / 프롬프트 생성·수정
- ImageAgent: 첫 프레임 이미지 생성
- VideoAgent: 영상 생성 (Veo, Image-to-Video)
- ShotOrchestrator: 샷 상태 머신 + 연속 모드 프레임 상속
"""

from .prompt_agent import PromptAgent
from .image_agent import ImageAgent
from .video_agent import VideoAgent
from .shot_orchestrator import ShotOrchestrator

__all__ = [
    "PromptAgent",
    "ImageAgent",
    "VideoAgent",
    "ShotOrchestrator",
]
