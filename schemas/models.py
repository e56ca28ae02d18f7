"""
DramaCut Data Models

공통 데이터 모델 정의 (Pydantic 기반)
- Shot: 샷 단위 (스크립트 조각 + 프롬프트 + 첫 프레임 + 영상)
- PipelineRun: 버전이 붙은 Shot 시퀀스 + 공유 생성 컨텍스트
- CallOutcome: 원격 호출 결과 (success / failure)

All state-carrying models are frozen; the orchestrator produces a new
PipelineRun for every mutation instead of editing shots in place.
"""

import base64
import uuid
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field


class ShotStatus(str, Enum):
    """이미지/비디오 파이프라인 상태 (서로 독립)"""
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


# Allowed (from, to) pairs. IDLE/ERROR -> COMPLETED is only taken when a first
# frame arrives without a generation run (inherited or uploaded).
_TRANSITIONS = {
    ShotStatus.IDLE: {ShotStatus.GENERATING, ShotStatus.COMPLETED},
    ShotStatus.GENERATING: {ShotStatus.COMPLETED, ShotStatus.ERROR},
    ShotStatus.COMPLETED: {ShotStatus.GENERATING},
    ShotStatus.ERROR: {ShotStatus.GENERATING, ShotStatus.COMPLETED},
}


def can_transition(current: ShotStatus, target: ShotStatus) -> bool:
    return target in _TRANSITIONS[current]


class PipelineMode(str, Enum):
    """스토리보드 모드 / 연속 샷 모드"""
    STORYBOARD = "storyboard"
    CONTINUOUS = "continuous"


class AssetSource(str, Enum):
    """첫 프레임 이미지의 출처"""
    UPLOADED = "uploaded"
    GENERATED = "generated"
    INHERITED = "inherited"


class ErrorClass(str, Enum):
    """원격 오류 분류 (재시도 여부 판단용)"""
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    TERMINAL = "terminal"

    @property
    def retryable(self) -> bool:
        return self is not ErrorClass.TERMINAL


class ImageAsset(BaseModel):
    """Still image held in memory (inline pixel data)."""
    model_config = {"frozen": True}

    data: bytes = Field(default=b"", description="인코딩된 이미지 바이트")
    mime_type: str = Field(default="image/jpeg", description="이미지 MIME 타입")
    source: AssetSource = Field(default=AssetSource.GENERATED, description="이미지 출처")

    @property
    def is_empty(self) -> bool:
        return not self.data

    @classmethod
    def from_data_url(cls, data_url: str, source: AssetSource = AssetSource.UPLOADED) -> "ImageAsset":
        """
        `data:image/png;base64,...` 형식 파싱.

        Raises:
            ValueError: payload is not valid base64
        """
        header, _, payload = data_url.partition(",")
        if not payload:
            # bare base64 without a header
            header, payload = "", data_url
        mime_type = "image/jpeg"
        if header.startswith("data:"):
            mime_type = header[5:].split(";", 1)[0] or mime_type
        return cls(data=base64.b64decode(payload, validate=True), mime_type=mime_type, source=source)


class VideoAsset(BaseModel):
    """Finished, playable video clip."""
    model_config = {"frozen": True}

    path: Optional[str] = Field(default=None, description="다운로드된 로컬 파일 경로")
    uri: Optional[str] = Field(default=None, description="원격 URI")
    mime_type: str = Field(default="video/mp4")

    @property
    def location(self) -> str:
        """Whatever ffmpeg should open: the local copy when there is one."""
        return self.path or self.uri or ""


class GenerationContext(BaseModel):
    """모든 Shot 이 공유하는 생성 컨텍스트"""
    model_config = {"frozen": True}

    style: str = Field(default="电影现实主义 (默认)", description="시각 스타일")
    era: str = Field(default="现代都市 (Modern Day)", description="시대/장르")
    ethnicity: str = Field(default="中国人 (Chinese)", description="캐릭터 인종")
    aspect_ratio: Literal["16:9", "9:16"] = Field(default="16:9")
    shot_duration_sec: int = Field(default=8, gt=0, description="샷 길이 (초)")
    reference_image: Optional[ImageAsset] = Field(default=None, description="전역 스타일 참조 이미지")


class Shot(BaseModel):
    """
    스토리보드 샷 한 컷

    image_status / video_status 는 독립적으로 전이한다.
    """
    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    script_segment: str = Field(..., description="대본 구간")
    video_prompt: str = Field(default="", description="영상 프롬프트")
    image_prompt: Optional[str] = Field(default=None, description="첫 프레임 프롬프트")

    start_frame: Optional[ImageAsset] = Field(default=None, description="첫 프레임 이미지")
    video: Optional[VideoAsset] = Field(default=None, description="생성된 영상")

    image_status: ShotStatus = ShotStatus.IDLE
    video_status: ShotStatus = ShotStatus.IDLE
    image_error: Optional[str] = None
    video_error: Optional[str] = None

    aspect_ratio: Optional[str] = Field(default=None, description="생성 요청 시점의 화면 비율")

    @property
    def has_start_frame(self) -> bool:
        return self.start_frame is not None and not self.start_frame.is_empty


class CharacterArc(BaseModel):
    name: str
    arc: str


class SuggestedBreak(BaseModel):
    segment: str
    reasoning: str


class ScriptAnalysis(BaseModel):
    """대본 심층 분석 결과"""
    pacing_suggestion: str
    tone_analysis: str
    character_arcs: List[CharacterArc] = Field(default_factory=list)
    suggested_breaks: List[SuggestedBreak] = Field(default_factory=list)

    def character_names(self) -> List[str]:
        return [c.name for c in self.character_arcs if c.name]


class GeneratedShotPrompt(BaseModel):
    """프롬프트 생성기가 돌려주는 (segment, video prompt, image prompt) 묶음"""
    script_segment: str
    visual_prompt: str
    image_prompt: str


class PipelineRun(BaseModel):
    """
    Versioned shot sequence plus shared context.

    Never mutated; `evolve` / `replace_shot` hand back the next version.
    """
    model_config = {"frozen": True}

    version: int = 0
    mode: PipelineMode = PipelineMode.STORYBOARD
    context: GenerationContext = Field(default_factory=GenerationContext)
    analysis: Optional[ScriptAnalysis] = None
    shots: Tuple[Shot, ...] = ()

    def index_of(self, shot_id: str) -> int:
        for i, shot in enumerate(self.shots):
            if shot.id == shot_id:
                return i
        return -1

    def get_shot(self, shot_id: str) -> Optional[Shot]:
        idx = self.index_of(shot_id)
        return self.shots[idx] if idx != -1 else None

    def next_shot(self, shot_id: str) -> Optional[Shot]:
        idx = self.index_of(shot_id)
        if idx == -1 or idx >= len(self.shots) - 1:
            return None
        return self.shots[idx + 1]

    def evolve(self, **changes: Any) -> "PipelineRun":
        changes["version"] = self.version + 1
        return self.model_copy(update=changes)

    def replace_shot(self, shot: Shot) -> "PipelineRun":
        shots = tuple(shot if s.id == shot.id else s for s in self.shots)
        return self.evolve(shots=shots)


class CallSuccess(BaseModel):
    kind: Literal["success"] = "success"
    value: Any = None


class CallFailure(BaseModel):
    kind: Literal["failure"] = "failure"
    reason: str
    error_class: ErrorClass = ErrorClass.TERMINAL


CallOutcome = Annotated[Union[CallSuccess, CallFailure], Field(discriminator="kind")]
