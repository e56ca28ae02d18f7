"""
Shot Orchestrator: drives every shot's image / video pipeline.

핵심 기능:
- 대본 -> Shot 시퀀스 구성 (스토리보드 모드 / 연속 모드)
- 샷별 이미지(첫 프레임)·비디오 상태 머신 (서로 독립)
- 연속 모드: 완료된 영상의 마지막 프레임을 다음 샷 첫 프레임으로 상속

The orchestrator is the only writer of shot state. Each mutation builds the
next PipelineRun from the current one synchronously, so no write ever
straddles an await; anything decided before an await is re-checked after it.
"""

import asyncio
from typing import List, Optional, Union

from agents.image_agent import ImageAgent
from agents.prompt_agent import PromptAgent, max_segments_for
from agents.video_agent import VideoAgent
from config import get_continuity_config, get_extraction_config, get_retry_config
from schemas import (
    AssetSource,
    GeneratedShotPrompt,
    GenerationContext,
    ImageAsset,
    PipelineMode,
    PipelineRun,
    ScriptAnalysis,
    Shot,
    ShotStatus,
    VideoAsset,
    can_transition,
)
from utils.constants import NEW_SHOT_PROMPT, NEW_SHOT_SEGMENT, PROMPT_FAILURE_PLACEHOLDER
from utils.errors import FrameExtractionError, ScriptProcessingError
from utils.ffmpeg_utils import FrameExtractor
from utils.logger import get_logger
from utils.retry import RetryExecutor, capture_outcome

logger = get_logger("orchestrator")


class ShotOrchestrator:
    """
    샷 파이프라인 오케스트레이터

    Public operations return the PipelineRun version they produced. Per-shot
    failures are recorded on the shot; only script-level steps raise
    (ScriptProcessingError) because there is no shot to attach them to.
    """

    def __init__(
        self,
        prompt_agent: Optional[PromptAgent] = None,
        image_agent: Optional[ImageAgent] = None,
        video_agent: Optional[VideoAgent] = None,
        frame_extractor: Optional[FrameExtractor] = None,
        retry_executor: Optional[RetryExecutor] = None,
        mode: PipelineMode = PipelineMode.STORYBOARD,
        context: Optional[GenerationContext] = None,
        settle_delay_sec: Optional[float] = None,
        sleep=None,
    ):
        self.prompt_agent = prompt_agent or PromptAgent()
        self.image_agent = image_agent or ImageAgent()
        self.video_agent = video_agent or VideoAgent()
        self.frame_extractor = frame_extractor or FrameExtractor.from_config(get_extraction_config())
        self.retry = retry_executor or RetryExecutor.from_config(get_retry_config())
        if settle_delay_sec is None:
            settle_delay_sec = float(get_continuity_config()["settle_delay_sec"])
        self.settle_delay_sec = settle_delay_sec
        self._sleep = sleep or asyncio.sleep
        self._run = PipelineRun(mode=mode, context=context or GenerationContext())

    @property
    def run(self) -> PipelineRun:
        return self._run

    # =========================================================================
    # State helpers (synchronous: never hold state across an await)
    # =========================================================================

    def _commit(self, run: PipelineRun) -> PipelineRun:
        self._run = run
        return run

    def _set_shot(self, shot_id: str, **changes) -> Optional[Shot]:
        shot = self._run.get_shot(shot_id)
        if shot is None:
            logger.warning(f"Shot {shot_id} no longer exists, dropping update {sorted(changes)}")
            return None
        updated = shot.model_copy(update=changes)
        self._commit(self._run.replace_shot(updated))
        return updated

    def _transition(self, shot_id: str, field: str, target: ShotStatus, **changes) -> bool:
        shot = self._run.get_shot(shot_id)
        if shot is None:
            logger.warning(f"Shot {shot_id} no longer exists, cannot set {field}={target.value}")
            return False
        current = getattr(shot, field)
        if not can_transition(current, target):
            logger.warning(f"Shot {shot_id}: {field} {current.value} -> {target.value} rejected")
            return False
        self._set_shot(shot_id, **{field: target}, **changes)
        logger.info(f"Shot {shot_id[:8]}: {field} {current.value} -> {target.value}")
        return True

    @staticmethod
    def _shot_from_prompt(item: GeneratedShotPrompt) -> Shot:
        return Shot(
            script_segment=item.script_segment,
            video_prompt=item.visual_prompt,
            image_prompt=item.image_prompt,
        )

    # =========================================================================
    # Session settings
    # =========================================================================

    def switch_mode(self, mode: PipelineMode) -> PipelineRun:
        """Changing mode starts an empty sequence (shots and analysis cleared)."""
        return self._commit(PipelineRun(
            version=self._run.version + 1,
            mode=mode,
            context=self._run.context,
        ))

    def update_context(self, **changes) -> PipelineRun:
        """
        Change style / era / ethnicity / aspect_ratio / shot_duration_sec /
        reference_image for future requests. Shots keep the aspect ratio
        recorded when their generation was requested.
        """
        context = GenerationContext.model_validate({**self._run.context.model_dump(), **changes})
        return self._commit(self._run.evolve(context=context))

    # =========================================================================
    # Script -> shots
    # =========================================================================

    async def analyze_script(self, script: str) -> ScriptAnalysis:
        """대본 심층 분석; stored on the run and fed to later prompt batches."""
        if not script.strip():
            raise ValueError("script is empty")
        outcome = await self.retry.attempt(
            lambda: self.prompt_agent.analyze_script(script), label="script analysis"
        )
        if outcome.kind == "failure":
            raise ScriptProcessingError(f"分析失败: {outcome.reason}")
        self._commit(self._run.evolve(analysis=outcome.value))
        return outcome.value

    async def build_storyboard(self, script: str) -> PipelineRun:
        """스토리보드 모드: whole script -> shots, all idle."""
        if not script.strip():
            raise ValueError("script is empty")
        ctx = self._run.context
        analysis = self._run.analysis
        outcome = await self.retry.attempt(
            lambda: self.prompt_agent.generate_storyboard(script, ctx, ctx.reference_image, analysis),
            label="storyboard generation",
        )
        if outcome.kind == "failure":
            raise ScriptProcessingError(f"生成分镜失败: {outcome.reason}")

        shots = tuple(self._shot_from_prompt(item) for item in outcome.value)
        logger.info(f"Storyboard built: {len(shots)} shots")
        return self._commit(self._run.evolve(shots=shots))

    async def split_script(self, script: str) -> List[str]:
        """
        연속 모드 1단계: duration-bounded split for user review.

        Returns segment drafts; nothing is stored until confirm_segments().
        """
        if not script.strip():
            raise ValueError("script is empty")
        duration = self._run.context.shot_duration_sec
        outcome = await self.retry.attempt(
            lambda: self.prompt_agent.split_script(script, duration), label="script split"
        )
        if outcome.kind == "failure":
            raise ScriptProcessingError(f"拆分失败: {outcome.reason}")
        return list(outcome.value)[:max_segments_for(duration)]

    async def confirm_segments(self, segments: List[str]) -> PipelineRun:
        """연속 모드 2단계: reviewed segments -> one shot per segment, in order."""
        if not segments or any(not s.strip() for s in segments):
            raise ValueError("内容不能为空")
        ctx = self._run.context
        analysis = self._run.analysis
        outcome = await self.retry.attempt(
            lambda: self.prompt_agent.generate_segment_prompts(list(segments), ctx, ctx.reference_image, analysis),
            label="segment prompt batch",
        )
        if outcome.kind == "failure":
            raise ScriptProcessingError(f"生成失败: {outcome.reason}")

        items = self._align_prompts(segments, outcome.value)
        shots = tuple(self._shot_from_prompt(item) for item in items)
        logger.info(f"Continuous sequence built: {len(shots)} shots")
        return self._commit(self._run.evolve(shots=shots))

    @staticmethod
    def _align_prompts(segments: List[str], items: List[GeneratedShotPrompt]) -> List[GeneratedShotPrompt]:
        """Exactly one entry per segment; short answers padded with the failure placeholder."""
        aligned = []
        for i, segment in enumerate(segments):
            if i < len(items):
                aligned.append(items[i].model_copy(update={"script_segment": segment}))
            else:
                aligned.append(GeneratedShotPrompt(
                    script_segment=segment,
                    visual_prompt=PROMPT_FAILURE_PLACEHOLDER,
                    image_prompt=PROMPT_FAILURE_PLACEHOLDER,
                ))
        return aligned

    # =========================================================================
    # Local edits
    # =========================================================================

    def add_shot(self) -> PipelineRun:
        shot = Shot(script_segment=NEW_SHOT_SEGMENT, video_prompt=NEW_SHOT_PROMPT)
        return self._commit(self._run.evolve(shots=self._run.shots + (shot,)))

    def update_prompts(
        self,
        shot_id: str,
        video_prompt: Optional[str] = None,
        image_prompt: Optional[str] = None,
    ) -> PipelineRun:
        changes = {}
        if video_prompt is not None:
            changes["video_prompt"] = video_prompt
        if image_prompt is not None:
            changes["image_prompt"] = image_prompt
        if changes:
            self._set_shot(shot_id, **changes)
        return self._run

    def upload_start_frame(self, shot_id: str, image: Union[ImageAsset, str]) -> PipelineRun:
        """
        User-supplied first frame. An explicit action, so it may replace an
        existing frame; continuity will never overwrite it afterwards.
        A malformed data URL is logged and ignored.
        """
        if isinstance(image, str):
            try:
                asset = ImageAsset.from_data_url(image, source=AssetSource.UPLOADED)
            except ValueError as e:
                logger.warning(f"Shot {shot_id}: upload is not a valid data URL, ignored: {e}")
                return self._run
        else:
            asset = image.model_copy(update={"source": AssetSource.UPLOADED})

        shot = self._run.get_shot(shot_id)
        if shot is None:
            logger.warning(f"Shot {shot_id} not found, upload ignored")
            return self._run
        if shot.image_status in (ShotStatus.IDLE, ShotStatus.ERROR):
            self._transition(shot_id, "image_status", ShotStatus.COMPLETED, start_frame=asset, image_error=None)
        else:
            self._set_shot(shot_id, start_frame=asset)
        return self._run

    async def refine_prompt(self, shot_id: str, instruction: str, mode: str = "video") -> str:
        """
        AI refine. Returns the new draft text only; apply it with update_prompts().
        Falls back to the current prompt when the refiner fails.
        """
        shot = self._run.get_shot(shot_id)
        if shot is None:
            raise KeyError(shot_id)
        current = shot.video_prompt if mode == "video" else (shot.image_prompt or "")
        ctx = self._run.context
        outcome = await self.retry.attempt(
            lambda: self.prompt_agent.refine_prompt(current, instruction, mode, ctx),
            label="prompt refine",
        )
        if outcome.kind == "failure":
            logger.warning(f"Prompt refine failed, keeping original: {outcome.reason}")
            return current
        return outcome.value

    # =========================================================================
    # Per-shot generation
    # =========================================================================

    async def generate_first_frame(self, shot_id: str, prompt_override: Optional[str] = None) -> PipelineRun:
        """
        imageState: idle -> generating -> completed | error.

        A missing image prompt is generated (and stored) first. On failure the
        previous start frame is left untouched.
        """
        shot = self._run.get_shot(shot_id)
        if shot is None:
            logger.warning(f"Shot {shot_id} not found")
            return self._run

        ctx = self._run.context
        changes = {"image_error": None, "aspect_ratio": ctx.aspect_ratio}
        if prompt_override and prompt_override != shot.image_prompt:
            changes["image_prompt"] = prompt_override
        if not self._transition(shot_id, "image_status", ShotStatus.GENERATING, **changes):
            return self._run

        prompt = prompt_override or shot.image_prompt
        if not prompt:
            segment = shot.script_segment
            outcome = await self.retry.attempt(
                lambda: self.prompt_agent.generate_first_frame_prompt(segment, ctx, ctx.reference_image),
                label="first-frame prompt",
            )
            if outcome.kind == "failure":
                self._transition(shot_id, "image_status", ShotStatus.ERROR, image_error=outcome.reason)
                return self._run
            prompt = outcome.value
            self._set_shot(shot_id, image_prompt=prompt)

        outcome = await self.retry.attempt(
            lambda: self.image_agent.generate_image(prompt, ctx.aspect_ratio),
            label="image generation",
        )
        if outcome.kind == "failure":
            self._transition(shot_id, "image_status", ShotStatus.ERROR, image_error=outcome.reason)
            return self._run

        self._transition(shot_id, "image_status", ShotStatus.COMPLETED, start_frame=outcome.value)
        return self._run

    async def generate_video(self, shot_id: str, prompt_override: Optional[str] = None) -> PipelineRun:
        """
        videoState: idle -> generating -> completed | error, then the
        continuity step (continuous mode only).
        """
        shot = self._run.get_shot(shot_id)
        if shot is None:
            logger.warning(f"Shot {shot_id} not found")
            return self._run

        ctx = self._run.context
        changes = {"video_error": None, "aspect_ratio": ctx.aspect_ratio}
        if prompt_override and prompt_override != shot.video_prompt:
            changes["video_prompt"] = prompt_override
        if not self._transition(shot_id, "video_status", ShotStatus.GENERATING, **changes):
            return self._run

        prompt = prompt_override or shot.video_prompt
        start_frame = shot.start_frame
        # VideoAgent retries submit / poll / download individually; a retry
        # around the whole job would start a second Veo operation
        outcome = await capture_outcome(
            lambda: self.video_agent.generate_video(prompt, start_frame, ctx.aspect_ratio, ctx)
        )
        if outcome.kind == "failure":
            self._transition(shot_id, "video_status", ShotStatus.ERROR, video_error=outcome.reason or "未知错误")
            return self._run

        video: VideoAsset = outcome.value
        if not self._transition(shot_id, "video_status", ShotStatus.COMPLETED, video=video):
            return self._run

        if self._run.mode == PipelineMode.CONTINUOUS:
            await self._propagate_continuity(shot_id, video)
        return self._run

    # =========================================================================
    # Continuity
    # =========================================================================

    async def _propagate_continuity(self, shot_id: str, video: VideoAsset) -> None:
        """
        Hand the last frame of `video` to the immediate successor.

        First writer wins: the successor's slot is checked before the settle
        delay and again right before the write. A successor whose first frame
        is still being generated gets the frame without a status change; a
        successful generation replaces it later, a failed one leaves it in
        place. Extraction problems are logged and swallowed.
        """
        successor = self._run.next_shot(shot_id)
        if successor is None:
            return
        if successor.has_start_frame:
            logger.info(f"Continuity: shot {successor.id[:8]} already has a start frame, skipping")
            return

        await self._sleep(self.settle_delay_sec)
        try:
            frame = await self.frame_extractor.extract_last_frame(video)
        except FrameExtractionError as e:
            logger.warning(f"Continuity: last-frame extraction failed for shot {shot_id[:8]}: {e}")
            return

        successor = self._run.next_shot(shot_id)
        if successor is None:
            logger.info(f"Continuity: shot {shot_id[:8]} has no successor anymore, dropping frame")
            return
        if successor.has_start_frame:
            logger.info(f"Continuity: shot {successor.id[:8]} got a start frame during extraction, keeping it")
            return

        if successor.image_status == ShotStatus.GENERATING:
            self._set_shot(successor.id, start_frame=frame)
            logger.info(f"Continuity: shot {successor.id[:8]} inherited last frame of {shot_id[:8]} (image still generating)")
        else:
            self._transition(successor.id, "image_status", ShotStatus.COMPLETED, start_frame=frame, image_error=None)
            logger.info(f"Continuity: shot {successor.id[:8]} inherited last frame of {shot_id[:8]}")
