"""
DRAMACUT 통합 파이프라인

ShotOrchestrator 위에서 전체 흐름을 한 번에 실행하는 배치 드라이버.

실행 플로우:
1. (optional) PromptAgent - 대본 분석
2. 샷 구성 - 스토리보드 모드: 전체 대본 / 연속 모드: 구간 분할 -> 확인
3. 첫 프레임 생성 - 스토리보드: 모든 샷 / 연속: 첫 샷만
4. 영상 생성 - 연속 모드는 순서대로 (마지막 프레임이 다음 샷으로 상속)
"""

import asyncio
import time
from typing import Dict, List, Optional

from dotenv import load_dotenv

# .env 파일 로드
load_dotenv()

from agents import ShotOrchestrator
from schemas import GenerationContext, PipelineMode, PipelineRun, ShotStatus
from utils.logger import get_logger

logger = get_logger("pipeline")


class DramaPipeline:
    """
    DRAMACUT 통합 파이프라인

    Shot-level failures do not stop the batch; they stay on the shot and
    show up in summarize().
    """

    def __init__(self, orchestrator: Optional[ShotOrchestrator] = None):
        self.orchestrator = orchestrator or ShotOrchestrator()

    async def run(
        self,
        script: str,
        mode: PipelineMode = PipelineMode.STORYBOARD,
        context: Optional[GenerationContext] = None,
        segments: Optional[List[str]] = None,
        analyze: bool = False,
    ) -> PipelineRun:
        """
        Build shots from `script` and render every one of them.

        Args:
            script: 전체 대본
            mode: storyboard / continuous
            context: 스타일·시대·비율 등 (None이면 현재 설정 유지)
            segments: 연속 모드에서 사용자가 이미 검토한 구간 (None이면 자동 분할)
            analyze: True면 프롬프트 생성 전에 대본 분석 실행

        Returns:
            최종 PipelineRun
        """
        start_time = time.time()
        orch = self.orchestrator

        if orch.run.mode != mode:
            orch.switch_mode(mode)
        if context is not None:
            orch.update_context(**context.model_dump())

        if analyze:
            print("\n[STEP 1] Analyzing script...")
            analysis = await orch.analyze_script(script)
            print(f"  Characters: {', '.join(analysis.character_names()) or '-'}")

        print(f"\n[STEP 2] Building shots ({mode.value} mode)...")
        if mode == PipelineMode.CONTINUOUS:
            if segments is None:
                segments = await orch.split_script(script)
            await orch.confirm_segments(segments)
        else:
            await orch.build_storyboard(script)
        shot_ids = [shot.id for shot in orch.run.shots]
        print(f"  {len(shot_ids)} shots ready")

        print("\n[STEP 3] Generating first frames...")
        if mode == PipelineMode.CONTINUOUS:
            if shot_ids:
                await orch.generate_first_frame(shot_ids[0])
        else:
            await asyncio.gather(*(orch.generate_first_frame(sid) for sid in shot_ids))

        print("\n[STEP 4] Generating videos...")
        if mode == PipelineMode.CONTINUOUS:
            # in order, so each finished clip can seed the next shot
            for sid in shot_ids:
                await orch.generate_video(sid)
        else:
            await asyncio.gather(*(orch.generate_video(sid) for sid in shot_ids))

        run = orch.run
        done = sum(1 for s in run.shots if s.video_status == ShotStatus.COMPLETED)
        logger.info(f"Pipeline finished: {done}/{len(run.shots)} videos in {time.time() - start_time:.1f}s")
        return run

    @staticmethod
    def summarize(run: PipelineRun) -> List[Dict[str, str]]:
        """샷별 상태 요약 (CLI 출력용)."""
        rows = []
        for idx, shot in enumerate(run.shots, start=1):
            rows.append({
                "shot": str(idx),
                "segment": shot.script_segment[:30],
                "image": shot.image_status.value,
                "frame_source": shot.start_frame.source.value if shot.has_start_frame else "-",
                "video": shot.video_status.value,
                "output": (shot.video.location if shot.video else None) or shot.video_error or "-",
            })
        return rows
