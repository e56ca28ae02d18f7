"""
Unit tests for ShotOrchestrator.

Tests cover:
1. Image / video state machines (independent per shot)
2. Continuity: last frame -> successor's empty start frame (first writer wins)
3. Script operations (split bound, prompt batch alignment, storyboard)
4. Local edits (upload, add shot, prompt edits, refine, mode/context)

All collaborators are in-memory fakes; no network, no ffmpeg.
"""
import asyncio
import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from agents.shot_orchestrator import ShotOrchestrator
from schemas import (
    AssetSource,
    CharacterArc,
    GeneratedShotPrompt,
    GenerationContext,
    ImageAsset,
    PipelineMode,
    ScriptAnalysis,
    ShotStatus,
    VideoAsset,
    can_transition,
)
from utils.constants import NEW_SHOT_PROMPT, NEW_SHOT_SEGMENT, PROMPT_FAILURE_PLACEHOLDER
from utils.errors import (
    ExtractionFailed,
    ExtractionTimeout,
    ImageGenerationError,
    PromptGenerationError,
    RemoteCallError,
    ScriptProcessingError,
)
from utils.retry import RetryExecutor


# ==========================================================================
# Fakes
# ==========================================================================

async def _no_sleep(_delay):
    return None


class FakePromptAgent:
    def __init__(self, split=None, segment_prompts=None, storyboard=None, storyboard_error=None, refine_error=None):
        self.split = split
        self.segment_prompts = segment_prompts
        self.storyboard = storyboard
        self.storyboard_error = storyboard_error
        self.refine_error = refine_error
        self.split_durations = []
        self.first_frame_calls = 0
        self.batch_analysis = []

    async def analyze_script(self, script):
        return ScriptAnalysis(
            pacing_suggestion="快节奏",
            tone_analysis="紧张",
            character_arcs=[CharacterArc(name="林晚", arc="从隐忍到反击")],
        )

    async def split_script(self, script, shot_duration_sec):
        self.split_durations.append(shot_duration_sec)
        return list(self.split) if self.split is not None else [script]

    async def generate_storyboard(self, script, context, reference_image=None, analysis=None):
        if self.storyboard_error is not None:
            raise self.storyboard_error
        return self.storyboard or [
            GeneratedShotPrompt(script_segment="开场", visual_prompt="v-开场", image_prompt="i-开场"),
            GeneratedShotPrompt(script_segment="对峙", visual_prompt="v-对峙", image_prompt="i-对峙"),
        ]

    async def generate_segment_prompts(self, segments, context, reference_image=None, analysis=None):
        self.batch_analysis.append(analysis)
        if self.segment_prompts is not None:
            return list(self.segment_prompts)
        return [
            GeneratedShotPrompt(script_segment=s, visual_prompt=f"v-{s}", image_prompt=f"i-{s}")
            for s in segments
        ]

    async def generate_first_frame_prompt(self, segment, context, reference_image=None):
        self.first_frame_calls += 1
        return f"首帧-{segment}"

    async def refine_prompt(self, original_prompt, instruction, mode="video", context=None):
        if self.refine_error is not None:
            raise self.refine_error
        return f"{original_prompt}|{instruction}"


class FakeImageAgent:
    def __init__(self, errors=None, gate=None):
        self.errors = list(errors or [])
        self.gate = gate
        self.calls = []

    async def generate_image(self, prompt, aspect_ratio="16:9"):
        self.calls.append((prompt, aspect_ratio))
        if self.gate is not None:
            await self.gate.wait()
        if self.errors:
            raise self.errors.pop(0)
        return ImageAsset(data=f"gen:{prompt}".encode(), source=AssetSource.GENERATED)


class FakeVideoAgent:
    def __init__(self, errors=None):
        self.errors = list(errors or [])
        self.calls = []

    async def generate_video(self, prompt, start_frame=None, aspect_ratio="16:9", context=None):
        self.calls.append({"prompt": prompt, "start_frame": start_frame, "aspect_ratio": aspect_ratio})
        if self.errors:
            raise self.errors.pop(0)
        return VideoAsset(path=f"/tmp/clip{len(self.calls)}.mp4")


class FakeExtractor:
    def __init__(self, error=None, on_extract=None):
        self.error = error
        self.on_extract = on_extract
        self.calls = []

    async def extract_last_frame(self, video):
        self.calls.append(video)
        if self.on_extract is not None:
            self.on_extract()
        if self.error is not None:
            raise self.error
        return ImageAsset(data=f"last:{video.path}".encode(), source=AssetSource.INHERITED)


def make_orchestrator(mode=PipelineMode.CONTINUOUS, prompt=None, image=None, video=None, extractor=None, context=None):
    return ShotOrchestrator(
        prompt_agent=prompt or FakePromptAgent(),
        image_agent=image or FakeImageAgent(),
        video_agent=video or FakeVideoAgent(),
        frame_extractor=extractor or FakeExtractor(),
        retry_executor=RetryExecutor(max_attempts=3, sleep=_no_sleep),
        mode=mode,
        context=context,
        settle_delay_sec=0,
        sleep=_no_sleep,
    )


def build_shots(orch, segments=("第一幕", "第二幕", "第三幕")):
    asyncio.run(orch.confirm_segments(list(segments)))
    return [shot.id for shot in orch.run.shots]


UPLOADED = ImageAsset(data=b"user-upload", mime_type="image/png", source=AssetSource.UPLOADED)


# ==========================================================================
# Test 1: State machines
# ==========================================================================

class TestTransitionTable:

    def test_allowed(self):
        assert can_transition(ShotStatus.IDLE, ShotStatus.GENERATING)
        assert can_transition(ShotStatus.GENERATING, ShotStatus.COMPLETED)
        assert can_transition(ShotStatus.GENERATING, ShotStatus.ERROR)
        assert can_transition(ShotStatus.COMPLETED, ShotStatus.GENERATING)
        assert can_transition(ShotStatus.ERROR, ShotStatus.GENERATING)
        assert can_transition(ShotStatus.IDLE, ShotStatus.COMPLETED)

    def test_rejected(self):
        assert not can_transition(ShotStatus.GENERATING, ShotStatus.GENERATING)
        assert not can_transition(ShotStatus.IDLE, ShotStatus.ERROR)
        assert not can_transition(ShotStatus.COMPLETED, ShotStatus.ERROR)
        assert not can_transition(ShotStatus.GENERATING, ShotStatus.IDLE)


class TestImageStateMachine:

    def test_first_frame_completes(self):
        image = FakeImageAgent()
        orch = make_orchestrator(image=image)
        sid = build_shots(orch)[0]

        asyncio.run(orch.generate_first_frame(sid))

        shot = orch.run.get_shot(sid)
        assert shot.image_status == ShotStatus.COMPLETED
        assert shot.start_frame.source == AssetSource.GENERATED
        assert shot.aspect_ratio == "16:9"
        assert image.calls == [("i-第一幕", "16:9")]

    def test_missing_image_prompt_generated_and_stored(self):
        prompt = FakePromptAgent()
        image = FakeImageAgent()
        orch = make_orchestrator(prompt=prompt, image=image)
        orch.add_shot()
        sid = orch.run.shots[-1].id

        asyncio.run(orch.generate_first_frame(sid))

        shot = orch.run.get_shot(sid)
        assert prompt.first_frame_calls == 1
        assert shot.image_prompt == f"首帧-{NEW_SHOT_SEGMENT}"
        assert image.calls[0][0] == shot.image_prompt
        assert shot.image_status == ShotStatus.COMPLETED

    def test_failure_keeps_previous_frame(self):
        image = FakeImageAgent(errors=[ImageGenerationError("API 未返回图像数据")])
        orch = make_orchestrator(image=image)
        sid = build_shots(orch)[0]
        orch.upload_start_frame(sid, UPLOADED)

        asyncio.run(orch.generate_first_frame(sid))

        shot = orch.run.get_shot(sid)
        assert shot.image_status == ShotStatus.ERROR
        assert shot.image_error == "API 未返回图像数据"
        assert shot.start_frame == UPLOADED

    def test_transient_error_retried(self):
        image = FakeImageAgent(errors=[RemoteCallError("busy", code=503), RemoteCallError("busy", code=503)])
        orch = make_orchestrator(image=image)
        sid = build_shots(orch)[0]

        asyncio.run(orch.generate_first_frame(sid))

        assert len(image.calls) == 3
        assert orch.run.get_shot(sid).image_status == ShotStatus.COMPLETED

    def test_error_then_regenerate(self):
        image = FakeImageAgent(errors=[ImageGenerationError("nope")])
        orch = make_orchestrator(image=image)
        sid = build_shots(orch)[0]

        asyncio.run(orch.generate_first_frame(sid))
        assert orch.run.get_shot(sid).image_status == ShotStatus.ERROR
        asyncio.run(orch.generate_first_frame(sid))

        shot = orch.run.get_shot(sid)
        assert shot.image_status == ShotStatus.COMPLETED
        assert shot.image_error is None

    def test_prompt_override_persisted(self):
        image = FakeImageAgent()
        orch = make_orchestrator(image=image)
        sid = build_shots(orch)[0]

        asyncio.run(orch.generate_first_frame(sid, prompt_override="雨夜街头"))

        assert orch.run.get_shot(sid).image_prompt == "雨夜街头"
        assert image.calls[0][0] == "雨夜街头"

    def test_duplicate_request_while_generating_is_ignored(self):
        async def scenario():
            gate = asyncio.Event()
            image = FakeImageAgent(gate=gate)
            orch = make_orchestrator(image=image)
            await orch.confirm_segments(["第一幕"])
            sid = orch.run.shots[0].id

            task = asyncio.create_task(orch.generate_first_frame(sid))
            await asyncio.sleep(0)
            assert orch.run.get_shot(sid).image_status == ShotStatus.GENERATING

            before = orch.run.version
            await orch.generate_first_frame(sid)
            assert orch.run.version == before

            gate.set()
            await task
            return orch, image, sid

        orch, image, sid = asyncio.run(scenario())
        assert len(image.calls) == 1
        assert orch.run.get_shot(sid).image_status == ShotStatus.COMPLETED

    def test_unknown_shot_is_noop(self):
        orch = make_orchestrator()
        build_shots(orch)
        before = orch.run
        assert asyncio.run(orch.generate_first_frame("missing")) is before


class TestVideoStateMachine:

    def test_video_completes_with_start_frame(self):
        video = FakeVideoAgent()
        orch = make_orchestrator(mode=PipelineMode.STORYBOARD, video=video)
        sid = build_shots(orch)[0]
        orch.upload_start_frame(sid, UPLOADED)

        asyncio.run(orch.generate_video(sid))

        shot = orch.run.get_shot(sid)
        assert shot.video_status == ShotStatus.COMPLETED
        assert shot.video.path == "/tmp/clip1.mp4"
        assert video.calls[0]["start_frame"] == UPLOADED
        assert video.calls[0]["prompt"] == "v-第一幕"

    def test_video_failure_records_reason(self):
        video = FakeVideoAgent(errors=[RemoteCallError("content filtered", code=400)])
        orch = make_orchestrator(video=video)
        sid = build_shots(orch)[0]

        asyncio.run(orch.generate_video(sid))

        shot = orch.run.get_shot(sid)
        assert shot.video_status == ShotStatus.ERROR
        assert shot.video_error == "content filtered"
        assert shot.image_status == ShotStatus.IDLE
        assert len(video.calls) == 1

    def test_transient_video_error_not_resubmitted(self):
        # the video agent retries its own remote calls; the whole job runs once
        video = FakeVideoAgent(errors=[RemoteCallError("unavailable", code=503)])
        orch = make_orchestrator(video=video)
        sid = build_shots(orch)[0]

        asyncio.run(orch.generate_video(sid))

        assert len(video.calls) == 1
        shot = orch.run.get_shot(sid)
        assert shot.video_status == ShotStatus.ERROR
        assert shot.video_error == "unavailable"

    def test_override_persisted_even_when_call_fails(self):
        video = FakeVideoAgent(errors=[RemoteCallError("bad", code=400)])
        orch = make_orchestrator(video=video)
        sid = build_shots(orch)[0]

        asyncio.run(orch.generate_video(sid, prompt_override="慢镜头推近"))

        assert orch.run.get_shot(sid).video_prompt == "慢镜头推近"
        assert video.calls[0]["prompt"] == "慢镜头推近"

    def test_aspect_ratio_recorded_at_request_time(self):
        video = FakeVideoAgent()
        orch = make_orchestrator(mode=PipelineMode.STORYBOARD, video=video)
        sid = build_shots(orch)[0]
        orch.update_context(aspect_ratio="9:16")

        asyncio.run(orch.generate_video(sid))
        orch.update_context(aspect_ratio="16:9")

        assert orch.run.get_shot(sid).aspect_ratio == "9:16"
        assert video.calls[0]["aspect_ratio"] == "9:16"

    def test_versions_strictly_increase(self):
        orch = make_orchestrator()
        sid = build_shots(orch)[0]
        seen = [orch.run.version]
        asyncio.run(orch.generate_first_frame(sid))
        seen.append(orch.run.version)
        asyncio.run(orch.generate_video(sid))
        seen.append(orch.run.version)
        assert seen == sorted(set(seen))


# ==========================================================================
# Test 2: Continuity
# ==========================================================================

class TestContinuity:

    def test_empty_successor_inherits_last_frame(self):
        extractor = FakeExtractor()
        orch = make_orchestrator(extractor=extractor)
        first, second, third = build_shots(orch)

        asyncio.run(orch.generate_video(first))

        successor = orch.run.get_shot(second)
        assert successor.image_status == ShotStatus.COMPLETED
        assert successor.start_frame.source == AssetSource.INHERITED
        assert successor.start_frame.data == b"last:/tmp/clip1.mp4"
        assert not orch.run.get_shot(third).has_start_frame
        assert len(extractor.calls) == 1

    def test_chain_feeds_each_next_shot(self):
        video = FakeVideoAgent()
        orch = make_orchestrator(video=video)
        first, second, third = build_shots(orch)

        for sid in (first, second, third):
            asyncio.run(orch.generate_video(sid))

        assert video.calls[1]["start_frame"].data == b"last:/tmp/clip1.mp4"
        assert video.calls[2]["start_frame"].data == b"last:/tmp/clip2.mp4"

    def test_existing_frame_not_overwritten(self, caplog):
        extractor = FakeExtractor()
        orch = make_orchestrator(extractor=extractor)
        first, second, _ = build_shots(orch)
        orch.upload_start_frame(second, UPLOADED)

        asyncio.run(orch.generate_video(first))

        assert orch.run.get_shot(second).start_frame == UPLOADED
        assert extractor.calls == []
        assert "already has a start frame" in caplog.text

    def test_frame_set_during_extraction_wins(self, caplog):
        holder = {}

        def user_uploads():
            holder["orch"].upload_start_frame(holder["second"], UPLOADED)

        extractor = FakeExtractor(on_extract=user_uploads)
        orch = make_orchestrator(extractor=extractor)
        first, second, _ = build_shots(orch)
        holder.update(orch=orch, second=second)

        asyncio.run(orch.generate_video(first))

        assert len(extractor.calls) == 1
        assert orch.run.get_shot(second).start_frame == UPLOADED
        assert "got a start frame during extraction" in caplog.text

    @staticmethod
    def _video_while_successor_generates(image_errors=None):
        async def scenario():
            gate = asyncio.Event()
            extractor = FakeExtractor()
            image = FakeImageAgent(errors=image_errors, gate=gate)
            orch = make_orchestrator(image=image, extractor=extractor)
            await orch.confirm_segments(["第一幕", "第二幕"])
            first, second = (s.id for s in orch.run.shots)

            pending = asyncio.create_task(orch.generate_first_frame(second))
            await asyncio.sleep(0)
            await orch.generate_video(first)
            inherited = orch.run.get_shot(second)
            gate.set()
            await pending
            return orch, extractor, second, inherited

        return asyncio.run(scenario())

    def test_generating_successor_gets_frame_without_status_change(self):
        orch, extractor, second, inherited = self._video_while_successor_generates()

        assert len(extractor.calls) == 1
        assert inherited.image_status == ShotStatus.GENERATING
        assert inherited.start_frame.source == AssetSource.INHERITED
        # the explicit generation finishes later and replaces the inherited frame
        shot = orch.run.get_shot(second)
        assert shot.image_status == ShotStatus.COMPLETED
        assert shot.start_frame.source == AssetSource.GENERATED

    def test_failed_generation_keeps_inherited_frame(self):
        orch, extractor, second, _ = self._video_while_successor_generates(
            image_errors=[ImageGenerationError("API 未返回图像数据")]
        )

        shot = orch.run.get_shot(second)
        assert shot.image_status == ShotStatus.ERROR
        assert shot.start_frame is not None
        assert shot.start_frame.source == AssetSource.INHERITED
        assert shot.start_frame.data == b"last:/tmp/clip1.mp4"

    @pytest.mark.parametrize("error", [ExtractionFailed("decoder error"), ExtractionTimeout("too slow")])
    def test_extraction_failure_is_swallowed(self, error):
        orch = make_orchestrator(extractor=FakeExtractor(error=error))
        first, second, _ = build_shots(orch)

        asyncio.run(orch.generate_video(first))

        assert orch.run.get_shot(first).video_status == ShotStatus.COMPLETED
        successor = orch.run.get_shot(second)
        assert successor.image_status == ShotStatus.IDLE
        assert not successor.has_start_frame

    def test_last_shot_has_no_successor(self):
        extractor = FakeExtractor()
        orch = make_orchestrator(extractor=extractor)
        last = build_shots(orch)[-1]

        asyncio.run(orch.generate_video(last))

        assert extractor.calls == []

    def test_failed_video_does_not_propagate(self):
        extractor = FakeExtractor()
        orch = make_orchestrator(video=FakeVideoAgent(errors=[RemoteCallError("bad", code=400)]), extractor=extractor)
        first = build_shots(orch)[0]

        asyncio.run(orch.generate_video(first))

        assert extractor.calls == []

    def test_storyboard_mode_has_no_continuity(self):
        extractor = FakeExtractor()
        orch = make_orchestrator(mode=PipelineMode.STORYBOARD, extractor=extractor)
        first, second, _ = build_shots(orch)

        asyncio.run(orch.generate_video(first))

        assert extractor.calls == []
        assert not orch.run.get_shot(second).has_start_frame


# ==========================================================================
# Test 3: Script operations
# ==========================================================================

class TestScriptOperations:

    def test_split_bounded_by_shot_duration(self):
        prompt = FakePromptAgent(split=["一", "二", "三", "四", "五"])
        orch = make_orchestrator(prompt=prompt, context=GenerationContext(shot_duration_sec=8))

        segments = asyncio.run(orch.split_script("很长的剧本"))

        assert segments == ["一", "二", "三"]
        assert prompt.split_durations == [8]

    def test_split_does_not_touch_shots(self):
        orch = make_orchestrator()
        before = orch.run
        asyncio.run(orch.split_script("剧本"))
        assert orch.run is before

    def test_short_batch_filled_with_placeholder(self):
        prompt = FakePromptAgent(segment_prompts=[
            GeneratedShotPrompt(script_segment="x", visual_prompt="v1", image_prompt="i1"),
        ])
        orch = make_orchestrator(prompt=prompt)

        asyncio.run(orch.confirm_segments(["甲", "乙", "丙"]))

        shots = orch.run.shots
        assert [s.script_segment for s in shots] == ["甲", "乙", "丙"]
        assert shots[0].video_prompt == "v1"
        assert shots[1].video_prompt == PROMPT_FAILURE_PLACEHOLDER
        assert shots[2].image_prompt == PROMPT_FAILURE_PLACEHOLDER
        assert all(s.image_status == ShotStatus.IDLE for s in shots)

    def test_blank_segment_rejected(self):
        orch = make_orchestrator()
        with pytest.raises(ValueError):
            asyncio.run(orch.confirm_segments(["甲", "  "]))
        with pytest.raises(ValueError):
            asyncio.run(orch.confirm_segments([]))

    def test_analysis_feeds_prompt_batch(self):
        prompt = FakePromptAgent()
        orch = make_orchestrator(prompt=prompt)

        analysis = asyncio.run(orch.analyze_script("剧本"))
        asyncio.run(orch.confirm_segments(["甲"]))

        assert analysis.character_names() == ["林晚"]
        assert orch.run.analysis == analysis
        assert prompt.batch_analysis == [analysis]

    def test_build_storyboard(self):
        orch = make_orchestrator(mode=PipelineMode.STORYBOARD)
        asyncio.run(orch.build_storyboard("剧本"))

        shots = orch.run.shots
        assert [s.script_segment for s in shots] == ["开场", "对峙"]
        assert shots[1].image_prompt == "i-对峙"

    def test_storyboard_failure_raises(self):
        prompt = FakePromptAgent(storyboard_error=PromptGenerationError("not a list"))
        orch = make_orchestrator(mode=PipelineMode.STORYBOARD, prompt=prompt)
        with pytest.raises(ScriptProcessingError):
            asyncio.run(orch.build_storyboard("剧本"))
        assert orch.run.shots == ()

    def test_empty_script_rejected(self):
        orch = make_orchestrator()
        with pytest.raises(ValueError):
            asyncio.run(orch.split_script("   "))


# ==========================================================================
# Test 4: Local edits
# ==========================================================================

class TestLocalEdits:

    def test_add_shot_placeholders(self):
        orch = make_orchestrator()
        orch.add_shot()
        shot = orch.run.shots[-1]
        assert shot.script_segment == NEW_SHOT_SEGMENT
        assert shot.video_prompt == NEW_SHOT_PROMPT
        assert shot.image_status == ShotStatus.IDLE
        assert shot.video_status == ShotStatus.IDLE

    def test_upload_data_url(self):
        orch = make_orchestrator()
        sid = build_shots(orch)[0]

        orch.upload_start_frame(sid, "data:image/png;base64,aGVsbG8=")

        shot = orch.run.get_shot(sid)
        assert shot.image_status == ShotStatus.COMPLETED
        assert shot.start_frame.data == b"hello"
        assert shot.start_frame.mime_type == "image/png"
        assert shot.start_frame.source == AssetSource.UPLOADED

    def test_malformed_data_url_ignored(self):
        orch = make_orchestrator()
        sid = build_shots(orch)[0]
        before = orch.run

        result = orch.upload_start_frame(sid, "data:image/png;base64,@@not-base64@@")

        assert result is before
        shot = orch.run.get_shot(sid)
        assert shot.image_status == ShotStatus.IDLE
        assert not shot.has_start_frame

    def test_update_prompts(self):
        orch = make_orchestrator()
        sid = build_shots(orch)[0]
        orch.update_prompts(sid, video_prompt="新视频", image_prompt="新首帧")
        shot = orch.run.get_shot(sid)
        assert (shot.video_prompt, shot.image_prompt) == ("新视频", "新首帧")

    def test_refine_returns_draft_without_applying(self):
        orch = make_orchestrator()
        sid = build_shots(orch)[0]

        draft = asyncio.run(orch.refine_prompt(sid, "更暗一些"))

        assert draft == "v-第一幕|更暗一些"
        assert orch.run.get_shot(sid).video_prompt == "v-第一幕"

    def test_refine_failure_returns_original(self):
        orch = make_orchestrator(prompt=FakePromptAgent(refine_error=RemoteCallError("bad", code=400)))
        sid = build_shots(orch)[0]
        assert asyncio.run(orch.refine_prompt(sid, "更暗一些", mode="image")) == "i-第一幕"

    def test_switch_mode_clears_sequence(self):
        orch = make_orchestrator()
        build_shots(orch)
        asyncio.run(orch.analyze_script("剧本"))
        version = orch.run.version

        orch.switch_mode(PipelineMode.STORYBOARD)

        assert orch.run.shots == ()
        assert orch.run.analysis is None
        assert orch.run.mode == PipelineMode.STORYBOARD
        assert orch.run.version == version + 1

    def test_update_context_validates(self):
        orch = make_orchestrator()
        with pytest.raises(ValueError):
            orch.update_context(aspect_ratio="4:3")
