"""
Prompt Agent: every text-only Gemini collaborator of the shot pipeline.

- analyze_script: 대본 심층 분석 (페이싱/톤/캐릭터 아크/분할 지점)
- split_script: 샷 길이 기준 대본 분할 (최대 floor(24 / 길이) 구간)
- generate_storyboard: 스토리보드 모드, 전체 대본 -> (구간, 영상 프롬프트, 첫 프레임 프롬프트)
- generate_segment_prompts: 연속 모드, 구간 목록 -> 1:1 대응 프롬프트
- generate_first_frame_prompt: 단일 구간의 첫 프레임 프롬프트
- refine_prompt: 사용자 지시에 따른 프롬프트 수정

Each method performs exactly one remote request; retry/backoff is applied by
the caller through RetryExecutor.
"""

import json
import os
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from config import get_compression_config, get_model_config
from schemas import GenerationContext, GeneratedShotPrompt, ImageAsset, ScriptAnalysis
from utils.constants import MAX_SEQUENCE_SECONDS, PROMPT_FAILURE_PLACEHOLDER
from utils.errors import PromptGenerationError, ScriptAnalysisError
from utils.image_utils import compress_image
from utils.llm_utils import parse_llm_json
from utils.logger import get_logger

logger = get_logger("prompt_agent")


class _SplitResponse(BaseModel):
    segments: List[str] = []


def max_segments_for(shot_duration_sec: int) -> int:
    """floor(24 / duration), never below one segment."""
    return max(1, MAX_SEQUENCE_SECONDS // max(1, int(shot_duration_sec)))


class PromptAgent:
    """
    Gemini 텍스트 협력자

    The google-genai client is created lazily so the agent can be constructed
    (and faked in tests) without GOOGLE_API_KEY.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY")
        self.model = model or get_model_config()["text"]
        self._client = None

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise ValueError("API key is required. Set GOOGLE_API_KEY environment variable.")
            from google import genai
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def _generate_text(self, contents, config=None) -> str:
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=config,
        )
        return (response.text or "").strip()

    @staticmethod
    def _json_config(schema, thinking_budget: int):
        from google.genai import types
        return types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=schema,
            thinking_config=types.ThinkingConfig(thinking_budget=thinking_budget),
        )

    @staticmethod
    def _with_reference(text_prompt: str, reference_image: Optional[ImageAsset]) -> list:
        """Reference image (compressed) first, then the instruction text."""
        from google.genai import types
        contents = []
        if reference_image is not None and not reference_image.is_empty:
            compressed = compress_image(reference_image, **get_compression_config())
            if compressed.data:
                contents.append(types.Part.from_bytes(data=compressed.data, mime_type=compressed.mime_type))
        contents.append(types.Part.from_text(text=text_prompt))
        return contents

    # =========================================================================
    # Script analysis / split
    # =========================================================================

    async def analyze_script(self, script: str) -> ScriptAnalysis:
        """
        대본 심층 분석.

        Raises:
            ScriptAnalysisError: response is not a valid analysis object
        """
        text_prompt = (
            "分析下面这部短剧剧本，给出：1. 节奏建议 2. 氛围分析 3. 角色弧光 4. 建议切分点。"
            f"全部内容使用中文。\n剧本：\"{script}\""
        )
        text = await self._generate_text(text_prompt, self._json_config(ScriptAnalysis, 1024))
        try:
            return ScriptAnalysis.model_validate(parse_llm_json(text or "{}"))
        except (ValueError, ValidationError) as e:
            raise ScriptAnalysisError(f"剧本分析结果无法解析: {e}") from e

    async def split_script(self, script: str, shot_duration_sec: int) -> List[str]:
        """
        Split the script into at most floor(24 / shot_duration_sec) segments.

        Falls back to [script] when the answer cannot be parsed or is empty.
        """
        max_segments = max_segments_for(shot_duration_sec)
        text_prompt = f"""
你是一名短剧剪辑导演。请把下面的剧本切分为 {max_segments} 个独立镜头片段。

参数：
- 每个镜头时长：{shot_duration_sec} 秒
- 目标片段数：{max_segments}（剧本少于 20 字时可以更少）

要求：
1. 剧本内容必须分散到不同片段中，不要全部堆在第一个片段。
2. 按动作、对白或场景变化自然切分。
3. 保留原文内容。

剧本：
"{script}"
"""
        text = await self._generate_text(text_prompt, self._json_config(_SplitResponse, 2048))
        try:
            parsed = _SplitResponse.model_validate(parse_llm_json(text or "{}"))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Split response unparseable, using whole script as one segment: {e}")
            return [script]

        segments = [s for s in parsed.segments if isinstance(s, str) and s.strip()]
        if not segments:
            return [script]
        return segments[:max_segments]

    # =========================================================================
    # Batch prompt generation
    # =========================================================================

    async def generate_storyboard(
        self,
        script: str,
        context: GenerationContext,
        reference_image: Optional[ImageAsset] = None,
        analysis: Optional[ScriptAnalysis] = None,
    ) -> List[GeneratedShotPrompt]:
        """
        스토리보드 모드: the model decides how many shots the script becomes.

        Raises:
            PromptGenerationError: response is not a list of shot prompts
        """
        analysis_note = ""
        if analysis is not None:
            analysis_note = f"\n参考分析：节奏建议「{analysis.pacing_suggestion}」，氛围「{analysis.tone_analysis}」。"

        text_prompt = f"""你是短剧分镜师。把剧本拆分为多个分镜。

核心参数：
- 风格：{context.style}
- 时代/题材：{context.era}
- 人物：{context.ethnicity}
{analysis_note}
每个分镜请用中文提供：
1. visual_prompt（视频提示词）：完整自然地描述剧情流程，显式包含风格（{context.style}）、时代（{context.era}）和人种（{context.ethnicity}）关键词。
2. image_prompt（首帧提示词）：描述分镜开始时的静态画面，同样包含风格、时代和人种关键词。
{'请参考用户提供的参考图进行构图和人设。' if reference_image is not None else ''}
剧本："{script}"
"""
        text = await self._generate_text(
            self._with_reference(text_prompt, reference_image),
            self._json_config(list[GeneratedShotPrompt], 2048),
        )
        try:
            items = parse_llm_json(text or "[]")
            if not isinstance(items, list):
                raise ValueError("expected a JSON array")
            return [GeneratedShotPrompt.model_validate(item) for item in items]
        except (ValueError, ValidationError) as e:
            raise PromptGenerationError(f"生成分镜失败: {e}") from e

    async def generate_segment_prompts(
        self,
        segments: List[str],
        context: GenerationContext,
        reference_image: Optional[ImageAsset] = None,
        analysis: Optional[ScriptAnalysis] = None,
    ) -> List[GeneratedShotPrompt]:
        """
        연속 모드: one prompt pair per input segment, same order.

        Missing entries, blank prompts or an unparseable response are filled
        with PROMPT_FAILURE_PLACEHOLDER; this method never raises on shape.
        """
        names = analysis.character_names() if analysis is not None else []
        character_profile = "、".join(names) if names else "主要角色"

        text_prompt = f"""
你是一名顶级短剧分镜导演。
任务：为这 {len(segments)} 个连续剧本片段分别编写视觉提示词。

片段列表：{json.dumps(segments, ensure_ascii=False)}

核心参数：
- 视觉风格：{context.style}
- 时代：{context.era}
- 人物设定：{context.ethnicity}（角色：{character_profile}）
- 画面比例：{context.aspect_ratio}
- 单镜时长：{context.shot_duration_sec} 秒

【时间切片】每个片段先找出 T=0 时刻（第一句话、第一个动作或第一个状态），再概括整个片段的连贯动作。

输出要求（每个片段两个提示词）：
1. image_prompt（仅用于生成首帧）：
   - 只描述 T=0 的静态画面，禁止出现“然后”“接着”“过程”“一系列”等词。
   - 以“{context.style}风格，{context.era}背景”开头。
   - 包含角色“{character_profile}”的静态状态以及“{context.ethnicity}”特征。
   - 结构：[环境/光影] + [人物 T=0 姿势/表情] + [镜头角度]。
2. visual_prompt（用于生成视频）：用流动的语言描述从起始状态到结束状态的全过程。

输出格式：JSON 数组，元素包含 script_segment、visual_prompt、image_prompt，顺序与片段列表一致。
"""
        text = await self._generate_text(
            self._with_reference(text_prompt, reference_image),
            self._json_config(list[GeneratedShotPrompt], 2048),
        )

        results: list = []
        try:
            parsed = parse_llm_json(text or "[]")
            if isinstance(parsed, list):
                results = parsed
            else:
                logger.warning("Segment prompt response is not a list, filling placeholders")
        except ValueError as e:
            logger.warning(f"Segment prompt response unparseable, filling placeholders: {e}")

        filled = []
        for i, segment in enumerate(segments):
            item = results[i] if i < len(results) and isinstance(results[i], dict) else {}
            visual = item.get("visual_prompt")
            image = item.get("image_prompt")
            filled.append(GeneratedShotPrompt(
                script_segment=segment,
                visual_prompt=visual if isinstance(visual, str) and visual.strip() else PROMPT_FAILURE_PLACEHOLDER,
                image_prompt=image if isinstance(image, str) and image.strip() else PROMPT_FAILURE_PLACEHOLDER,
            ))

        if len(results) < len(segments):
            logger.warning(f"Prompt batch returned {len(results)} of {len(segments)} entries")
        return filled

    # =========================================================================
    # Single prompt helpers
    # =========================================================================

    async def generate_first_frame_prompt(
        self,
        segment: str,
        context: GenerationContext,
        reference_image: Optional[ImageAsset] = None,
    ) -> str:
        """첫 프레임 프롬프트. Empty answer -> templated default from the same inputs."""
        text_prompt = f"""你是一名资深概念设计师。
任务：根据剧本片段的开头情节，写一段详细的静止图像生成提示词（中文）。
剧本片段：{segment}
视觉风格：{context.style}
时代/题材：{context.era}
角色人种：{context.ethnicity}
画面比例：{context.aspect_ratio}
{'请参考用户提供的参考图进行构图和人设。' if reference_image is not None else ''}
要求：
1. 准确捕捉情节开始的那一瞬间。
2. 包含光影、色调、角色神态。
3. 必须明确包含“{context.style}”风格、“{context.era}”时代背景和“{context.ethnicity}”人物特征。
4. 只输出提示词文本，不要解释。"""
        text = await self._generate_text(self._with_reference(text_prompt, reference_image))
        if text:
            return text
        return f"一个展现{segment}开头场景的高清电影画面，{context.style}风格，{context.era}背景，{context.ethnicity}人物"

    async def refine_prompt(
        self,
        original_prompt: str,
        instruction: str,
        mode: str = "video",
        context: Optional[GenerationContext] = None,
    ) -> str:
        """AI 수정. Empty answer -> original prompt unchanged."""
        if mode not in ("video", "image"):
            raise ValueError(f"Unknown refine mode: {mode}")
        ctx = context or GenerationContext()

        if mode == "video":
            type_instruction = "目标是生成视频：重点描述动态、连贯的剧情发展，画面要有流动性。"
        else:
            type_instruction = f"""目标是生成首帧静态图：
1. 仅描述起始瞬间的静态构图，不要出现“随后”“接着”“然后”等表示时间流逝的词。
2. 这是单张图片，不是视频。
3. 必须融入以下设定（已有则优化，没有则补充）：
   - 画面比例：{ctx.aspect_ratio}
   - 视觉风格：{ctx.style}
   - 时代/题材：{ctx.era}
   - 角色人种：{ctx.ethnicity}"""

        text_prompt = f"""你是一名视觉提示词专家。根据用户指令修改现有提示词。
原始提示词：{original_prompt}
用户指令：{instruction}
修改目标：{type_instruction}

要求：
1. 保持原提示词的优点。
2. 准确执行用户的修改建议。
3. 符合时代“{ctx.era}”的服饰、环境、道具特征。
4. 输出中文，只输出修改后的提示词。"""
        text = await self._generate_text(text_prompt)
        return text or original_prompt
