"""
Image Agent: Generates first-frame stills for shots.

Gemini 2.5 Flash Image 로 텍스트 프롬프트 -> 정지 이미지 생성.
The result stays in memory as an ImageAsset; nothing is written to disk.
"""

import os
from typing import Optional

from config import get_model_config
from schemas import AssetSource, ImageAsset
from utils.errors import ImageGenerationError
from utils.logger import get_logger

logger = get_logger("image_agent")

SUPPORTED_ASPECT_RATIOS = ("1:1", "3:4", "4:3", "9:16", "16:9")


class ImageAgent:
    """
    이미지 생성 에이전트

    One request per call; RetryExecutor in the orchestrator handles backoff.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY")
        self.model = model or get_model_config()["image"]
        self._client = None

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise ValueError("API key is required. Set GOOGLE_API_KEY environment variable.")
            from google import genai
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate_image(self, prompt: str, aspect_ratio: str = "16:9") -> ImageAsset:
        """
        Generate a still from `prompt`.

        Raises:
            ImageGenerationError: the response carries no inline image part
        """
        from google.genai import types

        if aspect_ratio not in SUPPORTED_ASPECT_RATIOS:
            raise ValueError(f"Unsupported aspect ratio: {aspect_ratio}")

        logger.info(f"Generating image ({aspect_ratio}): {prompt[:60]}...")
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=[types.Part.from_text(text=prompt)],
            config=types.GenerateContentConfig(
                response_modalities=["IMAGE"],
                image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
            ),
        )

        candidates = getattr(response, "candidates", None) or []
        content = getattr(candidates[0], "content", None) if candidates else None
        for part in (getattr(content, "parts", None) or []):
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data:
                return ImageAsset(
                    data=inline.data,
                    mime_type=inline.mime_type or "image/png",
                    source=AssetSource.GENERATED,
                )

        raise ImageGenerationError("API 未返回图像数据")
