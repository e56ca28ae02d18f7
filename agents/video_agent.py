"""
Video Agent: Generates a video clip for one shot with Veo 3.1.

- Image-to-Video: 첫 프레임 이미지가 있으면 함께 전달 (연속성 유지)
- Style/era context is prepended to the prompt for reinforcement
- Long-running operation polled every poll_interval_sec
- Finished clip downloaded with aiohttp so ffmpeg can open it locally
- Submit, every poll and the download are retried one call at a time, so a
  transient error never abandons a running operation or submits a new one
"""

import asyncio
import os
import time
import uuid
from typing import Optional

import aiohttp

from config import get_compression_config, get_model_config, get_retry_config, get_video_config
from schemas import GenerationContext, ImageAsset, VideoAsset
from utils.constants import DEFAULT_MARKER
from utils.errors import RemoteCallError, VideoGenerationError, VideoGenerationTimeout
from utils.image_utils import compress_image
from utils.logger import get_logger
from utils.retry import RetryExecutor

logger = get_logger("video_agent")

_FROM_CONFIG = object()


def build_context_prompt(prompt: str, context: Optional[GenerationContext]) -> str:
    """
    Prefix era / style reinforcement, skipping values that mean "default".

    >>> build_context_prompt("他推门而入", GenerationContext(style="动漫", era="民国时期"))
    '时代背景：民国时期，视觉风格：动漫。他推门而入'
    """
    if context is None:
        return prompt
    parts = []
    if context.era and DEFAULT_MARKER not in context.era:
        parts.append(f"时代背景：{context.era}")
    if context.style and DEFAULT_MARKER not in context.style:
        parts.append(f"视觉风格：{context.style}")
    if not parts:
        return prompt
    return f"{'，'.join(parts)}。{prompt}"


class VideoAgent:
    """
    비디오 생성 에이전트 (Veo 3.1 fast)

    poll_timeout_sec=None polls until the operation reports done.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        poll_interval_sec: Optional[float] = None,
        poll_timeout_sec=_FROM_CONFIG,
        output_dir: Optional[str] = None,
        sleep=None,
        retry_executor: Optional[RetryExecutor] = None,
    ):
        video_config = get_video_config()
        self.api_key = api_key or os.getenv("GOOGLE_API_KEY")
        self.model = model or get_model_config()["video"]
        self.poll_interval_sec = poll_interval_sec if poll_interval_sec is not None else float(video_config["poll_interval_sec"])
        if poll_timeout_sec is _FROM_CONFIG:
            poll_timeout_sec = video_config.get("poll_timeout_sec")
        self.poll_timeout_sec = float(poll_timeout_sec) if poll_timeout_sec is not None else None
        self.resolution = video_config.get("resolution", "720p")
        self.output_dir = output_dir or video_config.get("output_dir", "outputs/videos")
        self.download_timeout_sec = float(video_config.get("download_timeout_sec", 300.0))
        self._sleep = sleep or asyncio.sleep
        self.retry = retry_executor or RetryExecutor.from_config(get_retry_config())
        self._client = None

    @property
    def client(self):
        if self._client is None:
            if not self.api_key:
                raise ValueError("API key is required. Set GOOGLE_API_KEY environment variable.")
            from google import genai
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def generate_video(
        self,
        prompt: str,
        start_frame: Optional[ImageAsset] = None,
        aspect_ratio: str = "16:9",
        context: Optional[GenerationContext] = None,
    ) -> VideoAsset:
        """
        Submit, poll and download one clip.

        Raises:
            VideoGenerationError: error payload, missing uri or failed download
            VideoGenerationTimeout: poll_timeout_sec exceeded
        """
        from google.genai import types

        working_prompt = build_context_prompt(prompt, context)
        request = {
            "model": self.model,
            "prompt": working_prompt,
            "config": types.GenerateVideosConfig(
                number_of_videos=1,
                resolution=self.resolution,
                aspect_ratio=aspect_ratio,
            ),
        }
        if start_frame is not None and not start_frame.is_empty:
            compressed = compress_image(start_frame, **get_compression_config())
            request["image"] = types.Image(image_bytes=compressed.data, mime_type=compressed.mime_type)
            logger.info("Image-to-Video mode: start frame attached")

        logger.info(f"Submitting video job ({aspect_ratio}): {working_prompt[:60]}...")
        operation = await self.retry.execute(
            lambda: self.client.aio.models.generate_videos(**request), label="veo submit"
        )
        operation = await self._wait_for(operation)

        error = getattr(operation, "error", None)
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise VideoGenerationError(f"视频生成失败: {message}")

        response = getattr(operation, "response", None) or getattr(operation, "result", None)
        videos = getattr(response, "generated_videos", None) or []
        video = getattr(videos[0], "video", None) if videos else None
        uri = getattr(video, "uri", None) if video is not None else None
        if not uri:
            logger.error("Video result is empty; check model access or content filtering")
            raise VideoGenerationError("API 未返回视频链接")

        path = await self.retry.execute(lambda: self._download(uri), label="video download")
        return VideoAsset(path=path, uri=uri, mime_type=getattr(video, "mime_type", None) or "video/mp4")

    async def _wait_for(self, operation):
        started = time.monotonic()
        while not operation.done:
            if self.poll_timeout_sec is not None and time.monotonic() - started >= self.poll_timeout_sec:
                raise VideoGenerationTimeout(
                    f"video operation not done after {self.poll_timeout_sec:.0f}s"
                )
            await self._sleep(self.poll_interval_sec)
            pending = operation
            operation = await self.retry.execute(
                lambda: self.client.aio.operations.get(pending), label="veo poll"
            )
            logger.debug("...still generating...")
        return operation

    async def _download(self, uri: str) -> str:
        download_url = uri
        # Google-hosted files need the key appended
        if "generativelanguage.googleapis.com" in uri and "key=" not in uri:
            separator = "&" if "?" in uri else "?"
            download_url = f"{uri}{separator}key={self.api_key}"

        os.makedirs(self.output_dir, exist_ok=True)
        output_path = os.path.join(self.output_dir, f"{uuid.uuid4().hex}.mp4")

        timeout = aiohttp.ClientTimeout(total=self.download_timeout_sec)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(download_url) as resp:
                if resp.status == 429 or resp.status >= 500:
                    raise RemoteCallError(f"视频下载失败: HTTP {resp.status} {resp.reason}", code=resp.status)
                if resp.status != 200:
                    raise VideoGenerationError(f"视频下载失败: HTTP {resp.status} {resp.reason}")
                with open(output_path, "wb") as f:
                    async for chunk in resp.content.iter_chunked(1 << 16):
                        f.write(chunk)

        logger.info(f"Video saved: {output_path}")
        return output_path
