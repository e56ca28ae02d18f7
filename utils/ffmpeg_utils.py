"""
FFmpeg Utilities for continuity frames

- ffprobe 로 영상 길이 확인
- 마지막 프레임을 정지 이미지로 추출 (다음 샷의 첫 프레임 후보)

Decoder processes are spawned with asyncio so extraction never blocks the
event loop, and every process is killed/reaped before the call returns.
"""

import asyncio
import io
from typing import List, Optional, Union

from PIL import Image, UnidentifiedImageError

from schemas import AssetSource, ImageAsset, VideoAsset
from utils.errors import ExtractionFailed, ExtractionTimeout, FrameExtractionError
from utils.image_utils import encode_jpeg
from utils.logger import get_logger

logger = get_logger("ffmpeg")


class FrameExtractor:
    """
    Last-frame extractor.

    seek = max(0, duration - tail_offset) so the grab never lands past the
    final decodable frame. The whole probe + grab + encode sequence shares a
    single timeout.
    """

    def __init__(
        self,
        timeout_sec: float = 10.0,
        tail_offset_sec: float = 0.1,
        quality: float = 0.9,
        ffmpeg_bin: str = "ffmpeg",
        ffprobe_bin: str = "ffprobe",
    ):
        self.timeout_sec = timeout_sec
        self.tail_offset_sec = tail_offset_sec
        self.quality = quality
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin

    @classmethod
    def from_config(cls, config: dict) -> "FrameExtractor":
        return cls(
            timeout_sec=float(config.get("timeout_sec", 10.0)),
            tail_offset_sec=float(config.get("tail_offset_sec", 0.1)),
            quality=float(config.get("quality", 0.9)),
            ffmpeg_bin=config.get("ffmpeg_bin", "ffmpeg"),
            ffprobe_bin=config.get("ffprobe_bin", "ffprobe"),
        )

    async def extract_last_frame(self, video: Union[VideoAsset, str]) -> ImageAsset:
        """
        Decode the final frame of `video` into a JPEG still.

        Raises:
            ExtractionTimeout: not finished within timeout_sec
            ExtractionFailed: probe/decode/encode error
        """
        source = video.location if isinstance(video, VideoAsset) else video
        if not source:
            raise ExtractionFailed("video has no playable location")

        procs: List[asyncio.subprocess.Process] = []
        try:
            return await asyncio.wait_for(self._extract(source, procs), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            raise ExtractionTimeout(f"last-frame extraction exceeded {self.timeout_sec:.1f}s: {source}")
        except FrameExtractionError:
            raise
        except (OSError, ValueError) as e:
            raise ExtractionFailed(f"last-frame extraction failed: {e}") from e
        finally:
            await self._release(procs)

    async def probe_duration(self, source: str, procs: Optional[List] = None) -> float:
        """ffprobe로 영상 길이(초) 확인."""
        out = await self._run(procs if procs is not None else [], [
            self.ffprobe_bin,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            source,
        ])
        text = out.decode("utf-8", errors="replace").strip()
        try:
            return float(text)
        except ValueError:
            raise ExtractionFailed(f"unreadable duration from ffprobe: {text[:80]!r}")

    async def _extract(self, source: str, procs: List) -> ImageAsset:
        duration = await self.probe_duration(source, procs)
        seek = max(0.0, duration - self.tail_offset_sec)
        logger.debug(f"Extracting frame at {seek:.3f}s / {duration:.3f}s from {source}")

        png = await self._run(procs, [
            self.ffmpeg_bin,
            "-v", "error",
            "-ss", f"{seek:.3f}",
            "-i", source,
            "-frames:v", "1",
            "-f", "image2pipe",
            "-vcodec", "png",
            "-",
        ])
        if not png:
            raise ExtractionFailed(f"no decodable frame at {seek:.3f}s")

        try:
            with Image.open(io.BytesIO(png)) as frame:
                frame.load()
                data = encode_jpeg(frame, self.quality)
        except (UnidentifiedImageError, OSError) as e:
            raise ExtractionFailed(f"frame could not be rasterized: {e}") from e

        return ImageAsset(data=data, mime_type="image/jpeg", source=AssetSource.INHERITED)

    async def _run(self, procs: List, cmd: List[str]) -> bytes:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        procs.append(proc)
        stdout, stderr = await proc.communicate()
        if proc.returncode != 0:
            err = (stderr or b"").decode("utf-8", errors="replace").strip()
            raise ExtractionFailed(f"{cmd[0]} exited with {proc.returncode}: {err[:300]}")
        return stdout or b""

    @staticmethod
    async def _release(procs: List) -> None:
        for proc in procs:
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()
