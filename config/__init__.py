"""
DramaCut Configuration Loader
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional

# 기본 설정 디렉토리
CONFIG_DIR = Path(__file__).parent


def get_default_config() -> Dict[str, Any]:
    """In-code defaults used when pipeline.yaml is missing or partial."""
    return {
        "retry": {
            "max_attempts": 3,
            "base_delay_sec": 2.0,
            "rate_limit_delay_sec": 5.0,
        },
        "compression": {
            "max_dimension": 1024,
            "quality": 0.8,
        },
        "extraction": {
            "timeout_sec": 10.0,
            "tail_offset_sec": 0.1,
            "quality": 0.9,
            "ffmpeg_bin": "ffmpeg",
            "ffprobe_bin": "ffprobe",
        },
        "continuity": {
            "settle_delay_sec": 0.5,
        },
        "video": {
            "poll_interval_sec": 8.0,
            "poll_timeout_sec": 900.0,
            "resolution": "720p",
            "output_dir": "outputs/videos",
            "download_timeout_sec": 300.0,
        },
        "models": {
            "text": "gemini-3-flash-preview",
            "image": "gemini-2.5-flash-image",
            "video": "veo-3.1-fast-generate-preview",
        },
    }


def load_pipeline_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    파이프라인 설정 로드

    Args:
        config_path: 설정 파일 경로 (기본: config/pipeline.yaml)

    Returns:
        Section dict with every default filled in
    """
    if config_path is None:
        config_path = CONFIG_DIR / "pipeline.yaml"

    config = get_default_config()
    if not os.path.exists(config_path):
        return config

    with open(config_path, "r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}

    for section, values in loaded.items():
        if isinstance(values, dict) and isinstance(config.get(section), dict):
            config[section].update(values)
        else:
            config[section] = values
    return config


def get_retry_config() -> Dict[str, Any]:
    return load_pipeline_config()["retry"]


def get_compression_config() -> Dict[str, Any]:
    return load_pipeline_config()["compression"]


def get_extraction_config() -> Dict[str, Any]:
    return load_pipeline_config()["extraction"]


def get_continuity_config() -> Dict[str, Any]:
    return load_pipeline_config()["continuity"]


def get_video_config() -> Dict[str, Any]:
    """Veo 호출/폴링 설정. poll_timeout_sec 가 null 이면 무제한 폴링."""
    return load_pipeline_config()["video"]


def get_model_config() -> Dict[str, Any]:
    return load_pipeline_config()["models"]
