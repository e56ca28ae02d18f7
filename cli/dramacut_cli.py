"""
DRAMACUT CLI - Command-line interface for short drama video generation.

기능:
- 스토리보드 모드 / 연속 모드 선택
- 스타일 / 시대 / 인종 / 화면 비율 / 샷 길이 설정
- 연속 모드: 구간 분할 결과 검토 및 수정
- 샷별 첫 프레임 + 영상 생성 결과 요약
"""

import asyncio
import os
import sys
from pathlib import Path
from typing import List

# Add parent directory to path for imports
sys.path.append(str(Path(__file__).parent.parent))

from schemas import GenerationContext, ImageAsset, PipelineMode
from utils.constants import ASPECT_RATIOS, ERAS, ETHNICITIES, SHOT_DURATIONS, STYLES


def print_banner():
    """Print DRAMACUT banner."""
    banner = """
=====================================================================
   ██████╗ ██████╗  █████╗ ███╗   ███╗ █████╗  ██████╗██╗   ██╗████████╗
   ██╔══██╗██╔══██╗██╔══██╗████╗ ████║██╔══██╗██╔════╝██║   ██║╚══██╔══╝
   ██║  ██║██████╔╝███████║██╔████╔██║███████║██║     ██║   ██║   ██║
   ██║  ██║██╔══██╗██╔══██║██║╚██╔╝██║██╔══██║██║     ██║   ██║   ██║
   ██████╔╝██║  ██║██║  ██║██║ ╚═╝ ██║██║  ██║╚██████╗╚██████╔╝   ██║
   ╚═════╝ ╚═╝  ╚═╝╚═╝  ╚═╝╚═╝     ╚═╝╚═╝  ╚═╝ ╚═════╝ ╚═════╝    ╚═╝

              AI Short Drama Storyboard & Video Generator
=====================================================================
"""
    print(banner)


def load_env():
    """Load environment variables from .env file."""
    from dotenv import load_dotenv
    load_dotenv()
    print("[OK] Environment variables loaded")


def choose(label: str, options: List, default_index: int = 0):
    """Numbered menu; Enter keeps the default."""
    for i, option in enumerate(options, 1):
        marker = " (default)" if i - 1 == default_index else ""
        print(f"  {i}) {option}{marker}")
    raw = input(f"Select {label}: ").strip()
    if not raw:
        return options[default_index]
    try:
        index = int(raw) - 1
        if 0 <= index < len(options):
            return options[index]
    except ValueError:
        pass
    print(f"[WARNING] Invalid choice. Using {options[default_index]}.")
    return options[default_index]


def read_script() -> str:
    """Multi-line script input, finished by an empty line."""
    print("Paste the script. Finish with an empty line:")
    lines = []
    while True:
        line = input()
        if not line.strip():
            break
        lines.append(line)
    return "\n".join(lines).strip()


def load_reference_image(path: str):
    if not path:
        return None
    file_path = Path(path)
    if not file_path.exists():
        print(f"[WARNING] Reference image not found: {path}")
        return None
    mime_type = "image/png" if file_path.suffix.lower() == ".png" else "image/jpeg"
    return ImageAsset(data=file_path.read_bytes(), mime_type=mime_type)


def get_user_input():
    """
    Get generation parameters from user via CLI.

    Returns:
        (script, mode, GenerationContext)
    """
    print("\nLet's turn your script into shots!\n")

    print("Step 1/7: Script")
    script = read_script()
    if not script:
        print("[ERROR] Script is empty.")
        sys.exit(1)

    print("\nStep 2/7: Mode")
    mode = choose("mode", [PipelineMode.STORYBOARD, PipelineMode.CONTINUOUS])

    print("\nStep 3/7: Visual Style")
    style = choose("style", STYLES)

    print("\nStep 4/7: Era")
    era = choose("era", ERAS)

    print("\nStep 5/7: Character Ethnicity")
    ethnicity = choose("ethnicity", ETHNICITIES, default_index=1)

    print("\nStep 6/7: Aspect Ratio")
    aspect_ratio = choose("aspect ratio", ASPECT_RATIOS)

    shot_duration = 8
    if mode == PipelineMode.CONTINUOUS:
        print("\nStep 7/7: Shot Duration (seconds)")
        shot_duration = choose("duration", SHOT_DURATIONS, default_index=SHOT_DURATIONS.index(8))
    else:
        print("\nStep 7/7: Style Reference Image")

    reference = load_reference_image(input("Reference image path (optional): ").strip())

    context = GenerationContext(
        style=style,
        era=era,
        ethnicity=ethnicity,
        aspect_ratio=aspect_ratio,
        shot_duration_sec=shot_duration,
        reference_image=reference,
    )
    return script, mode, context


def review_segments(segments: List[str]) -> List[str]:
    """연속 모드 구간 검토: Enter로 유지, 텍스트 입력으로 교체."""
    print("\n" + "=" * 60)
    print("Segment Review")
    print("=" * 60)
    reviewed = []
    for i, segment in enumerate(segments, 1):
        print(f"\n[{i}/{len(segments)}] {segment}")
        edited = input("  Edit (Enter to keep): ").strip()
        reviewed.append(edited or segment)
    return reviewed


def print_config(script: str, mode: PipelineMode, context: GenerationContext):
    """Print configuration summary."""
    print("\n" + "=" * 60)
    print("Configuration Summary")
    print("=" * 60)
    print(f"  Script: {script[:40]}{'...' if len(script) > 40 else ''}")
    print(f"  Mode: {mode.value}")
    print(f"  Style: {context.style}")
    print(f"  Era: {context.era}")
    print(f"  Ethnicity: {context.ethnicity}")
    print(f"  Aspect Ratio: {context.aspect_ratio}")
    if mode == PipelineMode.CONTINUOUS:
        print(f"  Shot Duration: {context.shot_duration_sec}s")
    print(f"  Reference Image: {'YES' if context.reference_image else 'NO'}")
    print("=" * 60 + "\n")


async def run_interactive(script: str, mode: PipelineMode, context: GenerationContext):
    from pipeline import DramaPipeline

    pipeline = DramaPipeline()
    segments = None
    if mode == PipelineMode.CONTINUOUS:
        orch = pipeline.orchestrator
        orch.switch_mode(mode)
        orch.update_context(**context.model_dump())
        print("\nSplitting script...")
        segments = review_segments(await orch.split_script(script))

    print_config(script, mode, context)
    confirm = input("Proceed with generation? (y/n): ").strip().lower()
    if confirm != "y":
        print("[CANCELLED] Generation cancelled.")
        return None

    return await pipeline.run(script, mode=mode, context=context, segments=segments, analyze=True)


def main():
    """Main CLI entry point."""
    print_banner()
    load_env()

    if not os.getenv("GOOGLE_API_KEY"):
        print("\n[WARNING] GOOGLE_API_KEY not found in environment.")
        print("          Set your API key in .env file or environment variables.\n")
        sys.exit(1)

    script, mode, context = get_user_input()

    try:
        run = asyncio.run(run_interactive(script, mode, context))
        if run is None:
            return

        from pipeline import DramaPipeline

        print("\n" + "=" * 60)
        print("ALL DONE!")
        print("=" * 60)
        for row in DramaPipeline.summarize(run):
            print(
                f"  Shot {row['shot']}: image={row['image']} ({row['frame_source']}) "
                f"video={row['video']} -> {row['output']}"
            )
        print("\nThanks for using DRAMACUT!\n")

    except KeyboardInterrupt:
        print("\n\n[INTERRUPTED] Generation interrupted by user.")
        sys.exit(1)

    except Exception as e:
        print(f"\n\n[ERROR] {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
