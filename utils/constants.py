"""
DramaCut 공통 상수 모듈

Presets, sequence limits and placeholder strings shared across agents.
"""

# ─── 생성 설정 프리셋 ─────────────────────────────────────
STYLES = [
    "电影现实主义 (默认)",
    "动漫 / 漫画",
    "3D 动画 (Pixar 风格)",
    "赛博朋克 / 科幻",
    "复古胶片 (黑色电影)",
    "水彩 / 油画风格",
    "暗黑奇幻",
]

ERAS = [
    "现代都市 (Modern Day)",
    "古风仙侠 (Ancient/Xianxia)",
    "民国时期 (Republic Era)",
    "赛博未来 (Future/Sci-Fi)",
    "八九十年代 (80s/90s Retro)",
    "中世纪奇幻 (Medieval Fantasy)",
    "二战时期 (WWII Era)",
]

ETHNICITIES = [
    "不限 (AI 自动决定)",
    "中国人 (Chinese)",
    "欧美 (Western)",
    "日韩 (Japanese/Korean)",
    "东南亚 (Southeast Asian)",
    "南亚 (South Asian)",
    "非洲 (African)",
    "拉美 (Latin American)",
]

ASPECT_RATIOS = ["16:9", "9:16"]
SHOT_DURATIONS = [5, 8, 10]

# Total length of one continuous sequence (seconds)
MAX_SEQUENCE_SECONDS = 24

# Marker carried by preset values that mean "no preference"
DEFAULT_MARKER = "默认"

# ─── Placeholder 텍스트 ──────────────────────────────────
PROMPT_FAILURE_PLACEHOLDER = "生成失败"
NEW_SHOT_SEGMENT = "新场景"
NEW_SHOT_PROMPT = "新画面描述"
