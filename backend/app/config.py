"""
Application configuration — single source of truth for model routing,
pricing defaults, placeholder texts and export layouts.

Import from here in all services and routes rather than hardcoding values.
"""
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()

# ── LLM routing ───────────────────────────────────────────────────────────────
LLM_PRIMARY_MODEL: str = os.getenv("LLM_PRIMARY_MODEL", "gemini/gemini-2.5-flash")
LLM_FALLBACK_MODEL: str = os.getenv("LLM_FALLBACK_MODEL", "gemini/gemini-2.0-flash")
LLM_CHAT_MODEL: str = os.getenv("LLM_CHAT_MODEL", "gemini/gemini-2.5-pro")
LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "8192"))
LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.1"))

# ── Service ───────────────────────────────────────────────────────────────────
APP_VERSION: str = "1.0.0"
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON: bool = os.getenv("LOG_FORMAT", "json").lower() != "text"
CORS_ORIGINS: list[str] = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if o.strip()
]

# ── Persistence ───────────────────────────────────────────────────────────────
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./vesselcost.db")

# Upper bound on one serialized project snapshot (bytes).
MAX_SNAPSHOT_BYTES: int = int(os.getenv("MAX_SNAPSHOT_BYTES", str(5 * 1024 * 1024)))

DEFAULT_PROJECT_ID: str = "proj-1"
DEFAULT_PROJECT_NAME: str = "Default Project"

# ── Pricing defaults ──────────────────────────────────────────────────────────
DEFAULT_LABOR_COST_PER_KG: float = 15.0
DEFAULT_OVERHEAD_PERCENT: float = 15.0

# BOM weight vs. title-block design weight; above this relative deviation the
# record is flagged for review.
WEIGHT_DEVIATION_THRESHOLD: float = 0.10

# ── Placeholders for best-effort construction ────────────────────────────────
UNRESOLVED_TAG: str = "Unknown"
UNNAMED_EQUIPMENT: str = "未命名设备"
UNNAMED_COMPONENT: str = "未命名组件"
NEW_COMPONENT: str = "新组件"
WHOLE_DOCUMENT: str = "全文件"

# Tags the extraction service uses when it cannot read a position number.
# Compared case-insensitively after stripping.
PLACEHOLDER_TAGS: frozenset[str] = frozenset({
    "", "unknown", "n/a", "na", "none", "null", "-", "未知", "未命名设备",
})

# Material names that carry no grade information and are never priced.
UNPRICEABLE_MATERIALS: frozenset[str] = frozenset({"", "n/a"})

# ── Categories ────────────────────────────────────────────────────────────────
MATERIAL_CATEGORIES: tuple[str, ...] = ("plate", "forging", "pipe", "consumable", "other")

CATEGORY_LABELS: dict[str, str] = {
    "plate": "板材",
    "forging": "锻件",
    "pipe": "管材",
    "consumable": "耗材",
    "other": "其他",
}

COST_COMPONENT_LABELS: dict[str, str] = {
    "material": "材料费",
    "labor": "人工/制造",
    "overhead": "综合管理费",
}

# ── Export layouts ────────────────────────────────────────────────────────────
EXPORT_SCHEMA_VERSION: int = 1

CSV_HEADER: tuple[str, ...] = (
    "位号",
    "名称",
    "规格",
    "主体材质",
    "图纸重量(kg)",
    "BOM重量(kg)",
    "预估造价(¥)",
)

EXPORT_DIR: str = os.getenv("EXPORT_DIR", "/tmp/vesselcost-exports")

# ── User-facing messages ──────────────────────────────────────────────────────
MSG_STORAGE_FULL: str = "保存项目失败！存储空间已满。请导出项目文件备份。"
MSG_SCAN_FAILED: str = "无法识别文件结构，请确保文件清晰。"
MSG_CHAT_FAILED: str = "连接估算大脑时出错，请重试。"
MSG_NO_DATA_CONTEXT: str = "尚未分析图纸。"
