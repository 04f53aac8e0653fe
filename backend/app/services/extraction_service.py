"""
Drawing extraction service — the seam between the ledger and the AI vision model.

Two sequential calls per uploaded drawing:
  1. scan_structure   — which equipment does the file contain, on which pages
  2. extract_details  — BOM + title-block data for one tag / page range
plus a best-effort market price lookup for material grades.

Any object with the three coroutine methods of ``DrawingAnalyzer`` can stand
in for the litellm-backed implementation (tests inject fakes).
"""
import base64
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol

from app.config import MSG_SCAN_FAILED, MATERIAL_CATEGORIES
from app.models.schemas import new_id
from app.services.bom_engine import coerce_non_negative
from app.services.llm_client import LLMClient, get_system_prompt
from app.services.perf_monitor import timed_async

logger = logging.getLogger("vesselcost-extraction")


class ExtractionError(RuntimeError):
    """Service failure or unparseable output for one scan/extraction call."""


@dataclass
class DrawingDocument:
    """One uploaded drawing file, held in memory for the import session."""
    name: str
    mime_type: str
    data: bytes
    id: str = field(default_factory=lambda: new_id("file"))

    @property
    def data_b64(self) -> str:
        return base64.standard_b64encode(self.data).decode("ascii")

    @property
    def size(self) -> int:
        return len(self.data)


class DrawingAnalyzer(Protocol):
    """Capability interface of the external extraction/pricing service."""

    async def scan_structure(self, document: DrawingDocument) -> List[Dict[str, Any]]:
        """Return ``[{tag, name, pageRange}]``; may be empty. Raises ExtractionError."""
        ...

    async def extract_details(
        self, document: DrawingDocument, target_tag: str, page_context: str
    ) -> Dict[str, Any]:
        """Return ``{specification?, mainMaterial?, designWeight?, materials}``. Raises ExtractionError."""
        ...

    async def lookup_prices(self, material_names: Iterable[str]) -> Dict[str, float]:
        """Return ``{material: pricePerKg}``. Never raises; ``{}`` on failure."""
        ...


# ── Prompts ───────────────────────────────────────────────────────────────────

STRUCTURE_SCAN_PROMPT = """
请阅读这份工程图纸文件（PDF或图片）。
你的任务是**建立设备目录索引**，不需要提取详细材料。

请识别文件中包含的所有设备，并指出它们所在的**页码范围**。
注意：一份文件可能包含多台设备，每台设备可能占用 1 页或多页。

输出 JSON 格式：
{
  "equipments": [
    {
      "tag": "设备位号 (如 V-2404)",
      "name": "设备名称 (如 缓冲罐)",
      "pageRange": "页码范围描述 (如 '第1-3页' 或 '全文件')"
    }
  ]
}
请使用中文输出。
"""

DETAIL_EXTRACTION_PROMPT = """
请针对文件中的特定设备（由用户指定位号和页码范围）进行深度分析。

目标设备位号: {target_tag}
关注页码/区域: {page_context}

请提取该设备的：
1. 规格尺寸 (Specification)
2. 主体材质 (Main Material)
3. 图纸设计总重 (Design Weight, kg)
4. 详细材料清单 (BOM) - 包含板材、锻件、接管等。

输出严格的 JSON 格式。
"""

PRICE_LOOKUP_PROMPT = (
    "查找以下压力容器材料在中国市场的当前平均单价（人民币/kg）：{materials}。\n"
    '请直接返回 JSON: {{ "prices": [{{ "material": "name", "pricePerKg": 10 }}] }}'
)

STRUCTURE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "equipments": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "tag": {"type": "string"},
                    "name": {"type": "string"},
                    "pageRange": {"type": "string"},
                },
            },
        }
    },
}

DETAIL_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "tag": {"type": "string"},
        "name": {"type": "string"},
        "specification": {"type": "string"},
        "mainMaterial": {"type": "string"},
        "designWeight": {"type": "number"},
        "materials": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "material": {"type": "string"},
                    "specification": {"type": "string"},
                    "weight": {"type": "number"},
                    "quantity": {"type": "number"},
                    "category": {"type": "string", "enum": list(MATERIAL_CATEGORIES)},
                },
                "required": ["name", "material", "quantity"],
            },
        },
    },
}


# ── Response parsing ──────────────────────────────────────────────────────────

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    """Remove markdown code-fence markers the model adds despite JSON mode."""
    return _FENCE_RE.sub("", text or "").strip()


def parse_json_object(text: str, *, slice_braces: bool = False) -> Dict[str, Any]:
    """
    Parse a model response into a dict.

    With ``slice_braces`` the outermost ``{...}`` is cut out first, for
    responses that wrap JSON in prose. Raises ExtractionError when the result
    is not a JSON object.
    """
    cleaned = strip_code_fences(text) or "{}"
    if slice_braces:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start > -1 and end > start:
            cleaned = cleaned[start:end + 1]
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ExtractionError(f"Unparseable model response: {e}") from e
    if not isinstance(data, dict):
        raise ExtractionError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_price_response(text: str) -> Dict[str, float]:
    data = parse_json_object(text, slice_braces=True)
    prices: Dict[str, float] = {}
    entries = data.get("prices")
    if not isinstance(entries, list):
        return prices
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        name = entry.get("material")
        price = coerce_non_negative(entry.get("pricePerKg"))
        if name and price:
            prices[str(name)] = price
    return prices


class LLMDrawingAnalyzer:
    """DrawingAnalyzer backed by the litellm vision client."""

    def __init__(self, client: Optional[LLMClient] = None):
        self.client = client or LLMClient()

    @timed_async
    async def scan_structure(self, document: DrawingDocument) -> List[Dict[str, Any]]:
        prompt = get_system_prompt("document_analyst") + "\n" + STRUCTURE_SCAN_PROMPT
        try:
            text = await self.client.document(
                document.data_b64, document.mime_type, prompt,
                response_schema=STRUCTURE_SCHEMA, schema_name="structure_scan",
            )
            data = parse_json_object(text)
        except Exception as e:
            logger.error(f"Structure scan failed for {document.name}: {e}")
            raise ExtractionError(MSG_SCAN_FAILED) from e
        entries = data.get("equipments") or []
        if not isinstance(entries, list):
            raise ExtractionError(MSG_SCAN_FAILED)
        return [entry for entry in entries if isinstance(entry, dict)]

    @timed_async
    async def extract_details(
        self, document: DrawingDocument, target_tag: str, page_context: str
    ) -> Dict[str, Any]:
        prompt = get_system_prompt("cost_engineer") + "\n" + DETAIL_EXTRACTION_PROMPT.format(
            target_tag=target_tag, page_context=page_context,
        )
        try:
            text = await self.client.document(
                document.data_b64, document.mime_type, prompt,
                response_schema=DETAIL_SCHEMA, schema_name="equipment_details",
            )
        except Exception as e:
            logger.error(f"Detail extraction failed for {target_tag} in {document.name}: {e}")
            raise ExtractionError(str(e)) from e
        return parse_json_object(text)

    async def lookup_prices(self, material_names: Iterable[str]) -> Dict[str, float]:
        unique = list(dict.fromkeys(name for name in material_names if name))
        if not unique:
            return {}
        prompt = PRICE_LOOKUP_PROMPT.format(materials=", ".join(unique))
        try:
            text = await self.client.text(prompt)
            return parse_price_response(text)
        except Exception as e:
            logger.warning(f"Price lookup failed ({type(e).__name__}: {e}), keeping current prices")
            return {}
