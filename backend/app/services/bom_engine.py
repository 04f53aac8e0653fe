"""
BOM Engine — turns raw extraction output into ledger records.

The extraction service is asked for a response schema but nothing guarantees
it: fields go missing, numbers arrive as strings ("1,250 kg") or not at all,
categories drift outside the enumeration. Everything here is best-effort
defaulting; nothing raises on malformed input.

Also owns the user-edit rules for a BOM row (numeric coercion).
"""
import logging
import math
import re
from typing import Any, Dict, List, Optional

from app.config import (
    NEW_COMPONENT,
    PLACEHOLDER_TAGS,
    UNNAMED_COMPONENT,
    UNNAMED_EQUIPMENT,
    UNRESOLVED_TAG,
    WHOLE_DOCUMENT,
)
from app.models.schemas import Equipment, EquipmentStatus, MaterialItem, new_id, normalize_category

logger = logging.getLogger("vesselcost-bom")

_NUMBER_RE = re.compile(r"-?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")

# Free-text fields a user may edit on a BOM row
TEXT_FIELDS = ("name", "material", "specification")


def coerce_non_negative(value: Any, fallback: float = 0.0) -> float:
    """
    Parse ``value`` into a finite, non-negative float.

    Accepts numbers and numeric strings, including thousands separators and
    trailing units ("1,250 kg"). Anything else (None, bool, NaN, inf,
    negatives, garbage) yields ``fallback``.
    """
    if value is None or isinstance(value, bool):
        return fallback
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            cleaned = value.replace(",", "").strip()
            try:
                number = float(cleaned)
            except ValueError:
                match = _NUMBER_RE.search(cleaned)
                if not match:
                    return fallback
                number = float(match.group())
        else:
            return fallback
    except (OverflowError, ValueError):
        return fallback
    if not math.isfinite(number) or number < 0:
        return fallback
    return number


def is_placeholder_tag(tag: Optional[str]) -> bool:
    if tag is None:
        return True
    return str(tag).strip().lower() in PLACEHOLDER_TAGS


def _text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


class BOMEngine:

    def build_material(self, raw: Dict[str, Any], equipment_id: str, index: int) -> MaterialItem:
        """Build one BOM row from an extracted line. Prices start at zero."""
        return MaterialItem(
            id=f"{equipment_id}-mat-{index}",
            name=_text(raw.get("name"), UNNAMED_COMPONENT),
            material=_text(raw.get("material")),
            specification=_text(raw.get("specification")),
            weight=coerce_non_negative(raw.get("weight")),
            quantity=coerce_non_negative(raw.get("quantity")),
            unit_price=0.0,
            category=raw.get("category"),
        )

    def build_materials(self, raw_lines: Any, equipment_id: str) -> List[MaterialItem]:
        if not isinstance(raw_lines, list):
            if raw_lines is not None:
                logger.warning(f"Ignoring non-list materials payload for {equipment_id}: {type(raw_lines).__name__}")
            return []
        items: List[MaterialItem] = []
        for idx, raw in enumerate(raw_lines):
            if not isinstance(raw, dict):
                logger.warning(f"Skipping malformed BOM line {idx} for {equipment_id}")
                continue
            items.append(self.build_material(raw, equipment_id, idx))
        return items

    def identified_equipment(
        self,
        entry: Dict[str, Any],
        source_file_id: str,
        source_ref: Optional[str] = None,
    ) -> Equipment:
        """Seed a record from one structure-scan entry."""
        tag = _text(entry.get("tag"))
        return Equipment(
            tag=UNRESOLVED_TAG if is_placeholder_tag(tag) else tag,
            name=_text(entry.get("name"), UNNAMED_EQUIPMENT),
            page_range=_text(entry.get("pageRange") or entry.get("page_range"), WHOLE_DOCUMENT),
            source_file_id=source_file_id,
            drawings=[source_ref or source_file_id],
            status=EquipmentStatus.IDENTIFIED,
        )

    def apply_details(self, equipment: Equipment, details: Dict[str, Any]) -> None:
        """
        Merge a detail-extraction payload into a freshly identified record.

        Metadata from the payload wins when present; the BOM is replaced.
        """
        equipment.specification = _text(details.get("specification")) or equipment.specification
        equipment.main_material = _text(details.get("mainMaterial")) or equipment.main_material
        weight = coerce_non_negative(details.get("designWeight"))
        equipment.design_weight = weight or equipment.design_weight or 0.0
        equipment.materials = self.build_materials(details.get("materials"), equipment.id)
        equipment.touch()

    # ── user edits ────────────────────────────────────────────────────────

    def new_manual_material(self) -> MaterialItem:
        return MaterialItem(
            id=new_id("manual"),
            name=NEW_COMPONENT,
            quantity=1.0,
            category="other",
        )

    def edit_material(self, item: MaterialItem, changes: Dict[str, Any]) -> MaterialItem:
        """
        Apply a user edit to a BOM row, returning the updated row.

        Unparseable or negative weight/quantity become 0; an unparseable unit
        price keeps the row's previous price. Unknown keys are ignored.
        """
        update: Dict[str, Any] = {}
        for key in TEXT_FIELDS:
            if key in changes and changes[key] is not None:
                update[key] = str(changes[key])
        if "category" in changes:
            update["category"] = normalize_category(changes["category"])
        if "weight" in changes:
            update["weight"] = coerce_non_negative(changes["weight"], 0.0)
        if "quantity" in changes:
            update["quantity"] = coerce_non_negative(changes["quantity"], 0.0)
        if "unit_price" in changes:
            update["unit_price"] = coerce_non_negative(changes["unit_price"], item.unit_price)
        return item.model_copy(update=update)
