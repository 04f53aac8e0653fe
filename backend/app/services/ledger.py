"""
Project Ledger — the canonical set of equipment records plus the global
pricing parameters, and the only place they are mutated.

Requests are served concurrently on one event loop, so every mutation runs
under ``self.lock``; reads work on the current in-memory objects.
"""
import asyncio
import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Optional

from app.config import (
    DEFAULT_LABOR_COST_PER_KG,
    DEFAULT_OVERHEAD_PERCENT,
    DEFAULT_PROJECT_ID,
    DEFAULT_PROJECT_NAME,
    EXPORT_SCHEMA_VERSION,
)
from app.models.schemas import (
    Equipment,
    MaterialItem,
    PricingParameters,
    ProjectState,
)
from app.services.bom_engine import BOMEngine, coerce_non_negative
from app.services.consolidation_engine import ConsolidationEngine
from app.services.costing_engine import CostingEngine
from app.services.market_api import apply_prices

logger = logging.getLogger("vesselcost-ledger")

METADATA_TEXT_FIELDS = ("tag", "name", "specification", "main_material", "page_range")


class EquipmentNotFound(KeyError):
    pass


class MaterialNotFound(KeyError):
    pass


class ProjectLedger:

    def __init__(
        self,
        project_id: str = DEFAULT_PROJECT_ID,
        name: str = DEFAULT_PROJECT_NAME,
        pricing: Optional[PricingParameters] = None,
        equipments: Optional[Iterable[Equipment]] = None,
        last_saved: Optional[int] = None,
    ) -> None:
        self.id = project_id
        self.name = name
        self._pricing = pricing or PricingParameters(
            labor_cost_per_kg=DEFAULT_LABOR_COST_PER_KG,
            overhead_percent=DEFAULT_OVERHEAD_PERCENT,
        )
        self._equipments: "OrderedDict[str, Equipment]" = OrderedDict(
            (eq.id, eq) for eq in equipments or ()
        )
        self.last_saved = last_saved
        self.lock = asyncio.Lock()
        self._bom = BOMEngine()
        self._consolidation = ConsolidationEngine()

    # ── reads ─────────────────────────────────────────────────────────────

    @property
    def equipments(self) -> List[Equipment]:
        return list(self._equipments.values())

    @property
    def pricing(self) -> PricingParameters:
        return self._pricing.model_copy()

    def costing(self) -> CostingEngine:
        """A rollup engine bound to the current pricing parameters."""
        return CostingEngine(self._pricing)

    def get(self, equipment_id: str) -> Equipment:
        try:
            return self._equipments[equipment_id]
        except KeyError:
            raise EquipmentNotFound(equipment_id) from None

    def get_material(self, equipment_id: str, material_id: str) -> MaterialItem:
        equipment = self.get(equipment_id)
        for item in equipment.materials:
            if item.id == material_id:
                return item
        raise MaterialNotFound(material_id)

    def material_context(self) -> List[Dict[str, Any]]:
        """Compact view of every BOM line, labelled with its equipment tag."""
        return [
            {"item": f"{eq.tag} - {item.name}", "mat": item.material, "qty": item.quantity}
            for eq in self._equipments.values()
            for item in eq.materials
        ]

    # ── mutations ─────────────────────────────────────────────────────────

    async def set_pricing(self, labor_cost_per_kg: Any = None, overhead_percent: Any = None) -> PricingParameters:
        """
        Update the global pricing inputs; ``None`` leaves a value unchanged.

        An unreadable labor rate becomes 0. An unreadable overhead keeps the
        current value, and overhead is capped at 100%.
        """
        async with self.lock:
            current = self._pricing
            labor = current.labor_cost_per_kg
            if labor_cost_per_kg is not None:
                labor = coerce_non_negative(labor_cost_per_kg, 0.0)
            overhead = current.overhead_percent
            if overhead_percent is not None:
                overhead = min(coerce_non_negative(overhead_percent, overhead), 100.0)
            self._pricing = PricingParameters(labor_cost_per_kg=labor, overhead_percent=overhead)
            return self.pricing

    async def absorb(self, records: Iterable[Equipment], merge: bool = False) -> List[Equipment]:
        """
        Take the output of an import run.

        By default the run replaces the ledger content; with ``merge`` the new
        records are consolidated into the existing ones by tag.
        """
        records = list(records)
        async with self.lock:
            if merge:
                combined = self._consolidation.merge_records(self._equipments.values(), records)
            else:
                combined = records
            self._equipments = OrderedDict((eq.id, eq) for eq in combined)
            logger.info(f"Ledger {self.id}: absorbed {len(records)} records (merge={merge}), now {len(combined)}")
            return self.equipments

    async def delete_equipment(self, equipment_id: str) -> None:
        async with self.lock:
            if equipment_id not in self._equipments:
                raise EquipmentNotFound(equipment_id)
            del self._equipments[equipment_id]

    async def update_metadata(self, equipment_id: str, changes: Dict[str, Any]) -> Equipment:
        async with self.lock:
            equipment = self.get(equipment_id)
            for key in METADATA_TEXT_FIELDS:
                if key in changes and changes[key] is not None:
                    setattr(equipment, key, str(changes[key]).strip())
            if "design_weight" in changes:
                equipment.design_weight = coerce_non_negative(changes["design_weight"], 0.0)
            equipment.touch()
            return equipment

    async def add_material(self, equipment_id: str) -> MaterialItem:
        async with self.lock:
            equipment = self.get(equipment_id)
            item = self._bom.new_manual_material()
            equipment.materials.append(item)
            equipment.touch()
            return item

    async def edit_material(self, equipment_id: str, material_id: str, changes: Dict[str, Any]) -> MaterialItem:
        async with self.lock:
            equipment = self.get(equipment_id)
            for idx, item in enumerate(equipment.materials):
                if item.id == material_id:
                    updated = self._bom.edit_material(item, changes)
                    equipment.materials[idx] = updated
                    equipment.touch()
                    return updated
            raise MaterialNotFound(material_id)

    async def remove_material(self, equipment_id: str, material_id: str) -> None:
        async with self.lock:
            equipment = self.get(equipment_id)
            remaining = [item for item in equipment.materials if item.id != material_id]
            if len(remaining) == len(equipment.materials):
                raise MaterialNotFound(material_id)
            equipment.materials = remaining
            equipment.touch()

    async def apply_prices(self, equipment_id: str, prices: Dict[str, float]) -> int:
        """Re-price the record's current BOM lines; returns how many changed."""
        async with self.lock:
            equipment = self.get(equipment_id)
            equipment.materials, changed = apply_prices(equipment.materials, prices)
            if changed:
                equipment.touch()
            return changed

    async def adopt(self, other: "ProjectLedger") -> None:
        """Take over another ledger's content (a loaded project) in place."""
        async with self.lock:
            self.id = other.id
            self.name = other.name
            self._pricing = other.pricing
            self._equipments = OrderedDict((eq.id, eq) for eq in other.equipments)
            self.last_saved = other.last_saved

    # ── persisted form ────────────────────────────────────────────────────

    def to_state(self, last_saved: Optional[int] = None) -> ProjectState:
        return ProjectState(
            id=self.id,
            name=self.name,
            equipments=[eq.model_copy(update={"drawings": []}) for eq in self._equipments.values()],
            labor_cost_per_kg=self._pricing.labor_cost_per_kg,
            overhead_percent=self._pricing.overhead_percent,
            last_saved=last_saved if last_saved is not None else self.last_saved,
        )

    def snapshot(self, last_saved: Optional[int] = None) -> Dict[str, Any]:
        """JSON-ready persisted form; drawing references are excluded."""
        return self.to_state(last_saved).model_dump(
            mode="json",
            by_alias=True,
            exclude={"equipments": {"__all__": {"drawings"}}},
        )

    @classmethod
    def from_state(cls, state: ProjectState) -> "ProjectLedger":
        """Rebuild a ledger from its persisted form. Drawings start empty."""
        return cls(
            project_id=state.id,
            name=state.name,
            pricing=PricingParameters(
                labor_cost_per_kg=state.labor_cost_per_kg,
                overhead_percent=state.overhead_percent,
            ),
            equipments=[eq.model_copy(update={"drawings": []}) for eq in state.equipments],
            last_saved=state.last_saved,
        )

    def export_json(self) -> Dict[str, Any]:
        """Full in-memory project, including drawing references."""
        return {
            "schemaVersion": EXPORT_SCHEMA_VERSION,
            "equipments": [eq.model_dump(mode="json", by_alias=True) for eq in self._equipments.values()],
            "laborCost": self._pricing.labor_cost_per_kg,
            "overhead": self._pricing.overhead_percent,
        }
