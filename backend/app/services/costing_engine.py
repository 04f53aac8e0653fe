"""
CostingEngine — fabrication cost roll-up for pressure-vessel equipment.

Covers:
  - per-equipment rollup (BOM weight, material, labor, overhead, grand total)
  - project total (sum of independent equipment rollups)
  - design-weight vs. BOM-weight deviation flag
  - category and cost-composition breakdowns for charts

Every figure is recomputed from the current BOM on each call; nothing here is
cached or stored. Formulas:

    totalWeight   = Σ weight × quantity
    materialCost  = Σ weight × quantity × unitPrice
    laborCost     = totalWeight × laborCostPerKg
    overheadCost  = (materialCost + laborCost) × (overheadPercent / 100)
    grandTotal    = materialCost + laborCost + overheadCost
"""
from typing import Any, Dict, Iterable, List, Optional

from app.config import (
    CATEGORY_LABELS,
    COST_COMPONENT_LABELS,
    WEIGHT_DEVIATION_THRESHOLD,
)
from app.models.schemas import CostRollup, Equipment, PricingParameters


def bom_weight(equipment: Equipment) -> float:
    """Total BOM mass in kg."""
    return sum(item.weight * item.quantity for item in equipment.materials)


def material_cost(equipment: Equipment) -> float:
    return sum(item.weight * item.quantity * item.unit_price for item in equipment.materials)


def rollup(equipment: Equipment, labor_cost_per_kg: float, overhead_percent: float) -> CostRollup:
    """Pure cost rollup for one equipment record."""
    total_weight = bom_weight(equipment)
    materials = material_cost(equipment)
    labor = total_weight * labor_cost_per_kg
    overhead = (materials + labor) * (overhead_percent / 100)
    return CostRollup(
        total_weight=total_weight,
        material_cost=materials,
        labor_cost=labor,
        overhead_cost=overhead,
        grand_total=materials + labor + overhead,
    )


def weight_deviation(equipment: Equipment) -> Optional[float]:
    """
    Relative deviation of BOM weight from the title-block design weight.

    None when either weight is zero (nothing to compare).
    """
    design = equipment.design_weight or 0.0
    computed = bom_weight(equipment)
    if design <= 0 or computed <= 0:
        return None
    return abs(design - computed) / design


def needs_weight_review(equipment: Equipment) -> bool:
    """Advisory flag only; never blocks computation or export."""
    deviation = weight_deviation(equipment)
    return deviation is not None and deviation > WEIGHT_DEVIATION_THRESHOLD


class CostingEngine:
    """
    Rollups bound to one set of pricing parameters.

    The project ledger owns the parameters and hands a snapshot in; the engine
    never mutates them.
    """

    def __init__(self, pricing: PricingParameters) -> None:
        self.labor_cost_per_kg: float = pricing.labor_cost_per_kg
        self.overhead_percent: float = pricing.overhead_percent

    # ------------------------------------------------------------------
    # 1. Equipment rollup
    # ------------------------------------------------------------------

    def rollup(self, equipment: Equipment) -> CostRollup:
        return rollup(equipment, self.labor_cost_per_kg, self.overhead_percent)

    def grand_total(self, equipment: Equipment) -> float:
        return self.rollup(equipment).grand_total

    # ------------------------------------------------------------------
    # 2. Project totals
    # ------------------------------------------------------------------

    def project_total(self, equipments: Iterable[Equipment]) -> float:
        """Sum of each equipment's grand total (each rollup is independent)."""
        return sum(self.grand_total(eq) for eq in equipments)

    def directory_summary(self, equipments: List[Equipment]) -> Dict[str, Any]:
        """Headline figures for the equipment directory."""
        return {
            "equipmentCount": len(equipments),
            "totalDesignWeight": sum(eq.design_weight or 0.0 for eq in equipments),
            "totalBomWeight": sum(bom_weight(eq) for eq in equipments),
            "grandTotal": self.project_total(equipments),
            "flaggedForReview": [eq.id for eq in equipments if needs_weight_review(eq)],
        }

    # ------------------------------------------------------------------
    # 3. Chart breakdowns
    # ------------------------------------------------------------------

    def category_breakdown(self, equipment: Equipment) -> List[Dict[str, Any]]:
        """
        Material cost grouped by category label, in first-seen order.

        Used for the proportional (pie) view only.
        """
        totals: Dict[str, float] = {}
        for item in equipment.materials:
            label = CATEGORY_LABELS.get(item.category, CATEGORY_LABELS["other"])
            totals[label] = totals.get(label, 0.0) + item.weight * item.quantity * item.unit_price
        return [{"name": label, "value": value} for label, value in totals.items()]

    def cost_composition(self, equipment: Equipment) -> List[Dict[str, Any]]:
        result = self.rollup(equipment)
        return [
            {"name": COST_COMPONENT_LABELS["material"], "value": result.material_cost},
            {"name": COST_COMPONENT_LABELS["labor"], "value": result.labor_cost},
            {"name": COST_COMPONENT_LABELS["overhead"], "value": result.overhead_cost},
        ]

    def equipment_report(self, equipment: Equipment) -> Dict[str, Any]:
        """Everything the detail view shows for one record."""
        result = self.rollup(equipment)
        return {
            "equipmentId": equipment.id,
            "tag": equipment.tag,
            "rollup": result.model_dump(by_alias=True),
            "designWeight": equipment.design_weight or 0.0,
            "weightDeviation": weight_deviation(equipment),
            "needsWeightReview": needs_weight_review(equipment),
            "categoryBreakdown": self.category_breakdown(equipment),
            "costComposition": self.cost_composition(equipment),
        }
