import logging
from typing import Dict, Iterable, List, Optional, Tuple

from app.config import UNPRICEABLE_MATERIALS
from app.models.schemas import MaterialItem
from app.services.perf_monitor import tracker

logger = logging.getLogger("vesselcost-market")


def priceable_materials(materials: Iterable[MaterialItem]) -> List[str]:
    """Distinct material grades worth asking a price for, in first-seen order."""
    names = (m.material.strip() for m in materials)
    return list(dict.fromkeys(n for n in names if n.lower() not in UNPRICEABLE_MATERIALS))


def match_price(material: str, prices: Dict[str, float]) -> Optional[float]:
    """
    First response key that contains, or is contained in, ``material``
    (case-insensitive). No scoring: "304不锈钢" prices "304不锈钢板".
    """
    grade = material.strip().lower()
    if grade in UNPRICEABLE_MATERIALS:
        return None
    for key, price in prices.items():
        needle = key.strip().lower()
        if needle and (needle in grade or grade in needle):
            return price
    return None


def apply_prices(materials: List[MaterialItem], prices: Dict[str, float]) -> Tuple[List[MaterialItem], int]:
    """Return re-priced lines and how many changed. Unmatched lines keep their price."""
    updated: List[MaterialItem] = []
    changed = 0
    for item in materials:
        price = match_price(item.material, prices)
        if price is None:
            updated.append(item)
            continue
        updated.append(item.model_copy(update={"unit_price": price}))
        changed += 1
    return updated, changed


class MarketPriceService:
    """Fills BOM unit prices from the extraction service's market lookup."""

    def __init__(self, analyzer):
        self.analyzer = analyzer

    async def get_market_rates(self, materials: Iterable[MaterialItem]) -> Dict[str, float]:
        """Best-effort lookup; any failure yields an empty mapping."""
        names = priceable_materials(materials)
        if not names:
            return {}
        try:
            return await self.analyzer.lookup_prices(names) or {}
        except Exception as e:
            tracker.record_error("pricing")
            logger.warning(f"Market price lookup failed: {e}")
            return {}

    async def price_equipment(self, ledger, equipment_id: str) -> int:
        """Look up prices for one equipment's BOM and apply them; returns lines changed."""
        rates = await self.get_market_rates(ledger.get(equipment_id).materials)
        if not rates:
            return 0
        changed = await ledger.apply_prices(equipment_id, rates)
        logger.info(f"Market prices applied to {equipment_id}: {changed} lines updated from {len(rates)} quotes")
        return changed
