"""Project API — equipment directory, BOM editing, cost rollups, persistence and exports."""
import logging
import os
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse, Response

from app.api.deps import autosave, get_ledger, get_market_service, get_store
from app.models.schemas import CamelModel
from app.services.ledger import EquipmentNotFound, MaterialNotFound, ProjectLedger
from app.services.market_api import MarketPriceService
from app.services.project_store import ProjectStore, StorageQuotaExceeded
from app.services.report_engine import (
    CSV_MEDIA_TYPE,
    XLSX_MEDIA_TYPE,
    ReportEngine,
    export_csv,
    export_filename,
    export_json,
)

logger = logging.getLogger("vesselcost-project")

router = APIRouter(prefix="/api/project", tags=["Project"])


class PricingUpdate(CamelModel):
    labor_cost_per_kg: Optional[Any] = None
    overhead_percent: Optional[Any] = None


class EquipmentUpdate(CamelModel):
    tag: Optional[str] = None
    name: Optional[str] = None
    specification: Optional[str] = None
    main_material: Optional[str] = None
    page_range: Optional[str] = None
    design_weight: Optional[Any] = None


class MaterialUpdate(CamelModel):
    # Numbers arrive as typed in the grid; the BOM engine coerces them.
    name: Optional[str] = None
    material: Optional[str] = None
    specification: Optional[str] = None
    category: Optional[str] = None
    weight: Optional[Any] = None
    quantity: Optional[Any] = None
    unit_price: Optional[Any] = None


def _equipment_view(ledger: ProjectLedger, equipment) -> dict:
    report = ledger.costing().equipment_report(equipment)
    return {
        **equipment.model_dump(mode="json", by_alias=True),
        "rollup": report["rollup"],
        "needsWeightReview": report["needsWeightReview"],
    }


def _lookup(ledger: ProjectLedger, equipment_id: str):
    try:
        return ledger.get(equipment_id)
    except EquipmentNotFound:
        raise HTTPException(status_code=404, detail="Equipment not found")


# ─── Project ─────────────────────────────────────────────────────────────────

@router.get("")
async def get_project(ledger: ProjectLedger = Depends(get_ledger)):
    pricing = ledger.pricing
    equipments = ledger.equipments
    return {
        "id": ledger.id,
        "name": ledger.name,
        "laborCostPerKg": pricing.labor_cost_per_kg,
        "overheadPercent": pricing.overhead_percent,
        "lastSaved": ledger.last_saved,
        "summary": ledger.costing().directory_summary(equipments),
        "equipments": [_equipment_view(ledger, eq) for eq in equipments],
    }


@router.get("/summary")
async def directory_summary(ledger: ProjectLedger = Depends(get_ledger)):
    return ledger.costing().directory_summary(ledger.equipments)


@router.put("/pricing")
async def update_pricing(body: PricingUpdate, ledger: ProjectLedger = Depends(get_ledger)):
    pricing = await ledger.set_pricing(body.labor_cost_per_kg, body.overhead_percent)
    return {
        **pricing.model_dump(by_alias=True),
        "grandTotal": ledger.costing().project_total(ledger.equipments),
    }


# ─── Equipment ───────────────────────────────────────────────────────────────

@router.get("/equipments/{equipment_id}")
async def get_equipment(equipment_id: str, ledger: ProjectLedger = Depends(get_ledger)):
    equipment = _lookup(ledger, equipment_id)
    return {
        "equipment": equipment.model_dump(mode="json", by_alias=True),
        "report": ledger.costing().equipment_report(equipment),
    }


@router.patch("/equipments/{equipment_id}")
async def update_equipment(
    equipment_id: str,
    body: EquipmentUpdate,
    ledger: ProjectLedger = Depends(get_ledger),
):
    try:
        equipment = await ledger.update_metadata(equipment_id, body.model_dump(exclude_unset=True))
    except EquipmentNotFound:
        raise HTTPException(status_code=404, detail="Equipment not found")
    return _equipment_view(ledger, equipment)


@router.delete("/equipments/{equipment_id}")
async def delete_equipment(equipment_id: str, ledger: ProjectLedger = Depends(get_ledger)):
    try:
        await ledger.delete_equipment(equipment_id)
    except EquipmentNotFound:
        raise HTTPException(status_code=404, detail="Equipment not found")
    return {"status": "deleted", "id": equipment_id}


@router.get("/equipments/{equipment_id}/report")
async def equipment_report(equipment_id: str, ledger: ProjectLedger = Depends(get_ledger)):
    return ledger.costing().equipment_report(_lookup(ledger, equipment_id))


# ─── BOM lines ───────────────────────────────────────────────────────────────

@router.post("/equipments/{equipment_id}/materials")
async def add_material(
    equipment_id: str,
    ledger: ProjectLedger = Depends(get_ledger),
    store: ProjectStore = Depends(get_store),
):
    try:
        item = await ledger.add_material(equipment_id)
    except EquipmentNotFound:
        raise HTTPException(status_code=404, detail="Equipment not found")
    warning = await autosave(store, ledger)
    return {"material": item.model_dump(by_alias=True), "storageWarning": warning}


@router.patch("/equipments/{equipment_id}/materials/{material_id}")
async def edit_material(
    equipment_id: str,
    material_id: str,
    body: MaterialUpdate,
    ledger: ProjectLedger = Depends(get_ledger),
    store: ProjectStore = Depends(get_store),
):
    try:
        item = await ledger.edit_material(equipment_id, material_id, body.model_dump(exclude_unset=True))
    except EquipmentNotFound:
        raise HTTPException(status_code=404, detail="Equipment not found")
    except MaterialNotFound:
        raise HTTPException(status_code=404, detail="Material line not found")
    warning = await autosave(store, ledger)
    return {"material": item.model_dump(by_alias=True), "storageWarning": warning}


@router.delete("/equipments/{equipment_id}/materials/{material_id}")
async def remove_material(
    equipment_id: str,
    material_id: str,
    ledger: ProjectLedger = Depends(get_ledger),
    store: ProjectStore = Depends(get_store),
):
    try:
        await ledger.remove_material(equipment_id, material_id)
    except EquipmentNotFound:
        raise HTTPException(status_code=404, detail="Equipment not found")
    except MaterialNotFound:
        raise HTTPException(status_code=404, detail="Material line not found")
    warning = await autosave(store, ledger)
    return {"status": "removed", "id": material_id, "storageWarning": warning}


@router.post("/equipments/{equipment_id}/prices")
async def fetch_market_prices(
    equipment_id: str,
    ledger: ProjectLedger = Depends(get_ledger),
    market: MarketPriceService = Depends(get_market_service),
    store: ProjectStore = Depends(get_store),
):
    """Fill unit prices from a best-effort market lookup; unmatched lines keep theirs."""
    _lookup(ledger, equipment_id)
    try:
        updated = await market.price_equipment(ledger, equipment_id)
    except EquipmentNotFound:
        raise HTTPException(status_code=404, detail="Equipment not found")
    warning = await autosave(store, ledger) if updated else None
    return {
        "updated": updated,
        "equipment": _equipment_view(ledger, ledger.get(equipment_id)),
        "storageWarning": warning,
    }


# ─── Persistence ─────────────────────────────────────────────────────────────

@router.post("/save")
async def save_project(
    ledger: ProjectLedger = Depends(get_ledger),
    store: ProjectStore = Depends(get_store),
):
    try:
        last_saved = await store.save(ledger)
    except StorageQuotaExceeded as e:
        raise HTTPException(status_code=507, detail=str(e))
    return {"status": "saved", "id": ledger.id, "lastSaved": last_saved}


@router.post("/load")
async def load_project(
    project_id: Optional[str] = None,
    ledger: ProjectLedger = Depends(get_ledger),
    store: ProjectStore = Depends(get_store),
):
    """Replace the in-memory project with the saved one. Drawing references come back empty."""
    loaded = await store.load(project_id or ledger.id)
    if loaded is None:
        raise HTTPException(status_code=404, detail="No saved project")
    await ledger.adopt(loaded)
    return {"status": "loaded", "id": ledger.id, "equipmentCount": len(ledger.equipments), "lastSaved": ledger.last_saved}


# ─── Exports ─────────────────────────────────────────────────────────────────

@router.get("/export/json")
async def export_project_json(ledger: ProjectLedger = Depends(get_ledger)):
    filename = export_filename("VesselCostAI_Project", "json")
    return Response(
        content=export_json(ledger),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/export/csv")
async def export_directory_csv(ledger: ProjectLedger = Depends(get_ledger)):
    filename = export_filename("Equipment_List", "csv")
    return Response(
        content=export_csv(ledger),
        media_type=CSV_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/export/xlsx")
async def export_bom_workbook(ledger: ProjectLedger = Depends(get_ledger)):
    path = ReportEngine().generate_bom_workbook(ledger)
    if not path or not os.path.exists(path):
        raise HTTPException(status_code=500, detail="BOM workbook generation failed")
    return FileResponse(path, media_type=XLSX_MEDIA_TYPE, filename=os.path.basename(path))
