"""Ingestion API — drawing upload, structure scan, verification and detail extraction."""
import logging
from typing import List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from app.api.deps import autosave, get_analyzer, get_import_session, get_ledger, get_store
from app.services.extraction_service import DrawingAnalyzer
from app.services.import_pipeline import DocumentNotFound, ImportSession, InvalidWizardStep
from app.services.ledger import ProjectLedger
from app.services.project_store import ProjectStore

logger = logging.getLogger("vesselcost-ingestion")

router = APIRouter(prefix="/api/ingestion", tags=["Drawing Import"])


def _conflict(e: InvalidWizardStep) -> HTTPException:
    return HTTPException(status_code=409, detail=str(e))


async def _complete_import(
    records, merge: bool, ledger: ProjectLedger, store: ProjectStore
) -> dict:
    equipments = await ledger.absorb(records, merge=merge)
    warning = await autosave(store, ledger)
    return {
        "imported": len(records),
        "equipmentCount": len(equipments),
        "equipments": [eq.model_dump(mode="json", by_alias=True) for eq in records],
        "storageWarning": warning,
    }


@router.get("/session")
async def get_session(session: ImportSession = Depends(get_import_session)):
    return session.summary()


@router.post("/documents")
async def upload_documents(
    files: List[UploadFile] = File(...),
    session: ImportSession = Depends(get_import_session),
):
    """Add drawings (PDF or images) to the import session."""
    added = []
    for upload in files:
        data = await upload.read()
        if not data:
            raise HTTPException(status_code=400, detail=f"Empty file: {upload.filename}")
        try:
            document = session.add_document(upload.filename or "drawing", upload.content_type or "", data)
        except InvalidWizardStep as e:
            raise _conflict(e)
        added.append({"id": document.id, "name": document.name, "mimeType": document.mime_type, "size": document.size})
    return {"documents": added}


@router.delete("/documents/{file_id}")
async def remove_document(file_id: str, session: ImportSession = Depends(get_import_session)):
    try:
        session.remove_document(file_id)
    except InvalidWizardStep as e:
        raise _conflict(e)
    except DocumentNotFound:
        raise HTTPException(status_code=404, detail="Document not found")
    return {"status": "removed", "id": file_id}


@router.post("/scan")
async def scan_structure(
    session: ImportSession = Depends(get_import_session),
    analyzer: DrawingAnalyzer = Depends(get_analyzer),
):
    """Step 1: identify equipment and page ranges in every uploaded drawing."""
    if not session.documents:
        raise HTTPException(status_code=400, detail="No documents uploaded")
    try:
        await session.scan(analyzer)
    except InvalidWizardStep as e:
        raise _conflict(e)
    return session.summary()


@router.delete("/identified/{equipment_id}")
async def discard_identified(equipment_id: str, session: ImportSession = Depends(get_import_session)):
    try:
        session.discard_identified(equipment_id)
    except InvalidWizardStep as e:
        raise _conflict(e)
    except KeyError:
        raise HTTPException(status_code=404, detail="Identified equipment not found")
    return session.summary()


@router.post("/back")
async def back_to_upload(session: ImportSession = Depends(get_import_session)):
    try:
        session.back_to_upload()
    except InvalidWizardStep as e:
        raise _conflict(e)
    return session.summary()


@router.post("/extract")
async def extract_details(
    merge: bool = False,
    session: ImportSession = Depends(get_import_session),
    analyzer: DrawingAnalyzer = Depends(get_analyzer),
    ledger: ProjectLedger = Depends(get_ledger),
    store: ProjectStore = Depends(get_store),
):
    """
    Step 2: extract BOM details for every verified equipment, consolidate by tag
    and hand the result to the project ledger (replace, or ``merge=true``).
    """
    try:
        records = await session.extract(analyzer)
    except InvalidWizardStep as e:
        raise _conflict(e)
    return await _complete_import(records, merge, ledger, store)


@router.post("/analyze")
async def analyze_all(
    merge: bool = False,
    session: ImportSession = Depends(get_import_session),
    analyzer: DrawingAnalyzer = Depends(get_analyzer),
    ledger: ProjectLedger = Depends(get_ledger),
    store: ProjectStore = Depends(get_store),
):
    """One-shot import: scan and extract every uploaded drawing without review."""
    if not session.documents:
        raise HTTPException(status_code=400, detail="No documents uploaded")
    try:
        records = await session.analyze_all(analyzer)
    except InvalidWizardStep as e:
        raise _conflict(e)
    return await _complete_import(records, merge, ledger, store)


@router.post("/reset")
async def reset_session(session: ImportSession = Depends(get_import_session)):
    session.reset()
    return session.summary()
