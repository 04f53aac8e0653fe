"""
Import Pipeline — the drawing import wizard.

    upload → scan → verify → extract

upload   documents are added / removed
scan     one structure-scan call per document, strictly sequential
verify   the user reviews the identified equipment and drops false positives
extract  one detail call per identified equipment, then consolidation

A failing call never aborts the batch: a scan failure skips that document, a
detail failure marks that record ``error`` and the loop moves on.
``analyze_all`` runs scan + detail for every document without the verify stop.
"""
import asyncio
import logging
import time
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from app.models.schemas import Equipment, EquipmentStatus
from app.services.bom_engine import BOMEngine
from app.services.consolidation_engine import ConsolidationEngine, RawExtraction
from app.services.extraction_service import DrawingAnalyzer, DrawingDocument
from app.services.perf_monitor import tracker

logger = logging.getLogger("vesselcost-import")

STEP_UPLOAD = "upload"
STEP_SCAN = "scan"
STEP_VERIFY = "verify"
STEP_EXTRACT = "extract"


class InvalidWizardStep(RuntimeError):
    """Operation not allowed in the session's current step."""


class DocumentNotFound(KeyError):
    pass


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class ImportSession:

    def __init__(self) -> None:
        self.documents: "OrderedDict[str, DrawingDocument]" = OrderedDict()
        self.identified: List[Equipment] = []
        self.step = STEP_UPLOAD
        self.progress = ""
        self.failed_documents: List[str] = []
        self.lock = asyncio.Lock()
        self._bom = BOMEngine()
        self._consolidation = ConsolidationEngine()

    def _require(self, *steps: str) -> None:
        if self.step not in steps:
            raise InvalidWizardStep(
                f"Not allowed in step '{self.step}' (expected {' / '.join(steps)})"
            )

    # ── upload ────────────────────────────────────────────────────────────

    def add_document(self, name: str, mime_type: str, data: bytes) -> DrawingDocument:
        self._require(STEP_UPLOAD)
        document = DrawingDocument(name=name, mime_type=mime_type or "", data=data)
        self.documents[document.id] = document
        logger.info(f"Document added: {name} ({document.size} bytes)")
        return document

    def remove_document(self, file_id: str) -> None:
        self._require(STEP_UPLOAD)
        if file_id not in self.documents:
            raise DocumentNotFound(file_id)
        del self.documents[file_id]

    def reset(self) -> None:
        """Drop documents and staged records, back to an empty upload step."""
        self.documents.clear()
        self.identified = []
        self.failed_documents = []
        self.step = STEP_UPLOAD
        self.progress = ""

    # ── scan / verify ─────────────────────────────────────────────────────

    async def _scan_document(self, analyzer: DrawingAnalyzer, document: DrawingDocument) -> Optional[List[Dict[str, Any]]]:
        self.progress = f"正在扫描文件: {document.name}..."
        start = time.perf_counter()
        try:
            entries = await analyzer.scan_structure(document)
        except Exception as e:
            tracker.record_error("scan")
            self.failed_documents.append(document.name)
            logger.warning(f"Structure scan failed for {document.name}, skipping: {e}")
            return None
        if entries is not None and not isinstance(entries, list):
            tracker.record_error("scan")
            self.failed_documents.append(document.name)
            logger.warning(f"Structure scan for {document.name} returned {type(entries).__name__}, skipping")
            return None
        tracker.record_call(f"scan:{document.name}", _elapsed_ms(start))
        return [entry for entry in entries or [] if isinstance(entry, dict)]

    async def scan(self, analyzer: DrawingAnalyzer) -> List[Equipment]:
        async with self.lock:
            self._require(STEP_UPLOAD)
            self.step = STEP_SCAN
            self.failed_documents = []
            batch_start = time.perf_counter()
            identified: List[Equipment] = []
            for document in list(self.documents.values()):
                entries = await self._scan_document(analyzer, document)
                if entries is None:
                    continue
                for entry in entries:
                    identified.append(self._bom.identified_equipment(entry, document.id))

            self.identified = identified
            self.step = STEP_VERIFY
            self.progress = f"识别到 {len(identified)} 台设备"
            tracker.record_batch_complete(_elapsed_ms(batch_start))
            logger.info(
                f"Structure scan: {len(self.documents)} documents, {len(identified)} equipment identified, "
                f"{len(self.failed_documents)} failed"
            )
            return list(identified)

    def discard_identified(self, equipment_id: str) -> None:
        self._require(STEP_VERIFY)
        remaining = [eq for eq in self.identified if eq.id != equipment_id]
        if len(remaining) == len(self.identified):
            raise KeyError(equipment_id)
        self.identified = remaining

    def back_to_upload(self) -> None:
        self._require(STEP_VERIFY)
        self.identified = []
        self.step = STEP_UPLOAD
        self.progress = ""

    # ── extract ───────────────────────────────────────────────────────────

    async def _extract_one(self, analyzer: DrawingAnalyzer, equipment: Equipment) -> RawExtraction:
        """Detail extraction for one staged record; failures end as status ``error``."""
        document = self.documents.get(equipment.source_file_id or "")
        equipment.transition(EquipmentStatus.EXTRACTING)
        if document is None:
            equipment.transition(EquipmentStatus.ERROR)
            logger.warning(f"Source document {equipment.source_file_id} missing for {equipment.tag}")
            return RawExtraction.from_equipment(equipment, error="source document missing")

        start = time.perf_counter()
        try:
            details = await analyzer.extract_details(document, equipment.tag, equipment.page_range or "")
            self._bom.apply_details(equipment, details)
        except Exception as e:
            tracker.record_error("detail")
            equipment.materials = []
            equipment.transition(EquipmentStatus.ERROR)
            logger.warning(f"Detail extraction failed for {equipment.tag} in {document.name}: {e}")
            return RawExtraction.from_equipment(equipment, error=str(e) or type(e).__name__)

        tracker.record_call(f"detail:{equipment.tag}", _elapsed_ms(start))
        equipment.transition(EquipmentStatus.COMPLETE)
        return RawExtraction.from_equipment(equipment)

    async def extract(self, analyzer: DrawingAnalyzer) -> List[Equipment]:
        """Run detail extraction over the verified list and return consolidated records."""
        async with self.lock:
            self._require(STEP_VERIFY)
            self.step = STEP_EXTRACT
            batch_start = time.perf_counter()
            total = len(self.identified)
            results: List[RawExtraction] = []
            for idx, equipment in enumerate(self.identified):
                self.progress = f"({idx + 1}/{total}) 正在解析: {equipment.tag} ({equipment.page_range})..."
                results.append(await self._extract_one(analyzer, equipment))

            records = self._consolidation.consolidate(results)
            self.progress = "解析完成"
            tracker.record_batch_complete(_elapsed_ms(batch_start))
            logger.info(f"Detail extraction: {total} staged, {len(records)} consolidated records")
            return records

    async def analyze_all(self, analyzer: DrawingAnalyzer) -> List[Equipment]:
        """One-shot import: scan and extract every document, no verify step."""
        async with self.lock:
            self._require(STEP_UPLOAD)
            self.step = STEP_EXTRACT
            self.failed_documents = []
            batch_start = time.perf_counter()
            staged: List[Equipment] = []
            results: List[RawExtraction] = []
            for document in list(self.documents.values()):
                entries = await self._scan_document(analyzer, document)
                if entries is None:
                    continue
                for entry in entries:
                    equipment = self._bom.identified_equipment(entry, document.id)
                    staged.append(equipment)
                    self.progress = f"正在解析: {equipment.tag} ({document.name})..."
                    results.append(await self._extract_one(analyzer, equipment))

            self.identified = staged
            records = self._consolidation.consolidate(results)
            self.progress = "解析完成"
            tracker.record_batch_complete(_elapsed_ms(batch_start))
            logger.info(f"One-shot analysis: {len(self.documents)} documents, {len(records)} records")
            return records

    # ── views ─────────────────────────────────────────────────────────────

    def summary(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "progress": self.progress,
            "documents": [
                {"id": doc.id, "name": doc.name, "mimeType": doc.mime_type, "size": doc.size}
                for doc in self.documents.values()
            ],
            "identified": [eq.model_dump(mode="json", by_alias=True) for eq in self.identified],
            "failedDocuments": list(self.failed_documents),
        }
