"""
Consolidation Engine — merges per-file extraction results into one canonical
record per equipment tag.

Multi-sheet drawings and repeated uploads make the same vessel show up several
times. Records are merged by tag (exact, case-sensitive). Unreadable tags are
never treated as a shared identity: their key is synthesized from the source
file and the occurrence index inside that file, so two unlabeled vessels from
different drawings stay apart.

Merge rules for an existing key:
  - materials: appended, no line-level dedup (the user reviews and trims)
  - drawings:  set union
  - name / specification / mainMaterial / designWeight: fill-if-empty,
    the first good value wins
  - pageRange / sourceFileId: provenance, never merged

Known limitation: re-scanning the same unlabeled vessel in a later run yields
a new record, since no content-based identity exists.
"""
import logging
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from app.config import UNNAMED_EQUIPMENT, UNRESOLVED_TAG
from app.models.schemas import Equipment, EquipmentStatus, MaterialItem
from app.services.bom_engine import is_placeholder_tag

logger = logging.getLogger("vesselcost-consolidation")

UNRESOLVED_KEY_PREFIX = "__unresolved__"


@dataclass
class RawExtraction:
    """One equipment as produced by scan + detail extraction for one file."""
    source_file_id: str
    tag: Optional[str]
    name: Optional[str] = None
    page_range: Optional[str] = None
    specification: Optional[str] = None
    main_material: Optional[str] = None
    design_weight: float = 0.0
    materials: List[MaterialItem] = field(default_factory=list)
    source_ref: Optional[str] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def reference(self) -> str:
        return self.source_ref or self.source_file_id

    @classmethod
    def from_equipment(cls, equipment: Equipment, error: Optional[str] = None) -> "RawExtraction":
        """Wrap a staged record whose detail extraction has finished (or failed)."""
        return cls(
            source_file_id=equipment.source_file_id or "",
            tag=equipment.tag,
            name=equipment.name,
            page_range=equipment.page_range,
            specification=equipment.specification,
            main_material=equipment.main_material,
            design_weight=equipment.design_weight or 0.0,
            materials=list(equipment.materials),
            source_ref=equipment.drawings[0] if equipment.drawings else None,
            error=error,
        )


def _empty_name(name: Optional[str]) -> bool:
    return not name or name == UNNAMED_EQUIPMENT


class ConsolidationEngine:

    def merge_key(self, raw: RawExtraction, occurrence: int) -> str:
        if is_placeholder_tag(raw.tag):
            return f"{UNRESOLVED_KEY_PREFIX}{raw.source_file_id}#{occurrence}"
        return raw.tag

    def consolidate(
        self,
        results: Iterable[RawExtraction],
        existing: Optional[Iterable[Equipment]] = None,
    ) -> List[Equipment]:
        """
        Fold ``results`` (in order) into canonical records.

        ``existing`` records, if given, are seeded first so new extractions merge
        into them by tag; unresolved existing records keep a key of their own.
        Output order is the first occurrence of each key.
        """
        ledger = self._keyed(existing or ())
        occurrences: Dict[str, int] = defaultdict(int)
        for raw in results:
            occurrence = occurrences[raw.source_file_id]
            occurrences[raw.source_file_id] += 1
            key = self.merge_key(raw, occurrence)
            if key in ledger:
                self.merge_into(ledger[key], raw)
            else:
                ledger[key] = self.seed(raw)

        logger.info(f"Consolidated into {len(ledger)} equipment records")
        return list(ledger.values())

    def merge_records(self, existing: Iterable[Equipment], incoming: Iterable[Equipment]) -> List[Equipment]:
        """
        Fold already-consolidated records (e.g. a new import run) into an
        existing ledger by tag, with the same merge rules.
        """
        ledger = self._keyed(existing)
        for record in incoming:
            key = self._record_key(record)
            if key not in ledger:
                ledger[key] = record
                continue
            target = ledger[key]
            failed = "extraction failed" if record.status == EquipmentStatus.ERROR else None
            self.merge_into(target, RawExtraction.from_equipment(record, error=failed))
            for reference in record.drawings:
                target.add_drawing(reference)
        return list(ledger.values())

    def _record_key(self, record: Equipment) -> str:
        if is_placeholder_tag(record.tag):
            return f"{UNRESOLVED_KEY_PREFIX}{record.id}"
        return record.tag

    def _keyed(self, records: Iterable[Equipment]) -> "OrderedDict[str, Equipment]":
        ledger: "OrderedDict[str, Equipment]" = OrderedDict()
        for record in records:
            key = self._record_key(record)
            if key in ledger:
                # Two ledger records already share a tag: keep both, second under its id.
                key = f"{UNRESOLVED_KEY_PREFIX}{record.id}"
            ledger[key] = record
        return ledger

    def seed(self, raw: RawExtraction) -> Equipment:
        tag = UNRESOLVED_TAG if is_placeholder_tag(raw.tag) else raw.tag
        return Equipment(
            tag=tag,
            name=raw.name or UNNAMED_EQUIPMENT,
            specification=raw.specification or None,
            main_material=raw.main_material or None,
            design_weight=raw.design_weight or 0.0,
            page_range=raw.page_range,
            source_file_id=raw.source_file_id,
            materials=[] if raw.failed else list(raw.materials),
            drawings=[raw.reference],
            status=EquipmentStatus.ERROR if raw.failed else EquipmentStatus.COMPLETE,
        )

    def merge_into(self, record: Equipment, raw: RawExtraction) -> None:
        if not raw.failed:
            record.materials.extend(raw.materials)
            # One successful extraction is enough for the record to be usable.
            record.status = EquipmentStatus.COMPLETE
        record.add_drawing(raw.reference)

        if _empty_name(record.name) and not _empty_name(raw.name):
            record.name = raw.name
        if not record.specification and raw.specification:
            record.specification = raw.specification
        if not record.main_material and raw.main_material:
            record.main_material = raw.main_material
        if not record.design_weight and raw.design_weight:
            record.design_weight = raw.design_weight
        record.touch()
