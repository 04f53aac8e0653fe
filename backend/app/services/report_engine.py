"""
Report Engine — project exports.

Outputs:
  - Equipment directory CSV (UTF-8 with BOM so spreadsheet tools pick the encoding)
  - Full project JSON (pretty-printed, carries ``schemaVersion``)
  - BOM Excel workbook (Summary / BOM sheets)

Totals are computed at export time from the current pricing parameters.
"""
import json
import os
import logging
from datetime import datetime
from typing import Any, List, Optional

import pandas as pd

from app.config import CATEGORY_LABELS, CSV_HEADER, EXPORT_DIR
from app.services.costing_engine import bom_weight, needs_weight_review
from app.services.ledger import ProjectLedger

logger = logging.getLogger("vesselcost-report")

CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def export_filename(prefix: str, extension: str) -> str:
    return f"{prefix}_{datetime.now().strftime('%Y-%m-%d')}.{extension}"


def directory_rows(ledger: ProjectLedger) -> List[List[Any]]:
    """One row per equipment in CSV column order, weights and cost rounded to 2 dp."""
    costing = ledger.costing()
    rows = []
    for eq in ledger.equipments:
        rows.append([
            eq.tag,
            eq.name,
            eq.specification or "",
            eq.main_material or "",
            f"{(eq.design_weight or 0.0):.2f}",
            f"{bom_weight(eq):.2f}",
            f"{costing.grand_total(eq):.2f}",
        ])
    return rows


def export_csv(ledger: ProjectLedger) -> bytes:
    """Equipment directory as CSV bytes; an empty project yields the header only."""
    df = pd.DataFrame(directory_rows(ledger), columns=list(CSV_HEADER))
    text = df.to_csv(index=False, lineterminator="\n")
    return ("\ufeff" + text).encode("utf-8")


def export_json(ledger: ProjectLedger) -> bytes:
    return json.dumps(ledger.export_json(), ensure_ascii=False, indent=2).encode("utf-8")


class ReportEngine:
    """Writes the BOM workbook to EXPORT_DIR and returns its path."""

    def __init__(self, output_dir: Optional[str] = None):
        self.output_dir = output_dir or EXPORT_DIR

    def generate_bom_workbook(self, ledger: ProjectLedger) -> Optional[str]:
        try:
            import xlsxwriter

            os.makedirs(self.output_dir, exist_ok=True)
            path = os.path.join(self.output_dir, export_filename(f"BOM_{ledger.id}", "xlsx"))
            wb = xlsxwriter.Workbook(path)

            hdr = wb.add_format({"bold": True, "bg_color": "#1E293B", "font_color": "#FFFFFF",
                                 "border": 1, "font_size": 10})
            money = wb.add_format({"num_format": "#,##0.00", "border": 1})
            weight_fmt = wb.add_format({"num_format": "#,##0.00", "border": 1})
            normal = wb.add_format({"border": 1, "font_size": 9})
            flagged = wb.add_format({"border": 1, "font_size": 9, "font_color": "#B91C1C"})
            title_fmt = wb.add_format({"bold": True, "font_size": 14, "font_color": "#1E293B"})
            total_fmt = wb.add_format({"bold": True, "bg_color": "#1D4ED8", "font_color": "#FFFFFF",
                                       "border": 1, "num_format": "#,##0.00"})

            costing = ledger.costing()
            pricing = ledger.pricing

            # ── Sheet 1: Summary ─────────────────────────────────────────────
            ws = wb.add_worksheet("Summary")
            ws.set_column("A:A", 16)
            ws.set_column("B:B", 24)
            ws.set_column("C:D", 18)
            ws.set_column("E:G", 16)
            ws.write("A1", ledger.name, title_fmt)
            ws.write("A2", f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M')}", normal)
            ws.write("A3", f"人工费率: {pricing.labor_cost_per_kg:.2f} ¥/kg   管理费: {pricing.overhead_percent:.1f}%", normal)
            ws.write_row(4, 0, list(CSV_HEADER), hdr)
            row = 5
            for eq in ledger.equipments:
                fmt = flagged if needs_weight_review(eq) else normal
                ws.write(row, 0, eq.tag, fmt)
                ws.write(row, 1, eq.name, fmt)
                ws.write(row, 2, eq.specification or "", fmt)
                ws.write(row, 3, eq.main_material or "", fmt)
                ws.write(row, 4, eq.design_weight or 0.0, weight_fmt)
                ws.write(row, 5, bom_weight(eq), weight_fmt)
                ws.write(row, 6, costing.grand_total(eq), money)
                row += 1
            ws.write(row + 1, 0, "项目总造价", total_fmt)
            ws.write(row + 1, 6, costing.project_total(ledger.equipments), total_fmt)

            # ── Sheet 2: BOM ─────────────────────────────────────────────────
            ws2 = wb.add_worksheet("BOM")
            ws2.set_column("A:A", 14)
            ws2.set_column("B:B", 28)
            ws2.set_column("C:D", 18)
            ws2.set_column("E:E", 10)
            ws2.set_column("F:I", 14)
            ws2.write_row(0, 0, [
                "位号", "组件名称", "材质", "规格", "分类",
                "单重(kg)", "数量", "单价(¥/kg)", "合价(¥)",
            ], hdr)
            line = 1
            for eq in ledger.equipments:
                for item in eq.materials:
                    ws2.write(line, 0, eq.tag, normal)
                    ws2.write(line, 1, item.name, normal)
                    ws2.write(line, 2, item.material, normal)
                    ws2.write(line, 3, item.specification, normal)
                    ws2.write(line, 4, CATEGORY_LABELS.get(item.category, item.category), normal)
                    ws2.write(line, 5, item.weight, weight_fmt)
                    ws2.write(line, 6, item.quantity, normal)
                    ws2.write(line, 7, item.unit_price, money)
                    ws2.write(line, 8, item.total_price, money)
                    line += 1

            wb.close()
            logger.info(f"BOM workbook generated: {path}")
            return path

        except Exception as e:
            logger.error(f"BOM workbook generation failed: {e}")
            return None
