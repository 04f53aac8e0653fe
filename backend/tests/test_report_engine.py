"""
test_report_engine.py — CSV / JSON / workbook exports.
"""

import asyncio
import io
import json
import os

import pandas as pd
import pytest

from app.config import CSV_HEADER
from app.services.report_engine import ReportEngine, directory_rows, export_csv, export_filename, export_json


@pytest.fixture
def loaded(ledger, scenario_equipment):
    scenario_equipment.specification = "DN1200"
    asyncio.run(ledger.absorb([scenario_equipment]))
    return ledger


class TestCsv:

    def test_empty_project_is_header_only(self, ledger):
        data = export_csv(ledger)
        assert data.startswith(b"\xef\xbb\xbf")
        text = data.decode("utf-8-sig")
        assert text.splitlines() == [",".join(CSV_HEADER)]

    def test_rows_in_column_order_with_two_decimals(self, loaded):
        text = export_csv(loaded).decode("utf-8-sig")
        header, row = text.splitlines()
        assert header.split(",")[0] == "位号"
        assert row.split(",") == ["V-2404", "缓冲罐", "DN1200", "", "0.00", "23.00", "580.75"]

    def test_multiple_records_round_trip(self, loaded, make_equipment, make_material):
        exchanger = make_equipment(
            tag="E-7", name='换热器, "B"型', design_weight=100, main_material="S30408",
            materials=[make_material(weight=50, quantity=2, unit_price=10)],
        )
        tank = make_equipment(tag="Unknown", name="储罐")
        asyncio.run(loaded.absorb([exchanger, tank], merge=True))

        df = pd.read_csv(
            io.BytesIO(export_csv(loaded)), encoding="utf-8-sig", dtype=str, keep_default_na=False,
        )
        assert list(df.columns) == list(CSV_HEADER)
        assert len(df) == 3
        assert df.values.tolist() == [
            ["V-2404", "缓冲罐", "DN1200", "", "0.00", "23.00", "580.75"],
            ["E-7", '换热器, "B"型', "", "S30408", "100.00", "100.00", "2875.00"],
            ["Unknown", "储罐", "", "", "0.00", "0.00", "0.00"],
        ]

    def test_totals_follow_current_pricing(self, loaded):
        asyncio.run(loaded.set_pricing(2, 10))
        assert directory_rows(loaded)[0][-1] == "226.60"

    def test_filename_carries_date(self):
        name = export_filename("Vessel_Directory", "csv")
        assert name.startswith("Vessel_Directory_")
        assert name.endswith(".csv")


class TestJson:

    def test_pretty_printed_with_schema_version(self, loaded):
        raw = export_json(loaded).decode("utf-8")
        assert "\n  " in raw
        assert "缓冲罐" in raw
        payload = json.loads(raw)
        assert payload["schemaVersion"] == 1
        assert len(payload["equipments"]) == 1


class TestWorkbook:

    def test_workbook_written_to_output_dir(self, loaded, tmp_path):
        path = ReportEngine(output_dir=str(tmp_path)).generate_bom_workbook(loaded)
        assert path is not None
        assert os.path.dirname(path) == str(tmp_path)
        assert os.path.getsize(path) > 0

    def test_empty_project_workbook(self, ledger, tmp_path):
        assert ReportEngine(output_dir=str(tmp_path)).generate_bom_workbook(ledger) is not None
