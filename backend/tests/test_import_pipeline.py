"""
test_import_pipeline.py — The drawing import wizard against a fake extraction service.

Tests cover:
  - Step guards (upload → scan → verify → extract)
  - Sequential scan with per-document failure isolation
  - Verify-step discards and going back to upload
  - Detail extraction: status lifecycle, per-equipment failure isolation
  - Consolidation of the same tag across documents; unresolved tags kept apart
  - One-shot analysis
"""

import asyncio

import pytest

from app.models.schemas import EquipmentStatus
from app.services.import_pipeline import DocumentNotFound, ImportSession, InvalidWizardStep
from app.services.perf_monitor import tracker


@pytest.fixture
def session():
    s = ImportSession()
    s.add_document("a.pdf", "application/pdf", b"%PDF-a")
    s.add_document("b.pdf", "application/pdf", b"%PDF-b")
    return s


@pytest.fixture(autouse=True)
def _reset_tracker():
    tracker.reset()
    yield
    tracker.reset()


class TestUploadStep:

    def test_add_and_remove_documents(self):
        s = ImportSession()
        doc = s.add_document("x.png", "image/png", b"\x89PNG")
        assert doc.size == 4
        s.remove_document(doc.id)
        assert s.documents == {}

    def test_remove_unknown_document(self):
        with pytest.raises(DocumentNotFound):
            ImportSession().remove_document("file-nope")

    def test_extract_requires_verify_step(self, session, analyzer):
        with pytest.raises(InvalidWizardStep):
            asyncio.run(session.extract(analyzer))

    def test_documents_locked_after_scan(self, session, analyzer):
        asyncio.run(session.scan(analyzer))
        with pytest.raises(InvalidWizardStep):
            session.add_document("c.pdf", "application/pdf", b"c")


class TestScan:

    def test_scan_identifies_every_entry(self, session, analyzer):
        identified = asyncio.run(session.scan(analyzer))
        assert session.step == "verify"
        assert [eq.tag for eq in identified] == ["V-101", "Unknown", "V-101", "Unknown"]
        assert all(eq.status == EquipmentStatus.IDENTIFIED for eq in identified)
        assert identified[1].name == "未命名设备"
        assert identified[1].page_range == "全文件"
        assert analyzer.scan_calls == ["a.pdf", "b.pdf"]

    def test_scan_failure_skips_only_that_document(self, session, analyzer):
        analyzer.fail_scan = {"a.pdf"}
        identified = asyncio.run(session.scan(analyzer))
        assert [eq.tag for eq in identified] == ["V-101", "Unknown"]
        assert session.failed_documents == ["a.pdf"]
        metrics = tracker.get_metrics()
        assert metrics["files_scanned"] == 1
        assert metrics["error_count_by_stage"] == {"scan": 1}

    def test_malformed_scan_entries_are_skipped(self, fake_analyzer_cls):
        analyzer = fake_analyzer_cls(structures={
            "a.pdf": [{"tag": "V-1"}, "junk", None, 42],
            "b.pdf": {"tag": "V-2"},
        })
        s = ImportSession()
        s.add_document("a.pdf", "application/pdf", b"a")
        s.add_document("b.pdf", "application/pdf", b"b")
        identified = asyncio.run(s.scan(analyzer))
        assert [eq.tag for eq in identified] == ["V-1"]
        assert s.step == "verify"
        assert s.failed_documents == ["b.pdf"]

    def test_empty_scan_result(self, fake_analyzer_cls):
        s = ImportSession()
        s.add_document("blank.pdf", "application/pdf", b"x")
        assert asyncio.run(s.scan(fake_analyzer_cls())) == []
        assert s.step == "verify"

    def test_discard_and_back_to_upload(self, session, analyzer):
        identified = asyncio.run(session.scan(analyzer))
        session.discard_identified(identified[1].id)
        assert len(session.identified) == 3
        with pytest.raises(KeyError):
            session.discard_identified("eq-missing")
        session.back_to_upload()
        assert session.step == "upload"
        assert session.identified == []
        assert len(session.documents) == 2


class TestExtract:

    def test_consolidates_same_tag_across_documents(self, session, analyzer):
        asyncio.run(session.scan(analyzer))
        records = asyncio.run(session.extract(analyzer))

        tags = [r.tag for r in records]
        assert tags.count("V-101") == 1
        assert tags.count("Unknown") == 2

        vessel = next(r for r in records if r.tag == "V-101")
        assert [m.name for m in vessel.materials] == ["筒体", "封头", "法兰"]
        assert vessel.specification == "DN1200x3000"
        assert vessel.main_material == "Q345R"
        assert vessel.design_weight == 2500.0
        assert len(vessel.drawings) == 2
        assert vessel.status == EquipmentStatus.COMPLETE

    def test_staged_records_finish_complete(self, session, analyzer):
        asyncio.run(session.scan(analyzer))
        asyncio.run(session.extract(analyzer))
        assert all(eq.status == EquipmentStatus.COMPLETE for eq in session.identified)
        assert tracker.get_metrics()["equipment_extracted"] == 4

    def test_detail_failure_marks_only_that_record(self, session, analyzer):
        analyzer.fail_detail = {("a.pdf", "V-101")}
        asyncio.run(session.scan(analyzer))
        records = asyncio.run(session.extract(analyzer))

        staged = session.identified
        assert staged[0].status == EquipmentStatus.ERROR
        assert staged[0].materials == []
        assert staged[2].status == EquipmentStatus.COMPLETE

        # the tag succeeded in b.pdf, so the consolidated record is usable
        vessel = next(r for r in records if r.tag == "V-101")
        assert vessel.status == EquipmentStatus.COMPLETE
        assert [m.name for m in vessel.materials] == ["法兰"]
        assert tracker.get_metrics()["error_count_by_stage"] == {"detail": 1}

    def test_all_failures_still_complete_the_batch(self, session, analyzer):
        analyzer.fail_detail = {"V-101", "Unknown"}
        asyncio.run(session.scan(analyzer))
        records = asyncio.run(session.extract(analyzer))
        assert len(records) == 3
        assert all(r.status == EquipmentStatus.ERROR and r.materials == [] for r in records)

    def test_detail_calls_are_sequential_in_scan_order(self, session, analyzer):
        asyncio.run(session.scan(analyzer))
        asyncio.run(session.extract(analyzer))
        assert [(doc, tag) for doc, tag, _ in analyzer.detail_calls] == [
            ("a.pdf", "V-101"), ("a.pdf", "Unknown"), ("b.pdf", "V-101"), ("b.pdf", "Unknown"),
        ]
        assert analyzer.detail_calls[0][2] == "第1-2页"

    def test_discarded_records_are_not_extracted(self, session, analyzer):
        identified = asyncio.run(session.scan(analyzer))
        for eq in identified:
            if eq.tag == "Unknown":
                session.discard_identified(eq.id)
        records = asyncio.run(session.extract(analyzer))
        assert [r.tag for r in records] == ["V-101"]


class TestAnalyzeAll:

    def test_one_shot_matches_wizard_result(self, session, analyzer):
        records = asyncio.run(session.analyze_all(analyzer))
        assert sorted(r.tag for r in records) == ["Unknown", "Unknown", "V-101"]
        vessel = next(r for r in records if r.tag == "V-101")
        assert len(vessel.materials) == 3

    def test_requires_upload_step(self, session, analyzer):
        asyncio.run(session.scan(analyzer))
        with pytest.raises(InvalidWizardStep):
            asyncio.run(session.analyze_all(analyzer))

    def test_summary_view(self, session, analyzer):
        asyncio.run(session.scan(analyzer))
        summary = session.summary()
        assert summary["step"] == "verify"
        assert [d["name"] for d in summary["documents"]] == ["a.pdf", "b.pdf"]
        assert summary["identified"][0]["pageRange"] == "第1-2页"
