"""
conftest.py — Shared pytest fixtures for the VesselCost Estimator backend test suite.

No network or database server is needed: the extraction service is replaced
by ``FakeAnalyzer``, the LLM chat client by ``FakeChatClient``, and the store
tests run against an in-memory SQLite engine.

Import-path bootstrapping:
    The ``backend/`` directory is inserted into sys.path so that all
    ``app.*`` imports resolve correctly regardless of where pytest is invoked.
"""

import copy
import sys
import os
import pytest

# ---------------------------------------------------------------------------
# Ensure ``backend/`` is on the import path before any app imports occur.
# ---------------------------------------------------------------------------
_BACKEND_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND_DIR not in sys.path:
    sys.path.insert(0, _BACKEND_DIR)

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_FORMAT", "text")


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FakeAnalyzer:
    """
    In-memory DrawingAnalyzer.

    structures: document name -> list of scan entries
    details:    (document name, tag) or tag -> detail payload
    """

    def __init__(self, structures=None, details=None, prices=None,
                 fail_scan=(), fail_detail=(), fail_prices=False):
        self.structures = structures or {}
        self.details = details or {}
        self.prices = prices or {}
        self.fail_scan = set(fail_scan)
        self.fail_detail = set(fail_detail)
        self.fail_prices = fail_prices
        self.scan_calls = []
        self.detail_calls = []
        self.price_calls = []

    async def scan_structure(self, document):
        from app.services.extraction_service import ExtractionError
        self.scan_calls.append(document.name)
        if document.name in self.fail_scan:
            raise ExtractionError("scan failed")
        return copy.deepcopy(self.structures.get(document.name, []))

    async def extract_details(self, document, target_tag, page_context):
        from app.services.extraction_service import ExtractionError
        self.detail_calls.append((document.name, target_tag, page_context))
        if target_tag in self.fail_detail or (document.name, target_tag) in self.fail_detail:
            raise ExtractionError("detail failed")
        payload = self.details.get((document.name, target_tag), self.details.get(target_tag))
        return copy.deepcopy(payload) if payload is not None else {"materials": []}

    async def lookup_prices(self, material_names):
        self.price_calls.append(list(material_names))
        if self.fail_prices:
            raise RuntimeError("pricing service unavailable")
        return dict(self.prices)


class FakeChatClient:
    """Stands in for LLMClient.chat; records the messages it was sent."""

    def __init__(self, reply="好的", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def chat(self, messages, temperature=0.4):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply


class MemoryStore:
    """ProjectStore double keeping snapshots in a dict; ``quota`` simulates a full store."""

    def __init__(self, quota_exceeded=False):
        self.saved = {}
        self.quota_exceeded = quota_exceeded

    async def save(self, ledger):
        from app.models.schemas import now_ms
        from app.services.project_store import StorageQuotaExceeded
        if self.quota_exceeded:
            raise StorageQuotaExceeded(size=10, limit=1)
        saved_at = now_ms()
        self.saved[ledger.id] = ledger.snapshot(last_saved=saved_at)
        ledger.last_saved = saved_at
        return saved_at

    async def load(self, project_id):
        from app.models.schemas import ProjectState
        from app.services.ledger import ProjectLedger
        snapshot = self.saved.get(project_id)
        if snapshot is None:
            return None
        return ProjectLedger.from_state(ProjectState.model_validate(snapshot))


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def make_material():
    """Factory for BOM rows with sensible defaults."""
    from app.models.schemas import MaterialItem

    def _make(weight=0.0, quantity=0.0, unit_price=0.0, material="Q345R", category="plate", name="筒体"):
        return MaterialItem(
            name=name, material=material, weight=weight,
            quantity=quantity, unit_price=unit_price, category=category,
        )
    return _make


@pytest.fixture
def make_equipment():
    """Factory for complete equipment records."""
    from app.models.schemas import Equipment, EquipmentStatus

    def _make(tag="V-2404", materials=None, design_weight=None, name="缓冲罐", **fields):
        return Equipment(
            tag=tag, name=name, materials=materials or [],
            design_weight=design_weight, status=EquipmentStatus.COMPLETE, **fields,
        )
    return _make


@pytest.fixture
def scenario_equipment(make_equipment, make_material):
    """
    Two lines: 10 kg x 2 @ 5 and 3 kg x 1 @ 20.
    Weight 23 kg, material cost 160.
    """
    return make_equipment(materials=[
        make_material(weight=10, quantity=2, unit_price=5, category="plate"),
        make_material(weight=3, quantity=1, unit_price=20, category="forging", name="法兰"),
    ])


@pytest.fixture
def ledger():
    from app.services.ledger import ProjectLedger
    return ProjectLedger()


@pytest.fixture
def analyzer():
    """Two drawings: one vessel split over both files, one unlabeled vessel each."""
    return FakeAnalyzer(
        structures={
            "a.pdf": [
                {"tag": "V-101", "name": "缓冲罐", "pageRange": "第1-2页"},
                {"tag": "", "name": "", "pageRange": ""},
            ],
            "b.pdf": [
                {"tag": "V-101", "name": "缓冲罐", "pageRange": "第1页"},
                {"tag": "Unknown", "name": "储罐"},
            ],
        },
        details={
            ("a.pdf", "V-101"): {
                "specification": "DN1200x3000",
                "mainMaterial": "Q345R",
                "designWeight": "2,500 kg",
                "materials": [
                    {"name": "筒体", "material": "Q345R", "weight": 800, "quantity": 1, "category": "plate"},
                    {"name": "封头", "material": "Q345R", "weight": "150", "quantity": "2", "category": "plate"},
                ],
            },
            ("b.pdf", "V-101"): {
                "specification": "DN9999",
                "materials": [
                    {"name": "法兰", "material": "16Mn", "weight": 20, "quantity": 4, "category": "forging"},
                ],
            },
        },
        prices={"Q345R": 6.5, "16Mn": 9.0},
    )


@pytest.fixture
def fake_analyzer_cls():
    return FakeAnalyzer


@pytest.fixture
def fake_chat_client_cls():
    return FakeChatClient


@pytest.fixture
def memory_store_cls():
    return MemoryStore
