"""
Domain models for the equipment ledger.

JSON uses camelCase (the browser contract and the persisted project format);
Python code uses snake_case attributes. Both spellings are accepted on input.
"""
import time
import uuid
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

from app.config import MATERIAL_CATEGORIES

MaterialCategory = Literal["plate", "forging", "pipe", "consumable", "other"]


def now_ms() -> int:
    """Epoch milliseconds, the timestamp unit of the persisted project format."""
    return int(time.time() * 1000)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def normalize_category(value) -> str:
    """Map anything outside the closed category set to ``other``."""
    if isinstance(value, str) and value.strip().lower() in MATERIAL_CATEGORIES:
        return value.strip().lower()
    return "other"


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        allow_inf_nan=False,
    )


class MaterialItem(CamelModel):
    """One BOM row. ``total_price`` is always derived, never stored."""
    id: str = Field(default_factory=lambda: new_id("mat"), frozen=True)
    name: str = ""
    material: str = ""
    specification: str = ""
    weight: float = Field(0.0, ge=0)        # kg per unit
    quantity: float = Field(0.0, ge=0)
    unit_price: float = Field(0.0, ge=0)    # currency per kg
    category: MaterialCategory = "other"

    @field_validator("category", mode="before")
    @classmethod
    def _known_category(cls, value):
        return normalize_category(value)

    @computed_field
    @property
    def total_price(self) -> float:
        return self.weight * self.quantity * self.unit_price

    @property
    def line_weight(self) -> float:
        return self.weight * self.quantity


class EquipmentStatus(str, Enum):
    IDENTIFIED = "identified"
    EXTRACTING = "extracting"
    COMPLETE = "complete"
    ERROR = "error"


# Forward-only lifecycle. ERROR ends one extraction attempt; a retry re-enters
# EXTRACTING from it.
_ALLOWED_TRANSITIONS = {
    EquipmentStatus.IDENTIFIED: {EquipmentStatus.EXTRACTING, EquipmentStatus.COMPLETE, EquipmentStatus.ERROR},
    EquipmentStatus.EXTRACTING: {EquipmentStatus.COMPLETE, EquipmentStatus.ERROR},
    EquipmentStatus.COMPLETE: set(),
    EquipmentStatus.ERROR: {EquipmentStatus.EXTRACTING},
}


class InvalidStatusTransition(ValueError):
    pass


class Equipment(CamelModel):
    id: str = Field(default_factory=lambda: new_id("eq"))
    tag: str
    name: str
    specification: Optional[str] = None
    main_material: Optional[str] = None
    design_weight: Optional[float] = Field(None, ge=0)
    page_range: Optional[str] = None
    source_file_id: Optional[str] = None
    materials: List[MaterialItem] = Field(default_factory=list)
    drawings: List[str] = Field(default_factory=list)
    last_modified: int = Field(default_factory=now_ms)
    status: EquipmentStatus = EquipmentStatus.IDENTIFIED

    def touch(self) -> None:
        self.last_modified = now_ms()

    def transition(self, new_status: EquipmentStatus) -> None:
        if new_status == self.status:
            return
        if new_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStatusTransition(
                f"{self.tag}: cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status
        self.touch()

    def add_drawing(self, reference: str) -> None:
        if reference and reference not in self.drawings:
            self.drawings.append(reference)


class PricingParameters(CamelModel):
    """Global pricing inputs owned by the project ledger."""
    labor_cost_per_kg: float = Field(..., ge=0)
    overhead_percent: float = Field(..., ge=0, le=100)


class CostRollup(CamelModel):
    total_weight: float
    material_cost: float
    labor_cost: float
    overhead_cost: float
    grand_total: float


class ProjectState(CamelModel):
    """Persisted project form. Drawing references are never stored."""
    id: str
    name: str
    equipments: List[Equipment] = Field(default_factory=list)
    labor_cost_per_kg: float = Field(..., ge=0)
    overhead_percent: float = Field(..., ge=0, le=100)
    last_saved: Optional[int] = None


class ChatMessage(CamelModel):
    id: str = Field(default_factory=lambda: new_id("msg"))
    role: Literal["user", "model"]
    text: str
    image_context: Optional[str] = None     # base64 screenshot
    is_error: bool = False
    timestamp: int = Field(default_factory=now_ms)
