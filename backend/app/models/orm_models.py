"""ORM Models for VesselCost Estimator — SQLAlchemy 2.0"""
from datetime import datetime
from typing import Optional
from sqlalchemy import JSON, BigInteger, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from app.db import Base


# ── PROJECTS ──────────────────────────────────────────────────────────────────
class ProjectRecord(Base):
    """One saved project. The whole ledger lives in ``state_snapshot``."""
    __tablename__ = "projects"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    state_snapshot: Mapped[Optional[dict]] = mapped_column(JSON)
    last_saved: Mapped[Optional[int]] = mapped_column(BigInteger)  # epoch ms
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
