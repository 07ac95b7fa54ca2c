"""
PipelineOptimization model: advisor-proposed candidates and their lifecycle.

Rows are never deleted; rejected candidates stay for the audit trail.
"""

from datetime import datetime

from sqlalchemy import String, DateTime, Float, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from pipeline_analytics.database import Base


class PipelineOptimization(Base):
    __tablename__ = "pipeline_optimizations"

    id: Mapped[int] = mapped_column(primary_key=True)
    optimization_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    pipeline_config_id: Mapped[str] = mapped_column(String(64), index=True)
    optimization_type: Mapped[str] = mapped_column(String(40))
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text, default="")
    confidence_score: Mapped[float] = mapped_column(Float)
    current_metrics: Mapped[dict] = mapped_column(JSONB, default=dict)
    projected_metrics: Mapped[dict] = mapped_column(JSONB, default=dict)
    implementation_steps: Mapped[list] = mapped_column(JSONB, default=list)
    code_changes: Mapped[dict] = mapped_column(JSONB, default=dict)
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # pending, applied, rejected
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
