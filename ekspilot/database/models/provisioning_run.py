from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from ekspilot.database.models.base_model import BaseModel


class ProvisioningRun(BaseModel):
    __tablename__ = 'provisioning_run'

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True, init=False)
    cluster_name: Mapped[str] = mapped_column(nullable=False)
    provider: Mapped[str] = mapped_column(nullable=False)
    provider_config: Mapped[dict] = mapped_column(JSON, nullable=False)
    plan: Mapped[dict] = mapped_column(JSON, nullable=False)
    state: Mapped[str] = mapped_column(nullable=False)
    failed_stage: Mapped[str] = mapped_column(nullable=True, default=None)
    error_message: Mapped[str] = mapped_column(nullable=True, default=None)
    report: Mapped[dict] = mapped_column(JSON, nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default_factory=lambda: datetime.now())
    finished_at: Mapped[datetime] = mapped_column(nullable=True, default=None)
