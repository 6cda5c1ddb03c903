from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# JSONB on Postgres, plain JSON elsewhere (sqlite dev/test databases).
JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class DatasetRelationship(Base):
    __tablename__ = "dataset_relationships"
    __table_args__ = (
        Index("ix_dataset_relationships_project_dataset", "project_id", "dataset_id"),
    )

    # "project.dataset"; one document per dataset.
    dataset_key: Mapped[str] = mapped_column(String, primary_key=True)
    project_id: Mapped[str] = mapped_column(String)
    dataset_id: Mapped[str] = mapped_column(String)
    # Inferred and manual edges together; origin on each edge tells them apart.
    edges_json: Mapped[list[dict[str, Any]]] = mapped_column(JsonColumn, default=list)
    table_names_json: Mapped[list[str]] = mapped_column(JsonColumn, default=list)
    # Null when the row only holds manual edges and inference never ran.
    snapshot_fingerprint: Mapped[str | None] = mapped_column(String, nullable=True)
    computed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class AdminRole(Base):
    __tablename__ = "admin_roles"

    # Lowercased email is the identity; soft-deleted via is_active.
    email: Mapped[str] = mapped_column(String, primary_key=True)
    # super-admin or project-admin.
    role: Mapped[str] = mapped_column(String)
    assigned_projects_json: Mapped[list[str]] = mapped_column(JsonColumn, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
