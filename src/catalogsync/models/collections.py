"""CollectionRecord model — registry row mirroring a vector collection."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class CollectionRecord(SQLModel, table=True):
    """Registry metadata for one vector collection.

    ``vector_size`` and ``distance`` are fixed for the life of the
    collection.  ``total_points`` is only ever changed with relative SQL
    updates so concurrent jobs do not overwrite each other's counts.
    """

    __tablename__ = "catalog_collections"

    name: str = Field(primary_key=True)
    vector_size: int
    distance: str = Field(default="Cosine")
    hnsw_m: int = Field(default=16)
    hnsw_ef_construct: int = Field(default=100)
    total_points: int = Field(default=0)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    last_synced_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
