from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import SQLModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ZipCodeMapping(SQLModel, table=True):
    __tablename__ = "zip_code_mappings"

    id: Optional[int] = Field(default=None, primary_key=True)
    postal_code: str = Field(index=True, unique=True)
    city_slug: str = Field(index=True)
    city_name: str
    county: Optional[str] = None
    territory_id: str
    territory_name: str
    confidence: int = 0
    source_id: Optional[str] = None
    is_active: bool = True
    last_validated: datetime = Field(default_factory=_now)


class CityCoverage(SQLModel, table=True):
    __tablename__ = "city_coverage"

    id: Optional[int] = Field(default=None, primary_key=True)
    city_slug: str = Field(index=True, unique=True)
    city_name: str
    zip_codes: str = "[]"  # JSON list stored as string
    known_zip_count: int = 0
    coverage_percentage: float = 0.0
    primary_territory_id: Optional[str] = None
    last_improved_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=_now)

    @property
    def zip_code_list(self) -> list[str]:
        try:
            return json.loads(self.zip_codes)
        except (json.JSONDecodeError, TypeError):
            return []
