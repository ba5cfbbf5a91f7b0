"""
Region Config Models.

The remote config is treated as an opaque blob; only its age matters
to the cache.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from accountdesk.models.enums import Region


class RegionConfig(BaseModel):
    """Opaque configuration document for one region."""

    version: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


class ConfigEntry(BaseModel):
    """A cached config together with the instant it was fetched."""

    last_update: datetime
    config: RegionConfig


class StoredConfigs(BaseModel):
    """Everything the config cache persists, as one settings record."""

    configs: dict[Region, ConfigEntry] = Field(default_factory=dict)

    @field_validator("configs", mode="before")
    @classmethod
    def _drop_unknown_regions(cls, value: object) -> object:
        # Regions retired since the record was written are skipped
        # rather than invalidating the whole cache.
        if isinstance(value, dict):
            known = {region.value for region in Region}
            return {key: entry for key, entry in value.items() if str(key) in known}
        return value
