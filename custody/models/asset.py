# custody/models/asset.py
from typing import Optional
from datetime import datetime, timezone

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field

from .enum import AssetStatus


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Asset(BaseModel):
    """A trackable physical item. `status` is written only by the lifecycle coordinator."""
    id: str = Field(default_factory=lambda: str(ObjectId()))
    name: str = Field(..., max_length=200)
    category: str = Field(..., max_length=100)
    is_equipment: bool = True
    location: Optional[str] = Field(None, max_length=200)
    status: AssetStatus = AssetStatus.AVAILABLE

    # Hold administratif, independen satu sama lain
    under_maintenance: bool = False   # Diset oleh pengembalian rusak, dilepas lewat release
    out_of_service: bool = False
    is_active: bool = True            # Soft delete

    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    # --- Pydantic Schemas for API ---
    class Create(BaseModel):
        name: str = Field(..., min_length=1, max_length=200)
        category: str = Field(..., min_length=1, max_length=100)
        is_equipment: bool = True
        location: Optional[str] = Field(None, max_length=200)

    class Update(BaseModel):
        """Descriptive fields only; status and holds change through transitions."""
        name: Optional[str] = Field(None, min_length=1, max_length=200)
        category: Optional[str] = Field(None, min_length=1, max_length=100)
        is_equipment: Optional[bool] = None
        location: Optional[str] = Field(None, max_length=200)

    class Response(BaseModel):
        model_config = ConfigDict(from_attributes=True, use_enum_values=True)

        id: str
        name: str
        category: str
        is_equipment: bool
        location: Optional[str] = None
        status: AssetStatus
        under_maintenance: bool = False
        out_of_service: bool = False
        is_active: bool = True
        created_at: datetime
        updated_at: datetime
