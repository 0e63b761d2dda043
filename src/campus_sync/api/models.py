# src/campus_sync/api/models.py
"""
Pydantic models for the campus-sync API.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.models import ConflictDecision


class APIResponse(BaseModel):
    """Generic API response wrapper."""
    success: bool = True
    message: Optional[str] = None
    data: Optional[Any] = None


# -------------------------
# Entity Models
# -------------------------

class NamedCreate(BaseModel):
    """Request model for creating an office or level."""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)


class NamedUpdate(BaseModel):
    """Request model for renaming an office or level."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=255)


class StudentCreate(BaseModel):
    """
    Request model for creating a student.

    Office and level may be given by uuid (works offline, before the
    referenced row is synced) or by remote id.
    """
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    birth_date: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    office_uuid: Optional[str] = None
    office_id: Optional[int] = None
    level_uuid: Optional[str] = None
    level_id: Optional[int] = None


class StudentUpdate(BaseModel):
    """Request model for updating a student; only provided fields change."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    birth_date: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    office_uuid: Optional[str] = None
    office_id: Optional[int] = None
    level_uuid: Optional[str] = None
    level_id: Optional[int] = None


CREATE_MODELS = {
    "offices": NamedCreate,
    "levels": NamedCreate,
    "students": StudentCreate,
}

UPDATE_MODELS = {
    "offices": NamedUpdate,
    "levels": NamedUpdate,
    "students": StudentUpdate,
}


class CreatedResponse(BaseModel):
    local_id: int
    uuid: str


# -------------------------
# Sync Models
# -------------------------

class ConflictResolveRequest(BaseModel):
    """Human decision for a duplicate-key conflict."""
    decision: ConflictDecision


class ConnectivityUpdate(BaseModel):
    """Connectivity state reported by the embedding app."""
    online: bool


class SyncStatusResponse(BaseModel):
    """Response model for sync status."""
    online: bool
    remote_configured: bool
    syncing: bool
    pending: Dict[str, int]
    pending_total: int
    conflicts: int
    last_sync_at: Optional[str] = None
    last_reports: Dict[str, Any] = Field(default_factory=dict)


class ConflictListResponse(BaseModel):
    conflicts: List[Dict[str, Any]]
    count: int
