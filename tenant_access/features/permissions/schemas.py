"""
Pydantic schemas for permission entries and permission checks.
"""
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from tenant_access.features.permissions.table import ActionKind, PermissionTable, validate_entry


class PermissionEntry(BaseModel):
    """One (feature, actions) grant, validated against the feature registry."""
    feature: str = Field(..., min_length=1, max_length=100, description="Feature identifier (e.g., 'lead_management')")
    actions: List[ActionKind] = Field(..., min_length=1, description="Granted actions")

    @field_validator("feature")
    @classmethod
    def feature_lowercase(cls, v: str) -> str:
        return v.strip().lower()

    @model_validator(mode="after")
    def known_feature_and_actions(self) -> "PermissionEntry":
        validate_entry(self.feature, self.actions)
        return self


class PermissionEntryResponse(BaseModel):
    """A stored grant as returned to callers (not re-validated against the registry)."""
    feature: str
    actions: List[ActionKind]


def entries_to_table(entries: Optional[List[PermissionEntry]]) -> PermissionTable:
    """Collapse request entries into a table; repeated features are unioned."""
    return PermissionTable.from_entries(e.model_dump(mode="json") for e in entries or [])


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Check whether a user may perform an action on a feature."""
    feature: str = Field(..., description="Feature identifier")
    action: str = Field(..., description="Action")
    user_id: Optional[str] = Field(None, description="User to check (defaults to the caller)")
    resource_tenant_id: Optional[str] = Field(None, description="Also check tenant access to this tenant")


class PermissionCheckResponse(BaseModel):
    has_permission: bool
    reason: Optional[str] = None


class FeatureResponse(BaseModel):
    name: str
    actions: List[ActionKind]
    description: str


class EffectivePermissionsResponse(BaseModel):
    """A user's permissions broken down by source, plus the union."""
    user_id: str
    tenant_id: Optional[str]
    is_active: bool
    is_operator: bool
    custom_permissions: List[PermissionEntryResponse] = []
    role_permissions: Dict[str, List[PermissionEntryResponse]] = {}
    group_permissions: Dict[str, List[PermissionEntryResponse]] = {}
    effective_permissions: List[PermissionEntryResponse] = []
