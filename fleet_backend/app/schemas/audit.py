"""
Audit trail schemas.
"""

from pydantic import BaseModel
from typing import Any, Dict, List, Optional
from datetime import datetime

from fleet_backend.app.models.trip_enums import AuditSeverity


class AuditEntryResponse(BaseModel):
    """Schema for one audit trail entry."""
    id: int
    organization_id: Optional[int]
    operation_type: str
    operation_category: str
    action_performed: str
    entity_type: str
    entity_id: Optional[int]
    entity_description: Optional[str]
    performed_by: Optional[int]
    user_role: Optional[str]
    performed_at: datetime
    severity: AuditSeverity
    changes_made: Optional[Dict[str, Any]]
    validation_results: Optional[List[Dict[str, Any]]]
    reason: Optional[str]
    tags: Optional[List[str]]

    class Config:
        from_attributes = True


class AuditSearchResponse(BaseModel):
    entries: List[AuditEntryResponse]
    total: int
    limit: int
    offset: int


class AuditSummaryRow(BaseModel):
    date: str
    operation_type: str
    severity: str
    entry_count: int
    entity_count: int
