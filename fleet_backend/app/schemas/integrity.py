"""
Integrity sweep and mileage chain schemas.

Read-only reports; none of these endpoints write.
"""

from pydantic import BaseModel
from typing import Any, Dict, List, Optional
from datetime import datetime

from fleet_backend.app.models.trip_enums import AuditSeverity


class OverlapListResponse(BaseModel):
    overlaps: List[Dict[str, Any]]
    total: int
    limit: int
    offset: int


class ContinuitySummaryResponse(BaseModel):
    total_trips: int
    perfect_continuity: int
    small_gaps: int
    moderate_gaps: int
    large_gaps: int
    negative_gaps: int
    total_gap_km: int
    max_gap_km: int
    continuity_score: Optional[int]
    recommendations: List[str]

    class Config:
        from_attributes = True


class OdometerGapResponse(BaseModel):
    vehicle_id: int
    gaps: List[Dict[str, Any]]
    summary: ContinuitySummaryResponse


class AnomalyBucketResponse(BaseModel):
    """Findings of one code aggregated across trips."""
    code: str
    severity: AuditSeverity
    count: int
    trip_ids: List[int]
    sample_messages: List[str]
    recommendation: str

    class Config:
        from_attributes = True


class AnomalyListResponse(BaseModel):
    anomalies: List[AnomalyBucketResponse]
    total: int
    limit: int
    offset: int


class ChainBreakListResponse(BaseModel):
    vehicle_id: int
    breaks: List[Dict[str, Any]]
    total: int


class MileageChainResponse(BaseModel):
    vehicle_id: int
    segments: List[Dict[str, Any]]


class CascadePreviewResponse(BaseModel):
    trip_id: int
    vehicle_id: int
    odometer_delta_km: int
    cascade: bool
    affected_trips: List[Dict[str, Any]]
    affected_segments: List[Dict[str, Any]]


class CorrectionResultResponse(BaseModel):
    trip_id: int
    vehicle_id: int
    odometer_delta_km: int
    affected_trips: List[Dict[str, Any]]
    efficiency_changes: List[Dict[str, Any]]
    segments: List[Dict[str, Any]]
    audit_entry_id: int


class FuelBaselineResponse(BaseModel):
    vehicle_id: int
    baseline_kmpl: float
    std_dev_kmpl: float
    sample_size: int
    confidence_score: float
    tolerance_lower_kmpl: float
    tolerance_upper_kmpl: float
    data_start_date: Optional[datetime]
    data_end_date: Optional[datetime]
    calculated_at: datetime

    class Config:
        from_attributes = True
