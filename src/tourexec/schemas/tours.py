"""Tour execution request/response schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from ..models.domain import AbsentStrategy, TourStatus, VisitStatus


class LatLngModel(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class PlannedVisit(BaseModel):
    visit_id: str
    client_id: str
    client_name: Optional[str] = None
    location: LatLngModel
    estimated_duration_min: Optional[float] = Field(default=None, ge=0, description="Planned minutes on site.")
    distance_from_previous_m: Optional[float] = Field(default=None, ge=0)
    duration_from_previous_s: Optional[float] = Field(default=None, ge=0)


class TourCreateRequest(BaseModel):
    """A tour as produced by the planning step."""
    tour_id: str
    name: str
    agent_id: Optional[str] = None
    tour_date: Optional[date] = None
    start_point: LatLngModel
    end_point: Optional[LatLngModel] = Field(default=None, description="Defaults to the start point.")
    visits: List[PlannedVisit] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _unique_visit_ids(self) -> "TourCreateRequest":
        ids = [visit.visit_id for visit in self.visits]
        if len(ids) != len(set(ids)):
            raise ValueError("Visit ids must be unique within a tour.")
        return self


class CompleteVisitRequest(BaseModel):
    outcome: Dict[str, Any] = Field(default_factory=dict, description="Visit report, quote reference, etc.")


class MarkAbsentRequest(BaseModel):
    strategy: AbsentStrategy
    note: Optional[str] = Field(default=None, max_length=2000)


class LocationRequest(BaseModel):
    current_location: Optional[LatLngModel] = Field(
        default=None,
        description="Agent position; defaults to the last known visit location.",
    )


class ProposalDecisionRequest(BaseModel):
    proposal_id: str


class CloseConfirmRequest(BaseModel):
    gate_id: str
    confirmation: str


class AbsenceModel(BaseModel):
    strategy: AbsentStrategy
    note: Optional[str]
    recorded_at: datetime


class VisitModel(BaseModel):
    visit_id: str
    client_id: str
    client_name: Optional[str]
    position: int
    status: VisitStatus
    location: LatLngModel
    estimated_duration_min: float
    distance_from_previous_m: Optional[float]
    duration_from_previous_s: Optional[float]
    actual_start: Optional[datetime]
    actual_end: Optional[datetime]
    outcome: Dict[str, Any]
    absence: Optional[AbsenceModel]


class ProgressModel(BaseModel):
    total: int
    completed: int
    absent: int
    pending: int
    returning: int
    progress_percent: float
    current_visit_id: Optional[str]
    remaining_distance_m: float
    remaining_duration_s: float
    estimated_end_time: datetime
    can_complete: bool
    visits_that_fit: int


class ProposalModel(BaseModel):
    proposal_id: str
    base_order: List[str]
    candidate_order: List[str]
    improved: bool
    current_duration_s: float
    candidate_duration_s: float
    current_distance_m: float
    candidate_distance_m: float
    estimated_savings_s: float
    estimated_savings_m: float
    created_at: datetime


class TourSnapshotModel(BaseModel):
    tour_id: str
    name: str
    agent_id: Optional[str]
    tour_date: Optional[date]
    status: TourStatus
    closed_at: Optional[datetime]
    start_point: LatLngModel
    end_point: LatLngModel
    total_distance_m: Optional[float]
    total_duration_s: Optional[float]
    geometry: List[List[float]]
    current_visit: Optional[VisitModel]
    visits: List[VisitModel]
    progress: ProgressModel
    pending_proposal: Optional[ProposalModel]
    reoptimization_in_flight: bool
    route_stale: bool = Field(
        default=False,
        description="True when legs could not be refreshed after the last reorder.",
    )


class AbsentOptionsModel(BaseModel):
    visit_id: str
    extra_minutes: Dict[AbsentStrategy, float]


class CloseGateModel(BaseModel):
    gate_id: str
    token: str
    completed: int
    absent: int
    pending: int
    has_pending_work: bool
