"""Tour execution endpoints."""

from __future__ import annotations

import functools
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from ...data.tour_repository import TourRepository
from ...exceptions import InvalidTransition, RoutingUnavailable, TourClosed, TourNotFound
from ...models.domain import LatLng, Visit
from ...schemas.tours import (
    AbsenceModel,
    AbsentOptionsModel,
    CloseConfirmRequest,
    CloseGateModel,
    CompleteVisitRequest,
    LatLngModel,
    LocationRequest,
    MarkAbsentRequest,
    ProgressModel,
    ProposalDecisionRequest,
    ProposalModel,
    TourCreateRequest,
    TourSnapshotModel,
    VisitModel,
)
from ...services.tour.reoptimization import ReoptimizationProposal
from ...services.tour.service import TourService, TourSnapshot
from ...services.tour.termination import CloseGate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tours", tags=["tours"])


@functools.lru_cache(maxsize=1)
def get_tour_service() -> TourService:
    """Process-wide service holding every registered tour."""
    return TourService(repository=TourRepository.from_planned())


@contextmanager
def _service_errors() -> Iterator[None]:
    try:
        yield
    except TourNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except TourClosed as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.user_message) from exc
    except InvalidTransition as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{exc.user_message}: {exc}",
        ) from exc
    except RoutingUnavailable as exc:
        logger.warning(f"Routing unavailable: {exc}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.user_message) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _location(payload: Optional[LocationRequest]) -> Optional[LatLng]:
    if payload is None or payload.current_location is None:
        return None
    return LatLng(payload.current_location.lat, payload.current_location.lng)


def _latlng_model(point: LatLng) -> LatLngModel:
    return LatLngModel(lat=point.lat, lng=point.lng)


def _visit_model(visit: Visit) -> VisitModel:
    absence = None
    if visit.absence is not None:
        absence = AbsenceModel(
            strategy=visit.absence.strategy,
            note=visit.absence.note,
            recorded_at=visit.absence.recorded_at,
        )
    return VisitModel(
        visit_id=visit.visit_id,
        client_id=visit.client_id,
        client_name=visit.client_name,
        position=visit.position,
        status=visit.status,
        location=_latlng_model(visit.location),
        estimated_duration_min=visit.estimated_duration_min,
        distance_from_previous_m=visit.distance_from_previous_m,
        duration_from_previous_s=visit.duration_from_previous_s,
        actual_start=visit.actual_start,
        actual_end=visit.actual_end,
        outcome=dict(visit.outcome),
        absence=absence,
    )


def _proposal_model(proposal: ReoptimizationProposal) -> ProposalModel:
    return ProposalModel(
        proposal_id=proposal.proposal_id,
        base_order=list(proposal.base_order),
        candidate_order=list(proposal.candidate_order),
        improved=proposal.improved,
        current_duration_s=proposal.current_duration_s,
        candidate_duration_s=proposal.candidate_duration_s,
        current_distance_m=proposal.current_distance_m,
        candidate_distance_m=proposal.candidate_distance_m,
        estimated_savings_s=proposal.estimated_savings_s,
        estimated_savings_m=proposal.estimated_savings_m,
        created_at=proposal.created_at,
    )


def _snapshot_model(snapshot: TourSnapshot) -> TourSnapshotModel:
    tour = snapshot.tour
    progress = snapshot.progress
    return TourSnapshotModel(
        tour_id=tour.tour_id,
        name=tour.name,
        agent_id=tour.agent_id,
        tour_date=tour.tour_date,
        status=tour.status,
        closed_at=tour.closed_at,
        start_point=_latlng_model(tour.start_point),
        end_point=_latlng_model(tour.end_point),
        total_distance_m=tour.total_distance_m,
        total_duration_s=tour.total_duration_s,
        geometry=[[lat, lng] for lat, lng in tour.geometry],
        current_visit=_visit_model(snapshot.current_visit) if snapshot.current_visit else None,
        visits=[_visit_model(visit) for visit in tour.visits],
        progress=ProgressModel(
            total=progress.total,
            completed=progress.completed,
            absent=progress.absent,
            pending=progress.pending,
            returning=progress.returning,
            progress_percent=progress.progress_percent,
            current_visit_id=progress.current_visit_id,
            remaining_distance_m=progress.remaining_distance_m,
            remaining_duration_s=progress.remaining_duration_s,
            estimated_end_time=progress.estimated_end_time,
            can_complete=progress.can_complete,
            visits_that_fit=progress.visits_that_fit,
        ),
        pending_proposal=_proposal_model(snapshot.pending_proposal) if snapshot.pending_proposal else None,
        reoptimization_in_flight=snapshot.reoptimization_in_flight,
        route_stale=snapshot.route_stale,
    )


def _gate_model(gate: CloseGate) -> CloseGateModel:
    return CloseGateModel(
        gate_id=gate.gate_id,
        token=gate.token,
        completed=gate.completed,
        absent=gate.absent,
        pending=gate.pending,
        has_pending_work=gate.has_pending_work,
    )


@router.post("", response_model=TourSnapshotModel, status_code=status.HTTP_201_CREATED)
def register_tour(payload: TourCreateRequest, service: TourService = Depends(get_tour_service)) -> TourSnapshotModel:
    with _service_errors():
        return _snapshot_model(service.register(payload))


@router.get("", response_model=List[TourSnapshotModel])
def list_tours(service: TourService = Depends(get_tour_service)) -> List[TourSnapshotModel]:
    return [_snapshot_model(snapshot) for snapshot in service.list_tours()]


@router.get("/{tour_id}", response_model=TourSnapshotModel)
def get_tour(tour_id: str, service: TourService = Depends(get_tour_service)) -> TourSnapshotModel:
    with _service_errors():
        return _snapshot_model(service.snapshot(tour_id))


@router.post("/{tour_id}/visits/{visit_id}/start", response_model=TourSnapshotModel)
def start_visit(tour_id: str, visit_id: str, service: TourService = Depends(get_tour_service)) -> TourSnapshotModel:
    with _service_errors():
        return _snapshot_model(service.start_visit(tour_id, visit_id))


@router.post("/{tour_id}/visits/{visit_id}/complete", response_model=TourSnapshotModel)
def complete_visit(
    tour_id: str,
    visit_id: str,
    payload: Optional[CompleteVisitRequest] = None,
    service: TourService = Depends(get_tour_service),
) -> TourSnapshotModel:
    outcome = payload.outcome if payload else None
    with _service_errors():
        return _snapshot_model(service.complete_visit(tour_id, visit_id, outcome))


@router.post("/{tour_id}/visits/{visit_id}/absent", response_model=TourSnapshotModel)
def mark_absent(
    tour_id: str,
    visit_id: str,
    payload: MarkAbsentRequest,
    service: TourService = Depends(get_tour_service),
) -> TourSnapshotModel:
    with _service_errors():
        return _snapshot_model(service.mark_absent(tour_id, visit_id, payload.strategy, payload.note))


@router.get("/{tour_id}/visits/{visit_id}/absent-options", response_model=AbsentOptionsModel)
def absent_options(
    tour_id: str,
    visit_id: str,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    service: TourService = Depends(get_tour_service),
) -> AbsentOptionsModel:
    """Extra travel minutes each repositioning strategy would add."""
    location = LatLng(lat, lng) if lat is not None and lng is not None else None
    with _service_errors():
        extra = service.absent_options(tour_id, visit_id, location)
    return AbsentOptionsModel(visit_id=visit_id, extra_minutes=extra)


@router.post("/{tour_id}/reoptimize", response_model=TourSnapshotModel)
def request_reoptimization(
    tour_id: str,
    payload: Optional[LocationRequest] = None,
    service: TourService = Depends(get_tour_service),
) -> TourSnapshotModel:
    with _service_errors():
        service.request_reoptimization(tour_id, _location(payload))
        return _snapshot_model(service.snapshot(tour_id))


@router.post("/{tour_id}/reoptimize/accept", response_model=TourSnapshotModel)
def accept_reoptimization(
    tour_id: str,
    payload: ProposalDecisionRequest,
    service: TourService = Depends(get_tour_service),
) -> TourSnapshotModel:
    with _service_errors():
        return _snapshot_model(service.accept_reoptimization(tour_id, payload.proposal_id))


@router.post("/{tour_id}/reoptimize/decline", response_model=TourSnapshotModel)
def decline_reoptimization(
    tour_id: str,
    payload: ProposalDecisionRequest,
    service: TourService = Depends(get_tour_service),
) -> TourSnapshotModel:
    with _service_errors():
        return _snapshot_model(service.decline_reoptimization(tour_id, payload.proposal_id))


@router.post("/{tour_id}/reoptimize/dismiss", response_model=TourSnapshotModel)
def dismiss_reoptimization(tour_id: str, service: TourService = Depends(get_tour_service)) -> TourSnapshotModel:
    with _service_errors():
        return _snapshot_model(service.dismiss_reoptimization(tour_id))


@router.post("/{tour_id}/route/refresh", response_model=TourSnapshotModel)
def refresh_route(
    tour_id: str,
    payload: Optional[LocationRequest] = None,
    service: TourService = Depends(get_tour_service),
) -> TourSnapshotModel:
    with _service_errors():
        return _snapshot_model(service.refresh_route(tour_id, _location(payload)))


@router.post("/{tour_id}/close/request", response_model=CloseGateModel)
def request_close(tour_id: str, service: TourService = Depends(get_tour_service)) -> CloseGateModel:
    with _service_errors():
        return _gate_model(service.request_close(tour_id))


@router.post("/{tour_id}/close/confirm", response_model=TourSnapshotModel)
def confirm_close(
    tour_id: str,
    payload: CloseConfirmRequest,
    service: TourService = Depends(get_tour_service),
) -> TourSnapshotModel:
    with _service_errors():
        return _snapshot_model(service.confirm_close(tour_id, payload.gate_id, payload.confirmation))


@router.post("/{tour_id}/close/cancel", response_model=TourSnapshotModel)
def cancel_close(tour_id: str, service: TourService = Depends(get_tour_service)) -> TourSnapshotModel:
    with _service_errors():
        return _snapshot_model(service.cancel_close(tour_id))


@router.get("/{tour_id}/report", status_code=status.HTTP_200_OK)
def preview_tour_report(tour_id: str, service: TourService = Depends(get_tour_service)) -> dict:
    with _service_errors():
        return service.preview_report(tour_id)


@router.post("/{tour_id}/report", status_code=status.HTTP_201_CREATED)
def export_tour_report(tour_id: str, service: TourService = Depends(get_tour_service)) -> dict:
    """Write the JSON/CSV report to the outputs directory and return it."""
    with _service_errors():
        return service.report(tour_id)
