"""Tour execution orchestration service.

Every operator action goes through the same pass: copy the tour, run the
transition on the copy, hand the resulting intents to the storage sink, and
only then swap the copy in and recompute the derived snapshot. A failed
transition or a failed write leaves the registered tour untouched.
"""

from __future__ import annotations

import copy
import logging
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ...config import settings
from ...data.tour_repository import TourRepository, build_tour
from ...exceptions import InvalidTransition, RoutingUnavailable
from ...models.domain import AbsentStrategy, LatLng, Tour, Visit
from ...persistence.filesystem import FileStorage, JournalIntentSink
from ...persistence.intents import IntentKind, IntentSink, MemoryIntentSink, TourIntent
from ...schemas.tours import TourCreateRequest
from ..reports.tour_report import tour_report_to_json, write_tour_report
from ..routing.osrm_client import OSRMClient
from . import reoptimization, state_machine, termination
from .progress import TourProgress, compute_progress
from .reoptimization import ReoptimizationProposal, RoutingClient
from .termination import CloseGate

logger = logging.getLogger(__name__)


@dataclass
class _TourState:
    lock: threading.RLock = field(default_factory=threading.RLock)
    proposal: Optional[ReoptimizationProposal] = None
    generation: int = 0
    in_flight: bool = False
    gate: Optional[CloseGate] = None
    route_stale: bool = False


@dataclass(slots=True)
class TourSnapshot:
    tour: Tour
    current_visit: Optional[Visit]
    progress: TourProgress
    pending_proposal: Optional[ReoptimizationProposal]
    reoptimization_in_flight: bool
    route_stale: bool


def build_intent_sink(kind: Optional[str] = None) -> IntentSink:
    kind = kind or settings.intent_sink
    if kind == "supabase":
        from ...persistence.database import SupabaseIntentSink

        return SupabaseIntentSink()
    if kind == "memory":
        return MemoryIntentSink()
    return JournalIntentSink()


class TourService:
    def __init__(
        self,
        repository: Optional[TourRepository] = None,
        sink: Optional[IntentSink] = None,
        routing_factory: Optional[Callable[[], RoutingClient]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.repository = repository if repository is not None else TourRepository()
        self.sink = sink if sink is not None else build_intent_sink()
        self.routing_factory = routing_factory or OSRMClient
        self.rng = rng
        self._states: Dict[str, _TourState] = {}
        self._states_lock = threading.Lock()

    def _state(self, tour_id: str) -> _TourState:
        with self._states_lock:
            return self._states.setdefault(tour_id, _TourState())

    def _routing_client(self) -> RoutingClient:
        try:
            return self.routing_factory()
        except ValueError as exc:
            raise RoutingUnavailable(f"Routing client is not configured: {exc}") from exc

    def _commit(self, tour_id: str, mutate: Callable[[Tour], List[TourIntent]]) -> TourSnapshot:
        state = self._state(tour_id)
        with state.lock:
            working = copy.deepcopy(self.repository.get(tour_id))
            intents = mutate(working)
            if intents:
                self.sink.apply(intents)
            self.repository.replace(working)

            kinds = {intent.kind for intent in intents}
            if kinds - {IntentKind.ROUTE_UPDATED}:
                # Any state change outdates pending proposals, in-flight results and close gates
                state.generation += 1
                state.proposal = None
                state.gate = None
            if IntentKind.ROUTE_UPDATED in kinds:
                state.route_stale = False
            elif IntentKind.SEQUENCE_REORDERED in kinds:
                state.route_stale = True
            return self._snapshot(working, state)

    def _snapshot(self, tour: Tour, state: _TourState, now: Optional[datetime] = None) -> TourSnapshot:
        return TourSnapshot(
            tour=tour,
            current_visit=state_machine.current_visit(tour),
            progress=compute_progress(tour, now=now),
            pending_proposal=state.proposal,
            reoptimization_in_flight=state.in_flight,
            route_stale=state.route_stale,
        )

    def register(self, payload: TourCreateRequest) -> TourSnapshot:
        tour = self.repository.add(build_tour(payload))
        logger.info(f"Tour {tour.tour_id}: registered with {len(tour.visits)} visits")
        return self._snapshot(tour, self._state(tour.tour_id))

    def list_tours(self) -> List[TourSnapshot]:
        return [self.snapshot(tour.tour_id) for tour in self.repository.list_tours()]

    def snapshot(self, tour_id: str, now: Optional[datetime] = None) -> TourSnapshot:
        state = self._state(tour_id)
        with state.lock:
            return self._snapshot(self.repository.get(tour_id), state, now=now)

    def start_visit(self, tour_id: str, visit_id: str) -> TourSnapshot:
        return self._commit(tour_id, lambda tour: state_machine.start_visit(tour, visit_id))

    def complete_visit(self, tour_id: str, visit_id: str, outcome: Optional[dict[str, Any]] = None) -> TourSnapshot:
        return self._commit(tour_id, lambda tour: state_machine.complete_visit(tour, visit_id, outcome))

    def mark_absent(
        self,
        tour_id: str,
        visit_id: str,
        strategy: AbsentStrategy,
        note: Optional[str] = None,
    ) -> TourSnapshot:
        return self._commit(tour_id, lambda tour: state_machine.mark_absent(tour, visit_id, strategy, note))

    def absent_options(
        self,
        tour_id: str,
        visit_id: str,
        current_location: Optional[LatLng] = None,
    ) -> Dict[AbsentStrategy, float]:
        tour = copy.deepcopy(self.snapshot(tour_id).tour)
        return reoptimization.estimate_absent_detours(tour, visit_id, current_location, self._routing_client())

    def request_reoptimization(
        self,
        tour_id: str,
        current_location: Optional[LatLng] = None,
    ) -> Optional[ReoptimizationProposal]:
        """Compute a proposal; returns None when the prompt was dismissed meanwhile.

        At most one request per tour is in flight; the routing call runs
        outside the tour lock.
        """
        state = self._state(tour_id)
        with state.lock:
            tour = self.repository.get(tour_id)
            state_machine.ensure_open(tour)
            if state.in_flight:
                raise InvalidTransition("A re-optimization is already being computed for this tour.")
            state.in_flight = True
            generation = state.generation
            working = copy.deepcopy(tour)

        try:
            proposal = reoptimization.propose_reoptimization(working, current_location, self._routing_client())
        finally:
            with state.lock:
                state.in_flight = False

        with state.lock:
            if state.generation != generation:
                logger.warning(f"Tour {tour_id}: discarding proposal {proposal.proposal_id}, tour changed or prompt dismissed")
                return None
            state.proposal = proposal
            return proposal

    def _pending_proposal(self, state: _TourState, proposal_id: str) -> ReoptimizationProposal:
        if state.proposal is None or state.proposal.proposal_id != proposal_id:
            raise InvalidTransition(f"No pending re-optimization proposal '{proposal_id}'.")
        return state.proposal

    def accept_reoptimization(self, tour_id: str, proposal_id: str) -> TourSnapshot:
        state = self._state(tour_id)
        with state.lock:
            proposal = self._pending_proposal(state, proposal_id)
            snapshot = self._commit(tour_id, lambda tour: reoptimization.apply_reoptimization(tour, proposal))
            state.proposal = None
            snapshot.pending_proposal = None
            return snapshot

    def decline_reoptimization(self, tour_id: str, proposal_id: str) -> TourSnapshot:
        state = self._state(tour_id)
        with state.lock:
            self._pending_proposal(state, proposal_id)
            state.proposal = None
            logger.info(f"Tour {tour_id}: proposal {proposal_id} declined")
            return self._snapshot(self.repository.get(tour_id), state)

    def dismiss_reoptimization(self, tour_id: str) -> TourSnapshot:
        """Drop the prompt; a result still in flight will be discarded on arrival."""
        state = self._state(tour_id)
        with state.lock:
            state.generation += 1
            state.proposal = None
            return self._snapshot(self.repository.get(tour_id), state)

    def refresh_route(self, tour_id: str, current_location: Optional[LatLng] = None) -> TourSnapshot:
        client = self._routing_client()
        return self._commit(tour_id, lambda tour: reoptimization.refresh_route(tour, current_location, client))

    def request_close(self, tour_id: str) -> CloseGate:
        state = self._state(tour_id)
        with state.lock:
            gate = termination.open_close_gate(self.repository.get(tour_id), rng=self.rng)
            state.gate = gate
            return gate

    def confirm_close(self, tour_id: str, gate_id: str, confirmation: str) -> TourSnapshot:
        state = self._state(tour_id)
        with state.lock:
            gate = state.gate
            if gate is None or gate.gate_id != gate_id:
                raise InvalidTransition("No open close confirmation for this tour; request a new one.")
            snapshot = self._commit(tour_id, lambda tour: termination.confirm_close(tour, gate, confirmation))
            # Only a persisted close consumes the gate
            gate.used = True
            return snapshot

    def cancel_close(self, tour_id: str) -> TourSnapshot:
        state = self._state(tour_id)
        with state.lock:
            state.gate = None
            return self._snapshot(self.repository.get(tour_id), state)

    def preview_report(self, tour_id: str) -> dict[str, Any]:
        return tour_report_to_json(copy.deepcopy(self.snapshot(tour_id).tour))

    def report(self, tour_id: str, storage: Optional[FileStorage] = None) -> dict[str, Any]:
        tour = copy.deepcopy(self.snapshot(tour_id).tour)
        return write_tour_report(tour, storage)
