from datetime import datetime, timedelta, timezone

import pytest

from tourexec.exceptions import InvalidTransition, TourClosed, TourNotFound
from tourexec.models.domain import AbsentStrategy, LatLng, Tour, TourStatus, Visit, VisitStatus
from tourexec.persistence.intents import IntentKind
from tourexec.services.tour import state_machine

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _tour(count: int = 3) -> Tour:
    visits = [
        Visit(
            visit_id=f"V{index}",
            tour_id="T1",
            client_id=f"C{index}",
            location=LatLng(0.0, float(index)),
            position=index - 1,
        )
        for index in range(1, count + 1)
    ]
    return Tour(tour_id="T1", name="Monday", start_point=LatLng(0.0, 0.0), visits=visits)


def _in_progress_count(tour: Tour) -> int:
    return sum(1 for visit in tour.visits if visit.status is VisitStatus.IN_PROGRESS)


def test_completing_first_visit_advances_current_visit():
    tour = _tour()

    state_machine.start_visit(tour, "V1", now=NOW)
    state_machine.complete_visit(tour, "V1", now=NOW + timedelta(minutes=20))

    assert tour.visit("V1").status is VisitStatus.COMPLETED
    assert state_machine.current_visit(tour).visit_id == "V2"
    assert [visit.visit_id for visit in state_machine.remaining_visits(tour)] == ["V2", "V3"]


def test_start_visit_that_is_not_current_is_rejected():
    tour = _tour()

    with pytest.raises(InvalidTransition):
        state_machine.start_visit(tour, "V2", now=NOW)

    assert all(visit.status is VisitStatus.PENDING for visit in tour.visits)
    assert tour.status is TourStatus.PLANNED


def test_only_one_visit_in_progress():
    tour = _tour()
    state_machine.start_visit(tour, "V1", now=NOW)

    with pytest.raises(InvalidTransition):
        state_machine.start_visit(tour, "V1", now=NOW)
    with pytest.raises(InvalidTransition):
        state_machine.start_visit(tour, "V2", now=NOW)

    assert _in_progress_count(tour) == 1


def test_first_start_moves_tour_in_progress_and_emits_intent():
    tour = _tour()

    intents = state_machine.start_visit(tour, "V1", now=NOW)

    assert tour.status is TourStatus.IN_PROGRESS
    assert tour.visit("V1").actual_start == NOW
    assert [intent.kind for intent in intents] == [IntentKind.VISIT_STARTED]
    assert intents[0].visit_id == "V1"


def test_complete_requires_in_progress():
    tour = _tour()

    with pytest.raises(InvalidTransition):
        state_machine.complete_visit(tour, "V1", now=NOW)


def test_complete_records_outcome():
    tour = _tour()
    state_machine.start_visit(tour, "V1", now=NOW)

    intents = state_machine.complete_visit(tour, "V1", {"quote_id": "Q-17"}, now=NOW)

    assert tour.visit("V1").outcome == {"quote_id": "Q-17"}
    assert intents[0].payload["outcome"] == {"quote_id": "Q-17"}


def test_completed_and_skipped_visits_are_absorbing():
    tour = _tour()
    state_machine.start_visit(tour, "V1", now=NOW)
    state_machine.complete_visit(tour, "V1", now=NOW)
    state_machine.mark_absent(tour, "V2", AbsentStrategy.ANOTHER_DAY, now=NOW)

    for visit_id in ("V1", "V2"):
        with pytest.raises(InvalidTransition):
            state_machine.start_visit(tour, visit_id, now=NOW)
        with pytest.raises(InvalidTransition):
            state_machine.complete_visit(tour, visit_id, now=NOW)
        with pytest.raises(InvalidTransition):
            state_machine.mark_absent(tour, visit_id, AbsentStrategy.ON_RETURN, now=NOW)

    assert tour.visit("V1").status is VisitStatus.COMPLETED
    assert tour.visit("V2").status is VisitStatus.SKIPPED


def test_mark_absent_after_next_reorders_and_keeps_record():
    tour = _tour()
    state_machine.start_visit(tour, "V1", now=NOW)
    state_machine.complete_visit(tour, "V1", now=NOW)

    intents = state_machine.mark_absent(tour, "V2", AbsentStrategy.AFTER_NEXT, "  closed shop ", now=NOW)

    assert tour.order() == ["V1", "V3", "V2"]
    visit = tour.visit("V2")
    assert visit.status is VisitStatus.PENDING
    assert visit.is_returning
    assert visit.absence.note == "closed shop"
    assert [intent.kind for intent in intents] == [IntentKind.VISIT_ABSENT, IntentKind.SEQUENCE_REORDERED]
    assert intents[1].payload["order"] == ["V1", "V3", "V2"]


def test_mark_absent_on_in_progress_visit_frees_the_slot():
    tour = _tour()
    state_machine.start_visit(tour, "V1", now=NOW)

    state_machine.mark_absent(tour, "V1", AbsentStrategy.ON_RETURN, now=NOW)

    assert _in_progress_count(tour) == 0
    assert tour.order() == ["V2", "V3", "V1"]
    assert state_machine.current_visit(tour).visit_id == "V2"


def test_absent_without_reorder_emits_single_intent():
    tour = _tour()

    intents = state_machine.mark_absent(tour, "V3", AbsentStrategy.ON_RETURN, now=NOW)

    assert tour.order() == ["V1", "V2", "V3"]
    assert [intent.kind for intent in intents] == [IntentKind.VISIT_ABSENT]


def test_skipped_visit_keeps_its_slot_in_the_record():
    tour = _tour()

    intents = state_machine.mark_absent(tour, "V1", AbsentStrategy.ANOTHER_DAY, now=NOW)

    assert tour.order() == ["V1", "V2", "V3"]
    assert [intent.kind for intent in intents] == [IntentKind.VISIT_ABSENT, IntentKind.SEQUENCE_REORDERED]
    assert state_machine.current_visit(tour).visit_id == "V2"


def test_unknown_visit_raises_not_found():
    tour = _tour()

    with pytest.raises(TourNotFound):
        state_machine.start_visit(tour, "V9", now=NOW)


def test_closed_tour_rejects_mutations():
    tour = _tour()
    tour.status = TourStatus.CLOSED

    with pytest.raises(TourClosed):
        state_machine.start_visit(tour, "V1", now=NOW)
    with pytest.raises(TourClosed):
        state_machine.mark_absent(tour, "V1", AbsentStrategy.AFTER_NEXT, now=NOW)


def test_reorder_remaining_requires_a_permutation():
    tour = _tour()

    with pytest.raises(InvalidTransition):
        state_machine.reorder_remaining(tour, [tour.visit("V1"), tour.visit("V2")])

    assert tour.order() == ["V1", "V2", "V3"]
