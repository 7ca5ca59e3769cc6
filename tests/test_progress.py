from datetime import datetime, time, timedelta, timezone

import pytest

from tourexec.models.domain import AbsentStrategy
from tourexec.services.tour import state_machine
from tourexec.services.tour.progress import compute_progress

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _with_legs(tour, duration_s: float = 600.0, distance_m: float = 5000.0):
    for visit in tour.visits:
        visit.duration_from_previous_s = duration_s
        visit.distance_from_previous_m = distance_m
    return tour


def test_counts_after_first_completion(make_tour):
    tour = make_tour()
    state_machine.start_visit(tour, "V1", now=NOW)
    state_machine.complete_visit(tour, "V1", now=NOW)

    progress = compute_progress(tour, now=NOW)

    assert progress.total == 3
    assert progress.completed == 1
    assert progress.pending == 2
    assert progress.absent == 0
    assert progress.current_visit_id == "V2"
    assert progress.progress_percent == pytest.approx(100 / 3)


def test_another_day_visit_is_excluded_from_remaining_totals(make_tour):
    tour = _with_legs(make_tour())
    state_machine.start_visit(tour, "V1", now=NOW)
    state_machine.complete_visit(tour, "V1", now=NOW)
    state_machine.mark_absent(tour, "V2", AbsentStrategy.ANOTHER_DAY, now=NOW)

    progress = compute_progress(tour, now=NOW)

    assert [visit.visit_id for visit in state_machine.remaining_visits(tour)] == ["V3"]
    assert progress.absent == 1
    assert progress.remaining_distance_m == pytest.approx(5000)
    assert progress.remaining_duration_s == pytest.approx(600 + 30 * 60)
    assert progress.estimated_end_time == NOW + timedelta(seconds=2400)


def test_returning_visits_are_counted(make_tour):
    tour = make_tour()
    state_machine.mark_absent(tour, "V1", AbsentStrategy.ON_RETURN, now=NOW)

    progress = compute_progress(tour, now=NOW)

    assert progress.returning == 1
    assert progress.pending == 3
    assert progress.current_visit_id == "V2"


def test_progress_percent_never_decreases(make_tour):
    tour = make_tour(xs=(1.0, 2.0, 3.0, 4.0))
    steps = [
        lambda: state_machine.start_visit(tour, "V1", now=NOW),
        lambda: state_machine.complete_visit(tour, "V1", now=NOW),
        lambda: state_machine.mark_absent(tour, "V2", AbsentStrategy.AFTER_NEXT, now=NOW),
        lambda: state_machine.start_visit(tour, "V3", now=NOW),
        lambda: state_machine.complete_visit(tour, "V3", now=NOW),
        lambda: state_machine.mark_absent(tour, "V2", AbsentStrategy.ANOTHER_DAY, now=NOW),
        lambda: state_machine.start_visit(tour, "V4", now=NOW),
        lambda: state_machine.complete_visit(tour, "V4", now=NOW),
    ]

    history = [compute_progress(tour, now=NOW).progress_percent]
    for step in steps:
        step()
        history.append(compute_progress(tour, now=NOW).progress_percent)

    assert history == sorted(history)
    assert history[-1] == pytest.approx(75.0)


def test_work_day_capacity(make_tour):
    tour = _with_legs(make_tour())
    late = datetime(2026, 3, 2, 17, 0, tzinfo=timezone.utc)

    progress = compute_progress(tour, now=late, work_end_time=time(18, 0))

    assert progress.remaining_duration_s == pytest.approx(3 * 2400)
    assert not progress.can_complete
    assert progress.visits_that_fit == 1


def test_everything_fits_early_in_the_day(make_tour):
    tour = _with_legs(make_tour())

    progress = compute_progress(tour, now=NOW, work_end_time=time(18, 0))

    assert progress.can_complete
    assert progress.visits_that_fit == 3


def test_empty_remaining_sequence(make_tour):
    tour = make_tour(xs=(1.0,))
    state_machine.start_visit(tour, "V1", now=NOW)
    state_machine.complete_visit(tour, "V1", now=NOW)

    progress = compute_progress(tour, now=NOW)

    assert progress.progress_percent == 100.0
    assert progress.current_visit_id is None
    assert progress.remaining_duration_s == 0
    assert progress.estimated_end_time == NOW
