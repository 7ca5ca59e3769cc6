"""Errors raised by the tour execution core."""

from __future__ import annotations


class TourError(Exception):
    """Base class for tour execution failures."""


class InvalidTransition(TourError):
    """A state-machine contract was violated; nothing was applied."""

    user_message = "this action isn't available for this visit right now"


class ConfirmationMismatch(InvalidTransition):
    """The typed confirmation word did not match the gate token."""


class RoutingUnavailable(TourError):
    """The routing provider failed, timed out or returned an unusable payload."""

    user_message = "could not recompute route, keeping current order"


class TourClosed(TourError):
    """A mutation was attempted on a tour that has been closed."""

    user_message = "this tour is closed"


class TourNotFound(LookupError):
    """No tour (or visit) is registered under the requested id."""
