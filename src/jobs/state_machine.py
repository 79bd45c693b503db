"""Deployment job lifecycle.

    Created -> Planning -> Planned -> Applying -> Succeeded
                  |                      |
                  v                      v
              PlanFailed            ApplyFailed

Cancelled is reachable from every non-terminal state. Terminal states have
no outgoing transitions.
"""

from typing import Sequence

from src.models.schemas import TERMINAL_STATES, JobState

TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.CREATED: frozenset({JobState.PLANNING, JobState.CANCELLED}),
    JobState.PLANNING: frozenset({JobState.PLANNED, JobState.PLAN_FAILED, JobState.CANCELLED}),
    JobState.PLANNED: frozenset({JobState.APPLYING, JobState.CANCELLED}),
    JobState.APPLYING: frozenset({JobState.SUCCEEDED, JobState.APPLY_FAILED, JobState.CANCELLED}),
    JobState.SUCCEEDED: frozenset(),
    JobState.PLAN_FAILED: frozenset(),
    JobState.APPLY_FAILED: frozenset(),
    JobState.CANCELLED: frozenset(),
}

FAILURE_STATES = frozenset({JobState.PLAN_FAILED, JobState.APPLY_FAILED})


def can_transition(source: JobState, target: JobState) -> bool:
    return target in TRANSITIONS[source]


def is_valid_path(states: Sequence[JobState]) -> bool:
    """Whether ``states`` is a walk through the lifecycle starting at Created."""
    if not states or states[0] != JobState.CREATED:
        return False
    for source, target in zip(states, states[1:]):
        if not can_transition(source, target):
            return False
    return sum(1 for s in states if s in TERMINAL_STATES) <= 1


def failure_state_for(phase: str) -> JobState:
    return JobState.PLAN_FAILED if phase == "plan" else JobState.APPLY_FAILED


def success_state_for(phase: str) -> JobState:
    return JobState.PLANNED if phase == "plan" else JobState.SUCCEEDED
