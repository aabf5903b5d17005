"""
Phase transition table.

Transitions are fixed: each phase lists the phases it may move to. The two
backward edges (plan validation to architecture, verification to building)
are the only way a session revisits earlier work.
"""

from __future__ import annotations

from ..models.session import PIPELINE_PHASES, Phase

_TERMINAL_EXITS = (Phase.FAILED, Phase.ABORTED)

TRANSITIONS: dict[Phase, frozenset[Phase]] = {
    Phase.IDLE: frozenset({Phase.INTAKE, *_TERMINAL_EXITS}),
    Phase.INTAKE: frozenset({Phase.RESEARCH, Phase.ARCHITECTURE, *_TERMINAL_EXITS}),
    Phase.RESEARCH: frozenset({Phase.ARCHITECTURE, *_TERMINAL_EXITS}),
    Phase.ARCHITECTURE: frozenset({Phase.PLAN_VALIDATION, *_TERMINAL_EXITS}),
    Phase.PLAN_VALIDATION: frozenset({Phase.BUILDING, Phase.ARCHITECTURE, *_TERMINAL_EXITS}),
    Phase.BUILDING: frozenset({Phase.VERIFICATION, *_TERMINAL_EXITS}),
    Phase.VERIFICATION: frozenset({Phase.DEPLOYMENT, Phase.BUILDING, Phase.COMPLETE, *_TERMINAL_EXITS}),
    Phase.DEPLOYMENT: frozenset({Phase.COMPLETE, *_TERMINAL_EXITS}),
    Phase.COMPLETE: frozenset(),
    Phase.FAILED: frozenset(),
    Phase.ABORTED: frozenset(),
}

BACKWARD_TRANSITIONS: frozenset[tuple[Phase, Phase]] = frozenset(
    {
        (Phase.PLAN_VALIDATION, Phase.ARCHITECTURE),
        (Phase.VERIFICATION, Phase.BUILDING),
    }
)


def can_transition(current: Phase, target: Phase) -> bool:
    return target in TRANSITIONS[current]


def is_backward(current: Phase, target: Phase) -> bool:
    return (current, target) in BACKWARD_TRANSITIONS


def next_phase(current: Phase, *, skip_research: bool = False, skip_deployment: bool = False) -> Phase:
    """The forward successor of ``current`` honouring the skip switches."""
    if current == Phase.IDLE:
        return Phase.INTAKE
    if current == Phase.DEPLOYMENT:
        return Phase.COMPLETE
    index = PIPELINE_PHASES.index(current)
    candidate = PIPELINE_PHASES[index + 1]
    if candidate == Phase.RESEARCH and skip_research:
        return Phase.ARCHITECTURE
    if candidate == Phase.DEPLOYMENT and skip_deployment:
        return Phase.COMPLETE
    return candidate
