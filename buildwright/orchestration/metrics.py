"""
Orchestrator metrics.

Counters owned by one orchestrator (or session manager) instance rather
than module globals, so concurrent instances and tests never share state.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any


@dataclass
class MetricsCollector:
    """In-process counters and timings."""

    invalid_transitions: int = 0
    backward_transitions: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    loop_detections: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    phase_retries: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    phase_durations: dict[str, list[float]] = field(default_factory=lambda: defaultdict(list))
    sessions: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    def record_invalid_transition(self) -> None:
        self.invalid_transitions += 1

    def record_backward_transition(self, source: str, target: str) -> None:
        self.backward_transitions[f"{source}->{target}"] += 1

    def record_loop_detection(self, agent: str) -> None:
        self.loop_detections[agent] += 1

    def record_phase_retry(self, phase: str) -> None:
        self.phase_retries[phase] += 1

    def record_phase_duration(self, phase: str, seconds: float) -> None:
        self.phase_durations[phase].append(seconds)

    def record_session_outcome(self, outcome: str) -> None:
        self.sessions[outcome] += 1

    def snapshot(self) -> dict[str, Any]:
        return {
            "invalid_transitions": self.invalid_transitions,
            "backward_transitions": dict(self.backward_transitions),
            "loop_detections": dict(self.loop_detections),
            "phase_retries": dict(self.phase_retries),
            "phase_durations": {
                phase: {"count": len(values), "total_seconds": round(sum(values), 3)}
                for phase, values in self.phase_durations.items()
            },
            "sessions": dict(self.sessions),
        }
