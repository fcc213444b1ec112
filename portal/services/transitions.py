"""
Department Workflow Portal
Per-department status state machine.

Each department owns its own lifecycle, type enum and promotion targets:

    creative:      requested → narrative_review → brand_collection → in_progress
                   → review → live, with a review ⇄ revision loop
    strategy:      research_queued → researching → research_review → research_complete
    intelligence:  monitoring ⇄ analyzing, either → paused

Every department except intelligence can park a project ``on_hold`` and
resume it from there.

The table is built once at import time from frozen structures and handed
to ``StatusTransitionValidator``; nothing exposes a mutation path.

Usage:
    from portal.services.transitions import validator

    validator.initial_status("creative")                    # "requested"
    validator.valid_transitions("creative", "review")       # frozenset({...})
    validator.validate("strategy", "researching", "live").raise_if_invalid()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

from portal.core.exceptions import (
    IllegalTransitionError,
    InvalidStateError,
    NoTransitionsDefinedError,
    WorkflowRuleError,
)

CREATIVE = "creative"
STRATEGY = "strategy"
INTELLIGENCE = "intelligence"


@dataclass(frozen=True)
class DepartmentConfig:
    """Immutable lifecycle description of one department."""

    name: str
    initial_status: str
    types: tuple[str, ...]
    transitions: Mapping[str, frozenset[str]]
    promotion_targets: frozenset[str] = frozenset()
    terminal_statuses: frozenset[str] = frozenset()
    statuses: frozenset[str] = field(init=False)

    def __post_init__(self):
        known = set(self.transitions)
        for targets in self.transitions.values():
            known |= targets
        object.__setattr__(self, "statuses", frozenset(known))
        if self.initial_status not in self.statuses:
            raise ValueError(f"{self.name}: initial status {self.initial_status!r} is not declared")
        if not self.types:
            raise ValueError(f"{self.name}: at least one project type is required")

    @property
    def default_type(self) -> str:
        return self.types[0]


def build_department(
    name: str,
    *,
    initial_status: str,
    types: Iterable[str],
    edges: Mapping[str, Iterable[str]],
    promotion_targets: Iterable[str] = (),
    terminal_statuses: Iterable[str] = (),
) -> DepartmentConfig:
    """Freeze a plain adjacency dict into a ``DepartmentConfig``."""
    frozen_edges = MappingProxyType({s: frozenset(t) for s, t in edges.items()})
    return DepartmentConfig(
        name=name,
        initial_status=initial_status,
        types=tuple(types),
        transitions=frozen_edges,
        promotion_targets=frozenset(promotion_targets),
        terminal_statuses=frozenset(terminal_statuses),
    )


class TransitionTable:
    """Read-only registry of department configurations keyed by name."""

    def __init__(self, departments: Iterable[DepartmentConfig]):
        by_name = {}
        for dept in departments:
            if dept.name in by_name:
                raise ValueError(f"Duplicate department: {dept.name}")
            by_name[dept.name] = dept
        for dept in by_name.values():
            unknown = dept.promotion_targets - set(by_name)
            if unknown:
                raise ValueError(f"{dept.name}: unknown promotion targets {sorted(unknown)}")
        self._departments = MappingProxyType(by_name)

    @property
    def departments(self) -> tuple[str, ...]:
        return tuple(self._departments)

    def is_known(self, department: str) -> bool:
        return department in self._departments

    def get(self, department: str) -> DepartmentConfig:
        try:
            return self._departments[department]
        except (KeyError, TypeError):
            raise InvalidStateError(
                f"Unknown department: {department!r}", self._departments.keys(),
            ) from None


DEFAULT_TRANSITION_TABLE = TransitionTable([
    build_department(
        CREATIVE,
        initial_status="requested",
        types=("investor_pitch", "client_proposal", "research_report", "website", "other"),
        edges={
            "requested": ["narrative_review", "on_hold"],
            "narrative_review": ["brand_collection", "in_progress", "requested", "on_hold"],
            "brand_collection": ["in_progress", "on_hold"],
            "in_progress": ["review", "on_hold"],
            "review": ["live", "revision", "on_hold"],
            "revision": ["in_progress", "on_hold"],
            "live": ["revision", "on_hold"],
            "on_hold": ["requested", "narrative_review", "brand_collection", "in_progress", "review"],
        },
        terminal_statuses=("live",),
    ),
    build_department(
        STRATEGY,
        initial_status="research_queued",
        types=("market_research", "competitive_analysis", "funding_landscape"),
        edges={
            "research_queued": ["researching", "on_hold"],
            "researching": ["research_review", "on_hold"],
            "research_review": ["research_complete", "researching", "on_hold"],
            "research_complete": ["on_hold"],
            "on_hold": ["research_queued", "researching", "research_review"],
        },
        promotion_targets=(CREATIVE,),
        terminal_statuses=("research_complete",),
    ),
    build_department(
        INTELLIGENCE,
        initial_status="monitoring",
        types=("trend_monitor", "white_space_analysis", "influencer_tracker"),
        edges={
            "monitoring": ["analyzing", "paused"],
            "analyzing": ["monitoring", "paused"],
            "paused": ["monitoring", "analyzing"],
        },
        promotion_targets=(STRATEGY, CREATIVE),
    ),
])


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of ``StatusTransitionValidator.validate``."""

    department: str
    current: str
    requested: str
    allowed: tuple[str, ...]
    error: WorkflowRuleError | None = None

    @property
    def valid(self) -> bool:
        return self.error is None

    def raise_if_invalid(self) -> None:
        if self.error is not None:
            raise self.error

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "department": self.department,
            "from": self.current,
            "to": self.requested,
            "allowed": list(self.allowed),
            "reason": str(self.error) if self.error else None,
        }


class StatusTransitionValidator:
    """Pure validator over an injected ``TransitionTable``."""

    def __init__(self, table: TransitionTable):
        self._table = table

    @property
    def table(self) -> TransitionTable:
        return self._table

    def initial_status(self, department: str) -> str:
        return self._table.get(department).initial_status

    def statuses(self, department: str) -> frozenset[str]:
        return self._table.get(department).statuses

    def types(self, department: str) -> tuple[str, ...]:
        return self._table.get(department).types

    def default_type(self, department: str) -> str:
        return self._table.get(department).default_type

    def promotion_targets(self, department: str) -> frozenset[str]:
        return self._table.get(department).promotion_targets

    def terminal_statuses(self, department: str) -> frozenset[str]:
        return self._table.get(department).terminal_statuses

    def valid_transitions(self, department: str, current_status: str) -> frozenset[str]:
        """Declared outgoing edges; empty for a status with none."""
        edges = self._table.get(department).transitions
        if not isinstance(current_status, str):
            return frozenset()
        return edges.get(current_status, frozenset())

    def validate(self, department: str, current_status: str, new_status: str) -> TransitionResult:
        try:
            allowed = self.valid_transitions(department, current_status)
        except InvalidStateError as exc:
            return TransitionResult(department, current_status, new_status, (), exc)

        ordered = tuple(sorted(allowed))
        error = None
        if not allowed:
            error = NoTransitionsDefinedError(
                f"No transitions defined for {department} status '{current_status}'",
            )
        elif not isinstance(new_status, str) or new_status not in allowed:
            error = IllegalTransitionError(department, current_status, new_status, allowed)
        return TransitionResult(department, current_status, new_status, ordered, error)


validator = StatusTransitionValidator(DEFAULT_TRANSITION_TABLE)
