"""
Ordered multi-step writes with per-step failure classification.

A saga is a list of ``SagaStep``s run in order against a shared context
dict.  Each step commits on success.  A *fatal* step that fails rolls back
and re-raises, aborting the saga; a best-effort step that fails is rolled
back, logged and recorded in ``SagaOutcome.failed`` while later steps
still run.  Nothing is compensated: steps that already committed stay.

Usage:
    outcome = run_saga([
        SagaStep("create_target", create_target, fatal=True),
        SagaStep("notify", notify_admins),
    ], context, label="promotion")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from portal.models import db

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SagaStep:
    name: str
    action: Callable[[dict], Any]
    fatal: bool = False


@dataclass
class SagaOutcome:
    completed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    results: dict[str, Any] = field(default_factory=dict)

    @property
    def degraded(self) -> bool:
        return bool(self.failed)


def run_saga(steps, context: dict, *, label: str = "saga") -> SagaOutcome:
    outcome = SagaOutcome()
    for step in steps:
        try:
            result = step.action(context)
            db.session.commit()
        except Exception:
            db.session.rollback()
            if step.fatal:
                logger.error("%s: fatal step '%s' failed, aborting", label, step.name,
                             exc_info=True, extra={"step": step.name})
                raise
            logger.warning("%s: step '%s' failed, continuing", label, step.name,
                           exc_info=True, extra={"step": step.name})
            outcome.failed.append(step.name)
            continue
        outcome.completed.append(step.name)
        outcome.results[step.name] = result
    return outcome
