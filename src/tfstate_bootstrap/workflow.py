"""Simple workflow runner for sequential reconciliation steps."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

ContextT = TypeVar("ContextT")


@dataclass(slots=True)
class WorkflowStep(Generic[ContextT]):
    name: str
    action: Callable[[ContextT], None]


class WorkflowExecutionError(RuntimeError):
    """Raised when a workflow step fails; earlier steps are left in place."""

    def __init__(self, step_name: str) -> None:
        super().__init__(step_name)
        self.step_name = step_name


@dataclass(slots=True)
class WorkflowRunner:
    completed: list[str] = field(default_factory=list)

    def run(self, steps: list[WorkflowStep[ContextT]], context: ContextT) -> ContextT:
        for step in steps:
            logger.debug("Running workflow step '%s'", step.name)
            try:
                step.action(context)
            except Exception as exc:  # noqa: BLE001 - re-raised with the step name
                logger.error("Workflow step '%s' failed: %s", step.name, exc)
                raise WorkflowExecutionError(step.name) from exc
            self.completed.append(step.name)
        return context
