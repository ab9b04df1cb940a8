from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger("shopguide.steps")


@dataclass
class TurnStep:
    """Named step in the per-turn decision pipeline."""
    name: str
    fn: Callable[[object], None]
    skip_if: Optional[Callable[[object], bool]] = None
    always_run: bool = False


class TurnRunner:
    """Ordered step runner; the first step that sets `context.response` ends the turn."""

    def __init__(self, steps: List[TurnStep]) -> None:
        self._steps = steps

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self._steps]

    def run(self, context: object) -> None:
        """Purpose: Execute steps in order until one of them answers the turn.
        Inputs/Outputs: Input is a mutable context exposing `response`; no return value.
        Side Effects / State: Step functions mutate the context.
        Dependencies: TurnStep.fn / skip_if / always_run.
        Failure Modes: Exceptions in step functions propagate to the caller.
        If Removed: The orchestrator cannot run its decision policy.
        Testing Notes: A step that sets response must stop later non-always steps.
        """
        # Stop at the first response; always_run steps still execute.
        for step in self._steps:
            answered = getattr(context, "response", None) is not None
            if step.always_run:
                step.fn(context)
                continue
            if answered:
                continue
            if step.skip_if and step.skip_if(context):
                logger.debug("step=%s skipped", step.name)
                continue
            step.fn(context)
