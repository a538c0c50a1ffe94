"""Ordered workflow steps with declared compensations

A workflow is a list of Steps run in order against a shared context object.
When a step raises, completed steps are unwound in reverse order by calling
their compensations. Unwinding stops at a completed irreversible step (a
transfer that already moved funds): the local writes before it are now backed
by external money, so they stay and the divergence is flagged instead.

A step failing with GatewayTimeout is still unwound as a failure, but it is
also flagged for reconciliation: the rail may have acted on it.

Compensations are best-effort and never retried. The original error always
propagates.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Union

from formbank.domain.exceptions import GatewayTimeout
from formbank.infrastructure.observability.logging import log_compensation, log_reconciliation_required
from formbank.infrastructure.observability.metrics import compensation_counter, reconciliation_counter

StepAction = Callable[[Any], Awaitable[None]]

logger = logging.getLogger(__name__)


def flag_ambiguous_transfer(workflow: str, step: str, error: GatewayTimeout, **context: Any) -> None:
    """A timed-out transfer may have moved funds; local state is settled as a failure and flagged"""
    reconciliation_counter.inc()
    log_reconciliation_required(
        workflow,
        f"{step} timed out; transfer outcome unknown",
        request_id=error.request_id,
        **context,
    )


@dataclass
class Step:
    """One unit of a workflow"""

    name: str
    action: StepAction
    compensate: Optional[StepAction] = None
    # External side effect no local write can undo; a callable decides per run
    irreversible: Union[bool, Callable[[Any], bool]] = False

    def is_irreversible(self, context: Any) -> bool:
        if callable(self.irreversible):
            return self.irreversible(context)
        return self.irreversible


class Pipeline:
    """Runs steps in order and unwinds completed ones on failure"""

    def __init__(self, name: str, steps: List[Step]):
        self.name = name
        self.steps = steps

    def describe(self) -> List[str]:
        return [step.name for step in self.steps]

    async def run(self, context: Any) -> Any:
        completed: List[Step] = []
        for step in self.steps:
            try:
                await step.action(context)
            except Exception as e:
                logger.info(
                    f"Step {step.name} failed: {e}",
                    extra={"workflow": self.name, "step": step.name},
                )
                if isinstance(e, GatewayTimeout):
                    flag_ambiguous_transfer(self.name, step.name, e)
                await self._unwind(completed, step, context)
                raise
            completed.append(step)
        return context

    async def _unwind(self, completed: List[Step], failed: Step, context: Any) -> None:
        for step in reversed(completed):
            if step.is_irreversible(context):
                reconciliation_counter.inc()
                log_reconciliation_required(
                    self.name,
                    f"step {failed.name} failed after irreversible step {step.name}",
                )
                return
            if step.compensate is None:
                continue
            try:
                await step.compensate(context)
            except Exception as e:
                compensation_counter.labels(outcome="failed").inc()
                log_compensation(self.name, step.name, "failed", str(e))
                reconciliation_counter.inc()
                log_reconciliation_required(self.name, f"compensation of {step.name} failed")
                continue
            compensation_counter.labels(outcome="applied").inc()
            log_compensation(self.name, step.name, "applied")
