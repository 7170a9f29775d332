"""Per-node step definitions and the engine that runs them."""
import logging
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .models import StepProgress, StepStatus
from .store import StateHolder

logger = logging.getLogger("updatectl.steps")


class Step(str, Enum):
    """Named steps a node can go through during a rollout."""
    CORDON = 'Cordon'
    DRAIN = 'Drain'
    FULL_UPGRADE = 'FullUpgrade'
    UNCORDON = 'Uncordon'
    WAIT_READY = 'WaitReady'
    UPGRADE_SERVER = 'UpgradeServer'
    WAIT_API_READY = 'WaitAPIReady'
    UPGRADE_AGENT = 'UpgradeAgent'


StepPlan = Tuple[Step, ...]

OS_UPDATE_STEPS: StepPlan = (
    Step.CORDON,
    Step.DRAIN,
    Step.FULL_UPGRADE,
    Step.UNCORDON,
    Step.WAIT_READY,
)

RUNTIME_SERVER_STEPS: StepPlan = (
    Step.UPGRADE_SERVER,
    Step.WAIT_API_READY,
)

RUNTIME_AGENT_STEPS: StepPlan = (
    Step.CORDON,
    Step.DRAIN,
    Step.UPGRADE_AGENT,
    Step.UNCORDON,
    Step.WAIT_READY,
)


def new_step_records(plan: StepPlan) -> List[StepProgress]:
    return [StepProgress(name=step.value) for step in plan]


class StepEngine:
    """Moves a single step through pending -> in-progress -> complete/error.

    Every transition is persisted. The engine has no timeout or retry logic;
    actions bound their own runtime.
    """

    def __init__(self, holder: StateHolder):
        self.holder = holder

    def _set(self, node_name: str, step_index: int, status: StepStatus, output: Optional[str] = None) -> None:
        with self.holder.mutate() as state:
            step = state.nodes[node_name].steps[step_index]
            step.status = status
            if output is not None:
                step.output = output

    def run_step(self, node_name: str, step_index: int, action: Callable[[], str]) -> str:
        """Run ``action`` as step ``step_index`` of ``node_name``.

        Returns the action's output. Any exception raised by the action is
        recorded on the step and re-raised unchanged.
        """
        self._set(node_name, step_index, StepStatus.IN_PROGRESS)
        try:
            output = action() or ''
        except Exception as e:
            logger.debug(f"Step {step_index} on {node_name} failed: {e}")
            self._set(node_name, step_index, StepStatus.ERROR, str(e))
            raise
        self._set(node_name, step_index, StepStatus.COMPLETE, output)
        return output

    def run_plan(self, node_name: str, actions: List[Tuple[Step, Callable[[], str]]]) -> None:
        """Run ``actions`` in order; the first failure stops the node."""
        for index, (_step, action) in enumerate(actions):
            self.run_step(node_name, index, action)
