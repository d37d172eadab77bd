"""
Control actions: end, goto and retry.

The dispatcher is pure. It folds an ordered action list into a new
ControlState and never sleeps; the engine performs the retry wait.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from ..exceptions import UnsupportedActionError
from ..exec.cancellation import CancellationToken
from ..models import Action, EndAction, GotoAction, RetryAction


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ControlState:
    """
    Control decisions for the step that just ran.

    Attributes:
        next_step_id: Step to jump to, if any
        terminate: End the run now
        retry_counts: Retries dispatched per step for the whole run
        retry_after: Seconds to wait before re-running the step (retry pending)
        retry_exhausted: A retry action was reached with no budget left
    """
    next_step_id: Optional[str] = None
    terminate: bool = False
    retry_counts: Dict[str, int] = field(default_factory=dict)
    retry_after: Optional[float] = None
    retry_exhausted: bool = False

    @property
    def retry_pending(self) -> bool:
        return self.retry_after is not None

    def for_next_decision(self) -> "ControlState":
        """Clear per-step decisions, keeping the run-wide retry counters."""
        return ControlState(retry_counts=self.retry_counts)


class ActionDispatcher:
    """Applies ordered control actions to a control state."""

    def dispatch(
        self,
        actions: List[Action],
        state: ControlState,
        current_step_id: str
    ) -> ControlState:
        """
        Fold actions into a new control state.

        Args:
            actions: Applicable actions in document order
            state: Control state carrying the run's retry counters
            current_step_id: Step whose outcome is being handled

        Returns:
            New control state; the input state is not modified

        Raises:
            UnsupportedActionError: For anything other than end, goto or retry
        """
        state = state.for_next_decision()

        for action in actions:
            if isinstance(action, EndAction):
                logger.debug(f"Step '{current_step_id}': end")
                return replace(state, terminate=True)

            elif isinstance(action, GotoAction):
                logger.debug(f"Step '{current_step_id}': goto '{action.step_id}'")
                state = replace(state, next_step_id=action.step_id)

            elif isinstance(action, RetryAction):
                counts = dict(state.retry_counts)
                counts[current_step_id] = counts.get(current_step_id, 0) + 1
                if counts[current_step_id] > action.retry_limit:
                    logger.warning(
                        f"Step '{current_step_id}': retry limit {action.retry_limit} exhausted"
                    )
                    state = replace(state, retry_counts=counts, retry_exhausted=True)
                    continue
                return replace(
                    state,
                    retry_counts=counts,
                    retry_after=action.retry_after,
                    next_step_id=None,
                )

            else:
                raise UnsupportedActionError(
                    f"Unsupported action: {action!r}",
                    {'step_id': current_step_id},
                )

        return state

    def wait_for_retry(
        self,
        state: ControlState,
        cancel_token: Optional[CancellationToken] = None
    ) -> None:
        """Wait out a pending retry delay, waking early on cancellation."""
        delay = state.retry_after or 0
        if cancel_token is not None:
            cancel_token.wait(delay)
        elif delay > 0:
            time.sleep(delay)
