"""
Workflow engine.

Runs one workflow as a state machine:

    Ready -> Running(step) -> Succeeded | Failed | Terminated
                           -> Retrying(step, attempt) -> Running(step)

Steps execute strictly sequentially. Every expression, criteria and
invocation error raised by a step is caught at the step boundary and routed
to the step's failure actions. UnsupportedActionError is never caught.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from ..context import ExecutionContext
from ..exceptions import (
    ApiflowError,
    CriteriaNotMetError,
    ExpressionError,
    OperationNotFoundError,
    ProtocolError,
    RunCancelledError,
    SubWorkflowFailedError,
    UnsupportedActionError,
)
from ..exec.cancellation import CancellationToken
from ..exec.catalog import OperationCatalog
from ..exec.http_client import HttpxClient
from ..exec.invoker import OperationInvoker
from ..exec.types import (
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_TIMEOUT_MS,
    StepResult,
)
from ..expressions import UNDEFINED, ExpressionResolver
from ..models import Action, Step, Workflow, WorkflowDocument
from .actions import ActionDispatcher, ControlState
from .criteria import CriteriaEvaluator, XmlProvider

logger = logging.getLogger(__name__)


RunStatus = Literal["succeeded", "failed", "cancelled"]


@dataclass
class RunResult:
    """Terminal result of a workflow run."""
    status: RunStatus
    workflow_id: str
    outputs: Dict[str, Any] = field(default_factory=dict)
    steps: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    error: Optional[Dict[str, Any]] = None
    context: Optional[ExecutionContext] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for JSON serialization."""
        result: Dict[str, Any] = {
            "status": self.status,
            "workflowId": self.workflow_id,
            "outputs": self.outputs,
            "steps": self.steps,
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class StepOutcome:
    """Outcome of one step attempt, before actions are dispatched."""
    succeeded: bool
    context: ExecutionContext
    result: Optional[StepResult] = None
    error: Optional[ApiflowError] = None


class WorkflowEngine:
    """
    Main workflow execution engine.
    Handles sequential execution, success criteria and end/goto/retry control flow.
    """

    def __init__(
        self,
        document: Union[WorkflowDocument, Dict[str, Any]],
        http_client: Any = None,
        catalog: Optional[OperationCatalog] = None,
        xml_provider: Optional[XmlProvider] = None,
        resolver: Optional[ExpressionResolver] = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        default_retry_count: int = DEFAULT_RETRY_COUNT,
        default_retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS
    ):
        """
        Initialize the workflow engine.

        Args:
            document: Validated workflow document (dict or WorkflowDocument)
            http_client: HTTP client collaborator (HttpxClient by default)
            catalog: Operation catalog (built from the document by default)
            xml_provider: Supplies XML for xpath criteria without a context
            resolver: Expression resolver shared by all components
            default_timeout_ms: Call timeout for operations that declare none
            default_retry_count: Transport retries for operations that declare none
            default_retry_delay_ms: Transport retry delay for operations that declare none
        """
        if isinstance(document, WorkflowDocument):
            self.document = document
        else:
            self.document = WorkflowDocument.from_dict(document)

        self.resolver = resolver or ExpressionResolver()
        self.catalog = catalog or OperationCatalog(self.document.source_descriptions)
        self.http_client = http_client if http_client is not None else HttpxClient()
        self.criteria = CriteriaEvaluator(self.resolver, xml_provider)
        self.dispatcher = ActionDispatcher()
        self.invoker = OperationInvoker(
            self.catalog,
            self.http_client,
            self.resolver,
            timeout_ms=default_timeout_ms,
            retry_count=default_retry_count,
            retry_delay_ms=default_retry_delay_ms,
            workflow_runner=self._run_nested,
        )

    def run(
        self,
        workflow_id: Optional[str] = None,
        inputs: Optional[Dict[str, Any]] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> RunResult:
        """
        Run a workflow to a terminal state.

        Args:
            workflow_id: Workflow to run (the document's first one by default)
            inputs: Workflow inputs; copied and sealed for the run
            cancel_token: Cancellation/deadline token

        Returns:
            RunResult with status succeeded, failed or cancelled

        Raises:
            OperationNotFoundError: If the workflow does not exist
            UnsupportedActionError: If the workflow uses an unknown action kind
        """
        return self._run(workflow_id, inputs, cancel_token)

    def _run_nested(
        self,
        workflow_id: str,
        inputs: Dict[str, Any],
        parent: ExecutionContext,
        cancel_token: Optional[CancellationToken]
    ) -> RunResult:
        if workflow_id in parent.workflow_chain:
            raise SubWorkflowFailedError(
                f"Workflow '{workflow_id}' is already running in this chain",
                {'workflowId': workflow_id, 'chain': list(parent.workflow_chain)},
            )
        return self._run(workflow_id, inputs, cancel_token, parent.workflows, parent.workflow_chain)

    def _run(
        self,
        workflow_id: Optional[str],
        inputs: Optional[Dict[str, Any]],
        cancel_token: Optional[CancellationToken],
        workflows: Optional[Dict[str, Any]] = None,
        chain: Tuple[str, ...] = ()
    ) -> RunResult:
        workflow = self.document.get_workflow(workflow_id)
        if workflow is None:
            raise OperationNotFoundError(
                f"Workflow '{workflow_id}' not found",
                {'workflowId': workflow_id},
            )

        # Ready: seed the context
        seeded = {**workflow.input_defaults(), **(inputs or {})}
        context = ExecutionContext.seed(
            seeded,
            source_descriptions=self.document.source_context(),
            components=self.document.components,
            workflows=workflows,
        )
        context.workflow_chain = chain + (workflow.workflow_id,)

        logger.info(f"Running workflow '{workflow.workflow_id}' ({len(workflow.steps)} steps)")
        try:
            status, error = self._execute(workflow, context, cancel_token)
        except RunCancelledError as e:
            logger.warning(f"Workflow '{workflow.workflow_id}' cancelled: {e.message}")
            status, error = "cancelled", e

        outputs: Dict[str, Any] = {}
        if status != "cancelled":
            outputs, output_error = self._resolve_outputs(workflow, context)
            if output_error is not None and status == "succeeded":
                status, error = "failed", output_error

        context.outputs.update(outputs)
        context.workflows[workflow.workflow_id] = {
            'inputs': dict(context.inputs),
            'outputs': outputs,
        }

        if status == "failed":
            logger.error(f"Workflow '{workflow.workflow_id}' failed: {error.message if error else ''}")
        else:
            logger.info(f"Workflow '{workflow.workflow_id}' {status}")

        return RunResult(
            status=status,
            workflow_id=workflow.workflow_id,
            outputs=outputs,
            steps={step_id: dict(entry.get('outputs', {})) for step_id, entry in context.steps.items()},
            error=error.to_dict() if error else None,
            context=context,
        )

    def _execute(
        self,
        workflow: Workflow,
        context: ExecutionContext,
        cancel_token: Optional[CancellationToken]
    ) -> Tuple[RunStatus, Optional[ApiflowError]]:
        """Drive the step loop until a terminal state is reached."""
        steps = workflow.steps
        control = ControlState()
        index = 0

        while index < len(steps):
            step = steps[index]
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            # Running(step)
            outcome = self._run_step(step, workflow, context, cancel_token)
            if outcome.succeeded:
                actions = step.on_success or workflow.success_actions
            else:
                actions = step.on_failure or workflow.failure_actions
            control = self.dispatcher.dispatch(
                self._applicable(actions, outcome.context, step.step_id),
                control,
                step.step_id,
            )

            if control.terminate:
                if outcome.succeeded:
                    logger.info(f"Step '{step.step_id}': end action, workflow complete")
                    return "succeeded", None
                logger.info(f"Step '{step.step_id}': end action after failure")
                return "failed", outcome.error

            if control.retry_pending:
                # Retrying(step, attempt)
                attempt = control.retry_counts.get(step.step_id, 0)
                logger.info(
                    f"Retrying step '{step.step_id}' in {control.retry_after}s (attempt {attempt})"
                )
                self.dispatcher.wait_for_retry(control, cancel_token)
                continue

            if control.next_step_id is not None:
                target = workflow.step_index(control.next_step_id)
                if target is None:
                    return "failed", ApiflowError(
                        f"Goto target '{control.next_step_id}' not found",
                        {'stepId': step.step_id, 'target': control.next_step_id},
                    )
                logger.info(f"Step '{step.step_id}': goto '{control.next_step_id}'")
                index = target
                continue

            if not outcome.succeeded:
                logger.error(f"Step '{step.step_id}' failed with no recovery action")
                return "failed", outcome.error

            index += 1

        return "succeeded", None

    def _run_step(
        self,
        step: Step,
        workflow: Workflow,
        context: ExecutionContext,
        cancel_token: Optional[CancellationToken]
    ) -> StepOutcome:
        """Invoke a step and evaluate its success criteria."""
        try:
            result = self.invoker.invoke(step, context, cancel_token, workflow.parameters)
        except (RunCancelledError, UnsupportedActionError):
            raise
        except ApiflowError as e:
            logger.warning(f"Step '{step.step_id}' failed: {e.message}")
            return StepOutcome(False, self._failure_context(context, e), error=e)

        sub_outputs = result.body if step.workflow_id else None
        result_context = self.invoker.result_context(result, context, outputs=sub_outputs)

        try:
            passed = self.criteria.evaluate(step.success_criteria, result_context)
        except (RunCancelledError, UnsupportedActionError):
            raise
        except ApiflowError as e:
            logger.warning(f"Step '{step.step_id}': success criteria could not be evaluated: {e.message}")
            return StepOutcome(False, result_context, result, e)

        if not passed:
            error = CriteriaNotMetError(
                f"Success criteria not met for step '{step.step_id}'",
                {'stepId': step.step_id, 'statusCode': result.status_code},
            )
            logger.warning(error.message)
            return StepOutcome(False, result_context, result, error)

        # Only a passing attempt replaces the step's entry
        context.record_step(step.step_id, result.outputs)
        logger.info(f"Step '{step.step_id}' succeeded")
        return StepOutcome(True, result_context, result)

    def _failure_context(self, context: ExecutionContext, error: ApiflowError) -> ExecutionContext:
        """Context for failure actions; protocol errors still expose the response."""
        if isinstance(error, ProtocolError):
            return context.for_exchange(
                url=error.context.get('url'),
                method=error.context.get('method'),
                status_code=error.status_code,
                response={'header': {}, 'body': error.body},
            )
        return context.for_exchange()

    def _applicable(
        self,
        actions: List[Action],
        context: ExecutionContext,
        step_id: str
    ) -> List[Action]:
        """Actions whose own criteria hold against the step's result."""
        applicable = []
        for action in actions:
            try:
                if self.criteria.evaluate(action.criteria, context):
                    applicable.append(action)
            except ExpressionError as e:
                logger.warning(
                    f"Step '{step_id}': criteria of action '{action.name}' could not be evaluated: {e.message}"
                )
        return applicable

    def _resolve_outputs(
        self,
        workflow: Workflow,
        context: ExecutionContext
    ) -> Tuple[Dict[str, Any], Optional[ApiflowError]]:
        """Resolve workflow outputs; an unresolvable output is None and reported."""
        outputs: Dict[str, Any] = {}
        first_error: Optional[ApiflowError] = None
        for name, expression in workflow.outputs.items():
            try:
                value = self.resolver.resolve_value(expression, context)
            except ExpressionError as e:
                logger.warning(f"Workflow output '{name}' could not be resolved: {e.message}")
                value = None
                first_error = first_error or e
            outputs[name] = None if value is UNDEFINED else value
        return outputs, first_error
