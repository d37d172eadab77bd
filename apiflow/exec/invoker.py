"""
Operation invoker.

Resolves a step's target, builds the request from its parameters and body
template, performs the call through the HTTP client and maps the response
into the step's declared outputs.
"""

import copy
import logging
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

from ..context import ExecutionContext, lower_headers
from ..exceptions import (
    ExpressionError,
    ExpressionSyntaxError,
    RunCancelledError,
    SubWorkflowFailedError,
)
from ..expressions import UNDEFINED, ExpressionResolver, stringify
from ..expressions.references import unescape_pointer_token
from ..models import Parameter, ParameterLocation, RequestBody, Step
from .cancellation import CancellationToken
from .catalog import OperationCatalog
from .types import (
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_TIMEOUT_MS,
    Operation,
    RequestOptions,
    StepResult,
)


logger = logging.getLogger(__name__)

# (workflow_id, inputs, parent_context, cancel_token) -> RunResult
WorkflowRunner = Callable[[str, Dict[str, Any], ExecutionContext, Optional[CancellationToken]], Any]


def merge_parameters(
    workflow_parameters: Optional[List[Parameter]],
    step_parameters: List[Parameter]
) -> List[Parameter]:
    """Workflow-level parameters apply to every step unless the step redeclares them."""
    declared = {(p.name, p.location) for p in step_parameters}
    inherited = [p for p in workflow_parameters or [] if (p.name, p.location) not in declared]
    return inherited + list(step_parameters)


class OperationInvoker:
    """
    Executes workflow steps against remote operations.
    Handles request building, the HTTP call and output mapping.
    """

    def __init__(
        self,
        catalog: OperationCatalog,
        http_client: Any,
        resolver: Optional[ExpressionResolver] = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        retry_count: int = DEFAULT_RETRY_COUNT,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        workflow_runner: Optional[WorkflowRunner] = None
    ):
        """
        Initialize the invoker.

        Args:
            catalog: Operation lookup for operationId/operationPath steps
            http_client: Object with request(url, RequestOptions) -> HttpResponse
            resolver: Expression resolver (a new one by default)
            timeout_ms: Call timeout when the operation declares none
            retry_count: Transport retries when the operation declares none
            retry_delay_ms: Transport retry delay when the operation declares none
            workflow_runner: Runs nested workflows for workflowId steps
        """
        self.catalog = catalog
        self.http_client = http_client
        self.resolver = resolver or ExpressionResolver()
        self.timeout_ms = timeout_ms
        self.retry_count = retry_count
        self.retry_delay_ms = retry_delay_ms
        self.workflow_runner = workflow_runner

    def invoke(
        self,
        step: Step,
        context: ExecutionContext,
        cancel_token: Optional[CancellationToken] = None,
        workflow_parameters: Optional[List[Parameter]] = None
    ) -> StepResult:
        """
        Invoke a step and map its response into the declared outputs.

        Args:
            step: Step to invoke
            context: Run context the request is resolved against
            cancel_token: Token observed around the transport call
            workflow_parameters: Workflow-level parameters inherited by the step

        Returns:
            StepResult with response parts and mapped outputs

        Raises:
            OperationNotFoundError: The target operation does not exist
            TransportError: The call failed
            ExpressionError: A parameter, body or output expression failed
        """
        if step.workflow_id:
            return self._invoke_workflow(step, context, cancel_token)

        operation = self.resolve_operation(step)
        parameters = merge_parameters(workflow_parameters, step.parameters)

        url, path_values = self._build_url(operation.url, parameters, context)
        query = self._collect(parameters, ParameterLocation.QUERY, context)
        headers = self._build_headers(parameters, step.request_body, context)
        body = self._build_body(step.request_body, context)

        request_parts = {
            'header': dict(headers),
            'query': dict(query),
            'path': path_values,
            'body': body,
        }
        options = RequestOptions(
            method=operation.method,
            headers=headers,
            query=query,
            body=body,
            content_type=step.request_body.content_type if step.request_body else None,
            timeout_ms=self._pick(operation.timeout_ms, self.timeout_ms),
            retry_count=self._pick(operation.retry_count, self.retry_count),
            retry_delay_ms=self._pick(operation.retry_delay_ms, self.retry_delay_ms),
            cancel_token=cancel_token,
        )

        logger.info(f"Step '{step.step_id}': {operation.method} {url}")
        response = self.http_client.request(url, options)

        result = StepResult(
            step_id=step.step_id,
            status_code=response.status_code,
            headers=lower_headers(response.headers),
            body=response.body,
            url=url,
            method=operation.method,
            request=request_parts,
        )
        result_context = self.result_context(result, context)
        result.outputs = self.map_outputs(step.outputs, result_context)
        return result

    def resolve_operation(self, step: Step) -> Operation:
        if step.operation_path:
            return self.catalog.resolve_path(step.operation_path)
        return self.catalog.find_operation(step.operation_id or "")

    def result_context(
        self,
        result: StepResult,
        context: ExecutionContext,
        outputs: Optional[Dict[str, Any]] = None
    ) -> ExecutionContext:
        """Context extended with the step's request and response."""
        return context.for_exchange(
            url=result.url,
            method=result.method,
            status_code=result.status_code,
            request=result.request,
            response=result.response_parts(),
            outputs=outputs,
        )

    def map_outputs(self, outputs: Dict[str, Any], result_context: ExecutionContext) -> Dict[str, Any]:
        """Resolve declared outputs; a missing path is stored as None."""
        mapped = {}
        for name, expression in outputs.items():
            value = self.resolver.resolve_value(expression, result_context)
            mapped[name] = None if value is UNDEFINED else value
        return mapped

    def _invoke_workflow(
        self,
        step: Step,
        context: ExecutionContext,
        cancel_token: Optional[CancellationToken]
    ) -> StepResult:
        """Run a nested workflow; its outputs act as the response body."""
        if self.workflow_runner is None:
            raise SubWorkflowFailedError(
                f"Step '{step.step_id}' targets workflow '{step.workflow_id}' but no runner is configured",
                {'workflowId': step.workflow_id},
            )

        inputs = {}
        for parameter in step.parameters:
            value = self.resolver.resolve_value(parameter.value, context)
            inputs[parameter.name] = None if value is UNDEFINED else value

        logger.info(f"Step '{step.step_id}': running workflow '{step.workflow_id}'")
        run = self.workflow_runner(step.workflow_id, inputs, context, cancel_token)
        if run.status == 'cancelled':
            raise RunCancelledError(
                f"Workflow '{step.workflow_id}' was cancelled",
                {'workflowId': step.workflow_id},
            )
        if run.status != 'succeeded':
            raise SubWorkflowFailedError(
                f"Workflow '{step.workflow_id}' failed",
                {'workflowId': step.workflow_id, 'error': run.error},
            )

        result = StepResult(step_id=step.step_id, body=run.outputs, request={'body': inputs})
        result_context = self.result_context(result, context, outputs=dict(run.outputs))
        result.outputs = self.map_outputs(step.outputs, result_context)
        return result

    def _pick(self, declared: Optional[int], default: int) -> int:
        return default if declared is None else int(declared)

    def _resolve_parameter(self, parameter: Parameter, context: ExecutionContext) -> Any:
        value = self.resolver.resolve_value(parameter.value, context)
        return None if value is UNDEFINED else value

    def _build_url(self, template: str, parameters: List[Parameter], context: ExecutionContext):
        url = template
        path_values = {}
        for parameter in parameters:
            if parameter.location != ParameterLocation.PATH.value:
                continue
            value = self._resolve_parameter(parameter, context)
            path_values[parameter.name] = value
            url = url.replace('{' + parameter.name + '}', quote(stringify(value), safe=''))
        return url, path_values

    def _collect(self, parameters: List[Parameter], location: ParameterLocation, context: ExecutionContext) -> Dict[str, Any]:
        return {
            p.name: self._resolve_parameter(p, context)
            for p in parameters
            if p.location == location.value
        }

    def _build_headers(
        self,
        parameters: List[Parameter],
        request_body: Optional[RequestBody],
        context: ExecutionContext
    ) -> Dict[str, str]:
        headers = {'accept': 'application/json'}
        if request_body is not None:
            headers['content-type'] = request_body.content_type or 'application/json'

        for name, value in self._collect(parameters, ParameterLocation.HEADER, context).items():
            if value is not None:
                headers[name.lower()] = stringify(value)

        cookies = self._collect(parameters, ParameterLocation.COOKIE, context)
        if cookies:
            pairs = [f"{name}={stringify(value)}" for name, value in cookies.items() if value is not None]
            if headers.get('cookie'):
                pairs.insert(0, headers['cookie'])
            headers['cookie'] = '; '.join(pairs)
        return headers

    def _build_body(self, request_body: Optional[RequestBody], context: ExecutionContext) -> Any:
        if request_body is None or request_body.payload is None:
            return None

        payload = self.resolver.resolve_template(request_body.payload, context)
        for replacement in request_body.replacements:
            value = self.resolver.resolve_value(replacement.value, context)
            payload = self._replace_at(payload, replacement.target, None if value is UNDEFINED else value)
        return payload

    def _replace_at(self, payload: Any, target: str, value: Any) -> Any:
        """Set the value at a JSON Pointer inside a copy of the payload."""
        if target == '':
            return value
        if not target.startswith('/'):
            raise ExpressionSyntaxError(f"Invalid replacement target: {target}", {'target': target})

        payload = copy.deepcopy(payload)
        tokens = [unescape_pointer_token(t) for t in target[1:].split('/')]
        parent = payload
        for token in tokens[:-1]:
            if isinstance(parent, dict) and token in parent:
                parent = parent[token]
            elif isinstance(parent, list) and token.isdigit() and int(token) < len(parent):
                parent = parent[int(token)]
            else:
                raise ExpressionError(f"Replacement target not found: {target}", {'target': target})

        last = tokens[-1]
        if isinstance(parent, dict):
            parent[last] = value
        elif isinstance(parent, list) and last.isdigit() and int(last) < len(parent):
            parent[int(last)] = value
        elif isinstance(parent, list) and last == '-':
            parent.append(value)
        else:
            raise ExpressionError(f"Replacement target not found: {target}", {'target': target})
        return payload
